#!/usr/bin/env python3
"""
SQLite storage smoke-check on a temporary database.

What it validates:
- init_db is idempotent
- drafts persist across repository instances with versioned overwrites
- restaurant submit/resubmit, idempotency keys and document attachment
- verification status updates are compare-and-set
- menu order, item moves, menu delete cascade and retained reviews
- totals used by the admin dashboard

Run:
  python3 scripts/smoke_sqlite_repository.py
"""

from __future__ import annotations

import asyncio
import shutil
import sqlite3
import tempfile
from datetime import datetime
from pathlib import Path
import sys


def _setup_import_path() -> None:
    for candidate in (
        Path(__file__).resolve().parents[1] / "src",
        Path.cwd() / "src",
        Path("/app/src"),
    ):
        if candidate.exists():
            sys.path.insert(0, str(candidate))
            return


_setup_import_path()

from auth import ROLE_RESTAURANT_AUTHORITY, ROLE_SUPER_ADMIN, SessionClaims, user_id_for_email  # noqa: E402
from database import init_db, utc_now_iso  # noqa: E402
from errors import ConflictError  # noqa: E402
from menus.repository import MenuRepository  # noqa: E402
from menus.service import DELETE_MENU_CONFIRMATION, MenuService  # noqa: E402
from restaurants import lifecycle  # noqa: E402
from restaurants.documents import DocumentStorage  # noqa: E402
from restaurants.models import Restaurant, RestaurantDraft  # noqa: E402
from restaurants.repository import DraftRepository, RestaurantRepository  # noqa: E402
from restaurants.service import OnboardingService, VerificationService  # noqa: E402


FORM = {
    "name": "Test Cafe",
    "address": "Moda Cd. 5, Kadikoy, Istanbul",
    "social_media_links": [{"platform": "Instagram", "url": "https://instagram.com/testcafe"}],
}


def _assert(cond: bool, message: str) -> None:
    if not cond:
        raise AssertionError(message)


def _claims(email: str, role: str = ROLE_RESTAURANT_AUTHORITY) -> SessionClaims:
    return SessionClaims(user_id=user_id_for_email(email), email=email, role=role, expires_at=2**31)


async def _check_drafts(db_path: str) -> None:
    drafts = DraftRepository(db_path)
    saved = await drafts.save(
        RestaurantDraft(owner_id="owner-1", step="restaurant_info", form_data={"name": "Test Cafe"}, last_saved=utc_now_iso())
    )
    _assert(saved.version == 1, "first draft save is version 1")

    reloaded = await DraftRepository(db_path).load("owner-1")
    _assert(reloaded is not None and reloaded.form_data == {"name": "Test Cafe"}, "draft persists in SQLite")
    _assert(reloaded.version == 1, "version persists")

    try:
        await drafts.save(
            RestaurantDraft(owner_id="owner-1", step="restaurant_info", form_data={}, last_saved=utc_now_iso()),
            expected_version=0,
        )
        raise AssertionError("stale version must conflict")
    except ConflictError:
        pass
    second = await drafts.save(
        RestaurantDraft(
            owner_id="owner-1",
            step="verification_documents",
            form_data={"name": "Test Cafe", "address": "Moda"},
            last_saved=utc_now_iso(),
        ),
        expected_version=1,
    )
    _assert(second.version == 2, "matching version saves")
    _assert(await drafts.clear("owner-1"), "clear removes the draft")
    _assert(await drafts.load("owner-1") is None, "cleared draft is gone")


async def _check_restaurants(db_path: str, upload_dir: Path) -> str:
    store = RestaurantRepository(db_path)
    onboarding = OnboardingService(
        store,
        DraftRepository(db_path),
        DocumentStorage(upload_dir, max_bytes=1024),
        document_review=True,
        timeout_sec=10,
    )
    verification = VerificationService(store, menus=MenuRepository(db_path), timeout_sec=10)
    owner = _claims("owner@testcafe.example")
    admin = _claims("admin@dizmen.example", ROLE_SUPER_ADMIN)

    await onboarding.advance(owner, form_data=FORM)
    document = await onboarding.upload_document(
        owner,
        file_name="license.pdf",
        content_type="application/pdf",
        data=b"%PDF-1.4",
    )
    _assert(document.id > 0, "document gets a database id")

    first = await onboarding.submit(owner, form_data=FORM, idempotency_key="k1")
    again = await onboarding.submit(owner, form_data=FORM, idempotency_key="k1")
    _assert(first.id == again.id, "idempotent submit returns the stored restaurant")
    _assert(await store.find_submission(owner.user_id, "k1") == first.id, "idempotency key is recorded")
    _assert(first.social_media_links[0].platform == "Instagram", "social links round-trip")

    by_qr = await store.get_restaurant_by_qr(first.qr_code)
    _assert(by_qr is not None and by_qr.id == first.id, "restaurant is found by QR code")
    attached = await store.list_restaurant_documents(first.id)
    _assert([d.id for d in attached] == [document.id], "document attached on submit")
    _assert(await store.list_documents(owner.user_id) == [], "no pending documents left")

    duplicate = Restaurant(
        id="rest-duplicate",
        owner_id=owner.user_id,
        name="Dup",
        address="Somewhere 1",
        qr_code="rest-duplicate",
        verification_status=lifecycle.STATUS_PENDING,
        onboarding_step=lifecycle.STEP_COMPLETE,
        created_at=utc_now_iso(),
        updated_at=utc_now_iso(),
    )
    try:
        await store.create_restaurant(duplicate, idempotency_key="k1", document_ids=[])
        raise AssertionError("reused idempotency key must conflict")
    except ConflictError:
        pass
    _assert(await store.get_restaurant("rest-duplicate") is None, "conflicting insert is rolled back")

    stale = await store.update_status(
        first.id,
        expected_status=lifecycle.STATUS_VERIFIED,
        new_status=lifecycle.STATUS_BLOCKED,
        rejection_reason="x",
        verified_at=None,
    )
    _assert(stale is None, "compare-and-set refuses a stale status")

    rejected = await verification.reject(admin, first.id, "Blurry license")
    _assert(rejected.rejection_reason == "Blurry license", "rejection reason persists")
    await onboarding.upload_document(owner, file_name="license2.png", content_type="image/png", data=b"\x89PNG")
    resubmitted = await onboarding.submit(owner, form_data=FORM, idempotency_key="k2")
    _assert(resubmitted.id == first.id and resubmitted.qr_code == first.qr_code, "resubmit keeps identity")
    _assert(resubmitted.verification_status == lifecycle.STATUS_PENDING, "resubmit is pending")
    _assert(len(await store.list_restaurant_documents(first.id)) == 2, "both documents attached")

    verified = await verification.verify(admin, first.id)
    _assert(verified.verification_status == lifecycle.STATUS_VERIFIED, "admin verifies")
    audit = [entry.action for entry in await store.list_audit_log(first.id)]
    _assert(audit == ["submitted", "reject", "resubmitted", "verify"], f"unexpected audit trail {audit}")
    counts = await store.count_by_status()
    _assert(counts == {lifecycle.STATUS_VERIFIED: 1}, f"unexpected counts {counts}")
    return first.qr_code


async def _check_menus(db_path: str, qr_code: str) -> None:
    store = RestaurantRepository(db_path)
    menus = MenuRepository(db_path)
    service = MenuService(menus, store, timeout_sec=10)
    owner = _claims("owner@testcafe.example")

    breakfast = await service.create_menu(
        owner,
        {"name": "Breakfast", "time_ranges": [{"start_time": "07:00", "end_time": "11:00"}]},
    )
    lunch = await service.create_menu(owner, {"name": "Lunch", "time_ranges": [{"start_time": "12:00", "end_time": "15:00"}]})
    _assert((breakfast.order, lunch.order) == (1, 2), "menu order is count + 1")
    reloaded = await menus.get_menu(breakfast.id)
    _assert(reloaded.time_ranges[0].end_time == "11:00", "time ranges round-trip")

    eggs = await service.create_item(owner, breakfast.id, {"name": "Menemen", "price": 7.5, "images": ["a.jpg"]})
    simit = await service.create_item(owner, breakfast.id, {"name": "Simit", "price": 1})
    _assert((await menus.get_item(eggs.id)).images == ["a.jpg"], "images round-trip")

    moved = await service.move_item(owner, eggs.id, lunch.id)
    _assert(moved.menu_id == lunch.id, "move persists")
    await service.add_review(simit.id, {"rating": 5})
    await service.add_review(moved.id, {"rating": 3})

    page = await service.public_menu(qr_code, now=datetime(2026, 5, 4, 13, 0))
    _assert([s["menu"].name for s in page["menus"]] == ["Lunch"], "13:00 shows lunch only")
    _assert(page["menus"][0]["categories"]["Other"][0]["item"].name == "Menemen", "moved item shows at lunch")

    deleted = await service.delete_menu(owner, breakfast.id, confirmation=DELETE_MENU_CONFIRMATION)
    _assert(deleted == 1, "breakfast had one item")
    _assert(await menus.get_item(simit.id) is None, "items cascade with their menu")
    _assert(len(await menus.list_reviews(simit.id)) == 1, "reviews survive the cascade")

    totals = await menus.totals()
    _assert(totals["menus"] == 1 and totals["items"] == 1 and totals["reviews"] == 2, f"unexpected totals {totals}")
    _assert(totals["average_rating"] == 4.0, "average over all reviews")


async def _run_checks(tmpdir: Path) -> None:
    db_path = str(tmpdir / "dizmen.db")
    await init_db(db_path)
    await init_db(db_path)
    await _check_drafts(db_path)
    qr_code = await _check_restaurants(db_path, tmpdir / "uploads")
    await _check_menus(db_path, qr_code)

    conn = sqlite3.connect(db_path)
    try:
        journal = conn.execute("PRAGMA journal_mode").fetchone()[0]
    finally:
        conn.close()
    _assert(str(journal).lower() == "wal", "database runs in WAL mode")


def main() -> None:
    tmpdir = Path(tempfile.mkdtemp(prefix="dizmen-smoke-sqlite-"))
    try:
        asyncio.run(_run_checks(tmpdir))
        print("OK: sqlite repository smoke passed.")
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


if __name__ == "__main__":
    main()
