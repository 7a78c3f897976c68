#!/usr/bin/env python3
"""
Onboarding submit smoke-check: documents, idempotency and both verification modes.

What it validates:
- review mode: submit without documents is refused and the draft step is kept
- only PDF/PNG/JPG uploads within the size limit are accepted
- submit creates a pending restaurant, clears the draft, switches to dashboard
- repeating submit with the same Idempotency-Key returns the same restaurant
- concurrent submits for one owner create exactly one restaurant
- a rejected owner can resubmit (rejected -> pending) and keeps the QR code
- instant mode: submit goes live (verified) without documents

Run:
  python3 scripts/smoke_onboarding_submit.py
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
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
from errors import UploadError, ValidationError  # noqa: E402
from restaurants import lifecycle  # noqa: E402
from restaurants.documents import DocumentStorage  # noqa: E402
from restaurants.memory import MemoryDraftStore, MemoryRestaurantStore  # noqa: E402
from restaurants.service import OnboardingService, VerificationService  # noqa: E402


FORM = {
    "name": "Test Cafe",
    "description": "Breakfast and coffee",
    "address": "Moda Cd. 5, Kadikoy, Istanbul",
    "phone": "+90 216 555 00 00",
    "website": "https://testcafe.example",
    "google_location_url": "https://maps.google.com/?q=test+cafe",
    "social_media_links": [{"platform": "Instagram", "url": "https://instagram.com/testcafe"}],
}
PDF_BYTES = b"%PDF-1.4 smoke document"


def _assert(cond: bool, message: str) -> None:
    if not cond:
        raise AssertionError(message)


def _claims(email: str, role: str = ROLE_RESTAURANT_AUTHORITY) -> SessionClaims:
    return SessionClaims(user_id=user_id_for_email(email), email=email, role=role, expires_at=2**31)


def _service(store: MemoryRestaurantStore, drafts: MemoryDraftStore, upload_dir: Path, *, review: bool) -> OnboardingService:
    return OnboardingService(
        store,
        drafts,
        DocumentStorage(upload_dir, max_bytes=1024),
        document_review=review,
        timeout_sec=5,
    )


async def _check_review_mode(upload_dir: Path) -> None:
    store = MemoryRestaurantStore()
    drafts = MemoryDraftStore()
    service = _service(store, drafts, upload_dir, review=True)
    admin = _claims("admin@dizmen.example", ROLE_SUPER_ADMIN)
    verification = VerificationService(store, timeout_sec=5)
    owner = _claims("owner@testcafe.example")

    await service.advance(owner, form_data=FORM)
    try:
        await service.submit(owner, form_data=FORM, idempotency_key="k-0")
        raise AssertionError("submit without documents must be refused in review mode")
    except ValidationError as error:
        _assert("documents" in error.field_errors, "missing documents must be reported")
    draft = await service.get_draft(owner)
    _assert(draft is not None, "refused submit keeps the draft")
    _assert(draft.step == lifecycle.STEP_VERIFICATION_DOCUMENTS, "refused submit keeps the step")
    _assert(await store.list_restaurants() == [], "refused submit creates nothing")

    for name, content_type, data in (
        ("license.exe", "application/octet-stream", PDF_BYTES),
        ("license.pdf", "image/png", PDF_BYTES),
        ("license.pdf", "application/pdf", b""),
        ("license.pdf", "application/pdf", b"x" * 2048),
    ):
        try:
            await service.upload_document(owner, file_name=name, content_type=content_type, data=data)
            raise AssertionError(f"upload {name} ({content_type}, {len(data)}B) must be refused")
        except UploadError:
            pass

    scratch = await service.upload_document(owner, file_name="scratch.png", content_type="image/png", data=b"\x89PNG")
    removed = await service.remove_document(owner, scratch.id)
    _assert(not Path(removed.stored_path).exists(), "removed document file must be deleted")

    document = await service.upload_document(
        owner,
        file_name="../../Business License.pdf",
        content_type="application/pdf",
        data=PDF_BYTES,
    )
    stored = Path(document.stored_path)
    _assert(stored.exists() and stored.read_bytes() == PDF_BYTES, "document must be written to disk")
    _assert(upload_dir in stored.parents, "document must stay inside the upload dir")
    _assert(document.content_type == "application/pdf", "content type is canonical")

    first = await service.submit(owner, form_data=FORM, idempotency_key="submit-1")
    _assert(first.verification_status == lifecycle.STATUS_PENDING, "review mode submits as pending")
    _assert(first.onboarding_step == lifecycle.STEP_COMPLETE, "submitted restaurant is complete")
    _assert(first.qr_code == first.id, "QR code points at the restaurant id")
    _assert(await service.get_draft(owner) is None, "submit clears the draft")

    again = await service.submit(owner, form_data=FORM, idempotency_key="submit-1")
    _assert(again.id == first.id, "same idempotency key returns the same restaurant")
    _assert(len(await store.list_restaurants()) == 1, "repeated submit creates nothing new")

    try:
        await service.submit(owner, form_data=FORM, idempotency_key="submit-2")
        raise AssertionError("a second registration must be refused")
    except ValidationError:
        pass

    attached = await store.list_restaurant_documents(first.id)
    _assert([d.id for d in attached] == [document.id], "pending documents attach to the restaurant")

    dashboard = await service.load_wizard(owner)
    _assert(dashboard.mode == "dashboard", "registered owner sees the dashboard")
    _assert(dashboard.restaurant is not None and dashboard.restaurant.id == first.id, "dashboard shows the restaurant")

    # Rejection sends the owner back through the wizard, prefilled.
    await verification.reject(admin, first.id, "License is unreadable")
    wizard = await service.load_wizard(owner)
    _assert(wizard.mode == "wizard", "rejected owner gets the wizard again")
    _assert(wizard.rejection_reason == "License is unreadable", "rejection reason is shown")
    _assert(wizard.form_data["name"] == "Test Cafe", "resubmission form is prefilled")

    try:
        await service.submit(owner, form_data=FORM, idempotency_key="resubmit-1")
        raise AssertionError("resubmission needs fresh documents")
    except ValidationError:
        pass
    await service.upload_document(owner, file_name="license-v2.jpg", content_type="image/jpeg", data=b"\xff\xd8jpeg")
    resubmitted = await service.submit(
        owner,
        form_data={**FORM, "name": "Test Cafe Moda"},
        idempotency_key="resubmit-1",
    )
    _assert(resubmitted.id == first.id, "resubmission updates the same restaurant")
    _assert(resubmitted.qr_code == first.qr_code, "QR code survives resubmission")
    _assert(resubmitted.verification_status == lifecycle.STATUS_PENDING, "resubmission goes back to pending")
    _assert(resubmitted.rejection_reason is None, "resubmission clears the rejection reason")
    _assert(resubmitted.name == "Test Cafe Moda", "resubmission stores the new form")

    audit = [entry.action for entry in await store.list_audit_log(first.id)]
    _assert(audit == ["submitted", "reject", "resubmitted"], f"unexpected audit trail: {audit}")


async def _check_concurrent_submit(upload_dir: Path) -> None:
    store = MemoryRestaurantStore()
    service = _service(store, MemoryDraftStore(), upload_dir, review=False)
    owner = _claims("double@click.example")

    results = await asyncio.gather(
        service.submit(owner, form_data=FORM, idempotency_key="tab-a"),
        service.submit(owner, form_data=FORM, idempotency_key="tab-b"),
        return_exceptions=True,
    )
    created = [r for r in results if not isinstance(r, BaseException)]
    refused = [r for r in results if isinstance(r, ValidationError)]
    _assert(len(created) == 1 and len(refused) == 1, f"expected one success and one refusal, got {results}")
    _assert(len(await store.list_restaurants()) == 1, "concurrent submits create one restaurant")

    same_key = await asyncio.gather(
        service.submit(_claims("twice@click.example"), form_data=FORM, idempotency_key="same"),
        service.submit(_claims("twice@click.example"), form_data=FORM, idempotency_key="same"),
    )
    _assert(same_key[0].id == same_key[1].id, "concurrent retries with one key share the result")
    _assert(service._submit_locks == {}, "per-owner submit locks are released once nobody waits")


async def _check_instant_mode(upload_dir: Path) -> None:
    store = MemoryRestaurantStore()
    service = _service(store, MemoryDraftStore(), upload_dir, review=False)
    owner = _claims("instant@cafe.example")

    restaurant = await service.submit(owner, form_data=FORM, idempotency_key=None)
    _assert(restaurant.verification_status == lifecycle.STATUS_VERIFIED, "instant mode goes live on submit")
    _assert(restaurant.verified_at is not None, "instant verification records verified_at")

    try:
        await service.submit(_claims("broken@cafe.example"), form_data={"name": "X"})
        raise AssertionError("invalid form must be refused on submit")
    except ValidationError as error:
        _assert({"name", "address"} <= set(error.field_errors), "submit reports field errors")


def main() -> None:
    tmpdir = Path(tempfile.mkdtemp(prefix="dizmen-smoke-submit-"))
    try:
        asyncio.run(_check_review_mode(tmpdir / "review"))
        asyncio.run(_check_concurrent_submit(tmpdir / "concurrent"))
        asyncio.run(_check_instant_mode(tmpdir / "instant"))
        print("OK: onboarding submit smoke passed.")
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


if __name__ == "__main__":
    main()
