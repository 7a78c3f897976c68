#!/usr/bin/env python3
"""
Onboarding draft smoke-check: the wizard can be left and resumed.

What it validates:
- a fresh owner starts at restaurant_info with an empty form
- a draft saved at step 1 is restored (step + form) when the wizard reloads
- identical saves keep identical form_data with strictly increasing last_saved
- a stale expected_version is refused with ConflictError
- advance validates name/address and auto-saves at verification_documents
- go_back returns to restaurant_info without losing the form
- a storage failure surfaces as StorageError and keeps the previous draft

Run:
  python3 scripts/smoke_onboarding_draft_resume.py
"""

from __future__ import annotations

import asyncio
import shutil
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

from auth import ROLE_CUSTOMER, ROLE_RESTAURANT_AUTHORITY, SessionClaims, user_id_for_email  # noqa: E402
from errors import AccessDeniedError, ConflictError, StorageError, ValidationError  # noqa: E402
from restaurants import lifecycle  # noqa: E402
from restaurants.documents import DocumentStorage  # noqa: E402
from restaurants.memory import MemoryDraftStore, MemoryRestaurantStore  # noqa: E402
from restaurants.service import OnboardingService  # noqa: E402


def _assert(cond: bool, message: str) -> None:
    if not cond:
        raise AssertionError(message)


def _claims(email: str, role: str = ROLE_RESTAURANT_AUTHORITY) -> SessionClaims:
    return SessionClaims(user_id=user_id_for_email(email), email=email, role=role, expires_at=2**31)


async def _run_checks(upload_dir: Path) -> None:
    drafts = MemoryDraftStore()
    service = OnboardingService(
        MemoryRestaurantStore(),
        drafts,
        DocumentStorage(upload_dir, max_bytes=1024 * 1024),
        document_review=True,
        timeout_sec=5,
    )
    owner = _claims("owner@testcafe.example")

    fresh = await service.load_wizard(owner)
    _assert(fresh.mode == "wizard", "new owner must see the wizard")
    _assert(fresh.step == lifecycle.STEP_RESTAURANT_INFO, "new owner starts at restaurant_info")
    _assert(not fresh.resumed, "nothing to resume yet")
    _assert(fresh.form_data["name"] == "", "fresh form is empty")

    # Drafts keep whatever was typed, valid or not.
    first = await service.save_draft(owner, step=lifecycle.STEP_RESTAURANT_INFO, form_data={"name": "Test Cafe"})
    _assert(first.version == 1, f"first save must be version 1, got {first.version}")

    resumed = await service.load_wizard(owner)
    _assert(resumed.resumed, "wizard must resume from the draft")
    _assert(resumed.step == lifecycle.STEP_RESTAURANT_INFO, "resumed step must match the draft")
    _assert(resumed.form_data["name"] == "Test Cafe", "resumed name must match the draft")
    _assert(resumed.form_data["address"] == "", "untouched fields stay empty")

    second = await service.save_draft(owner, step=lifecycle.STEP_RESTAURANT_INFO, form_data={"name": "Test Cafe"})
    _assert(second.form_data == first.form_data, "identical saves keep identical form_data")
    _assert(
        datetime.fromisoformat(second.last_saved) > datetime.fromisoformat(first.last_saved),
        "last_saved must strictly increase",
    )
    _assert(second.version == 2, "each save bumps the version")

    try:
        await service.save_draft(
            owner,
            step=lifecycle.STEP_RESTAURANT_INFO,
            form_data={"name": "Other Tab"},
            expected_version=1,
        )
        raise AssertionError("stale expected_version must be refused")
    except ConflictError:
        pass
    kept = await service.get_draft(owner)
    _assert(kept is not None and kept.form_data["name"] == "Test Cafe", "conflicting save must not overwrite")

    try:
        await service.save_draft(owner, step="complete", form_data={})
        raise AssertionError("drafts cannot sit on the complete step")
    except ValidationError:
        pass

    try:
        await service.advance(owner, form_data={"name": "T", "address": ""}, expected_version=2)
        raise AssertionError("advance must validate name/address")
    except ValidationError as error:
        _assert("name" in error.field_errors, "name error must be reported inline")
        _assert("address" in error.field_errors, "address error must be reported inline")
    still = await service.get_draft(owner)
    _assert(still is not None and still.step == lifecycle.STEP_RESTAURANT_INFO, "failed advance keeps the step")

    try:
        await service.advance(
            owner,
            form_data={"name": "Test Cafe", "address": "Kadikoy 12, Istanbul", "website": "not a url"},
        )
        raise AssertionError("advance must reject malformed optional URLs")
    except ValidationError as error:
        _assert("website" in error.field_errors, "website error must be reported")

    advanced = await service.advance(
        owner,
        form_data={
            "name": "Test Cafe",
            "address": "Kadikoy 12, Istanbul",
            "social_media_links": [{"platform": "Instagram", "url": "https://instagram.com/testcafe"}],
        },
        expected_version=2,
    )
    _assert(advanced.step == lifecycle.STEP_VERIFICATION_DOCUMENTS, "advance moves to verification_documents")
    reloaded = await service.load_wizard(owner)
    _assert(reloaded.step == lifecycle.STEP_VERIFICATION_DOCUMENTS, "advance auto-saves the new step")
    _assert(lifecycle.progress_percent(reloaded.step) == 66, "second step shows 66% progress")

    back = await service.go_back(owner)
    _assert(back.step == lifecycle.STEP_RESTAURANT_INFO, "back returns to restaurant_info")
    _assert(back.form_data["address"] == "Kadikoy 12, Istanbul", "back keeps the form")
    _assert(
        back.form_data["social_media_links"] == [{"platform": "Instagram", "url": "https://instagram.com/testcafe"}],
        "back keeps social links",
    )

    drafts.fail_next_saves = 1
    try:
        await service.save_draft(owner, step=lifecycle.STEP_RESTAURANT_INFO, form_data={"name": "Lost"})
        raise AssertionError("storage failure must surface")
    except StorageError:
        pass
    survived = await service.get_draft(owner)
    _assert(survived is not None and survived.form_data["name"] == "Test Cafe", "failed save keeps old draft")

    other = _claims("second@owner.example")
    _assert(await service.get_draft(other) is None, "drafts are per owner")

    try:
        await service.load_wizard(_claims("guest@example.com", ROLE_CUSTOMER))
        raise AssertionError("customers cannot open the onboarding wizard")
    except AccessDeniedError:
        pass

    _assert(await service.clear_draft(owner), "clear reports an existing draft")
    _assert(not await service.clear_draft(owner), "second clear finds nothing")


def main() -> None:
    tmpdir = Path(tempfile.mkdtemp(prefix="dizmen-smoke-draft-"))
    try:
        asyncio.run(_run_checks(tmpdir))
        print("OK: onboarding draft resume smoke passed.")
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


if __name__ == "__main__":
    main()
