#!/usr/bin/env python3
"""
Verification smoke-check: admin transitions are guarded compare-and-set moves.

What it validates:
- only super_admin sessions can list, verify, reject, block or unblock
- reject/block need a non-empty reason; an empty reason changes nothing
- allowed moves: pending->verified, pending->rejected, verified->blocked, blocked->verified
- disallowed moves are refused with ValidationError
- two admins acting on the same restaurant: one wins, the other gets ConflictError
- stats count restaurants per status

Run:
  python3 scripts/smoke_verification_state_machine.py
"""

from __future__ import annotations

import asyncio
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
from database import utc_now_iso  # noqa: E402
from errors import AccessDeniedError, ConflictError, NotFoundError, ValidationError  # noqa: E402
from restaurants import lifecycle  # noqa: E402
from restaurants.memory import MemoryRestaurantStore  # noqa: E402
from restaurants.models import Restaurant  # noqa: E402
from restaurants.service import VerificationService  # noqa: E402


def _assert(cond: bool, message: str) -> None:
    if not cond:
        raise AssertionError(message)


def _claims(email: str, role: str) -> SessionClaims:
    return SessionClaims(user_id=user_id_for_email(email), email=email, role=role, expires_at=2**31)


async def _seed(store: MemoryRestaurantStore, restaurant_id: str, status: str) -> Restaurant:
    now = utc_now_iso()
    restaurant = Restaurant(
        id=restaurant_id,
        owner_id=f"owner-{restaurant_id}",
        name=f"Smoke {restaurant_id}",
        address="Bagdat Cd. 100, Istanbul",
        qr_code=restaurant_id,
        verification_status=status,
        onboarding_step=lifecycle.STEP_COMPLETE,
        created_at=now,
        updated_at=now,
    )
    return await store.create_restaurant(restaurant, idempotency_key=None, document_ids=[])


async def _expect(error_type: type[Exception], coro, message: str) -> None:
    try:
        await coro
    except error_type:
        return
    raise AssertionError(message)


async def _run_checks() -> None:
    store = MemoryRestaurantStore()
    service = VerificationService(store, timeout_sec=5)
    admin = _claims("admin@dizmen.example", ROLE_SUPER_ADMIN)
    second_admin = _claims("ops@dizmen.example", ROLE_SUPER_ADMIN)
    owner = _claims("owner@cafe.example", ROLE_RESTAURANT_AUTHORITY)

    await _seed(store, "rest-pending", lifecycle.STATUS_PENDING)
    await _seed(store, "rest-verified", lifecycle.STATUS_VERIFIED)
    await _seed(store, "rest-race", lifecycle.STATUS_PENDING)

    await _expect(AccessDeniedError, service.list_restaurants(owner), "owners cannot list restaurants")
    await _expect(AccessDeniedError, service.verify(owner, "rest-pending"), "owners cannot verify")
    await _expect(NotFoundError, service.verify(admin, "rest-missing"), "unknown restaurant is 404")
    await _expect(ValidationError, service.list_restaurants(admin, "archived"), "unknown status filter is refused")

    pending = await service.list_restaurants(admin, lifecycle.STATUS_PENDING)
    _assert({r.id for r in pending} == {"rest-pending", "rest-race"}, "pending filter lists pending only")

    # Block with an empty reason: refused, nothing changes.
    for reason in ("", "   "):
        await _expect(ValidationError, service.block(admin, "rest-verified", reason), "block needs a reason")
    unchanged = await store.get_restaurant("rest-verified")
    _assert(unchanged.verification_status == lifecycle.STATUS_VERIFIED, "refused block keeps the status")
    _assert(await store.list_audit_log("rest-verified") == [], "refused block writes no audit entry")

    await _expect(ValidationError, service.reject(admin, "rest-pending", ""), "reject needs a reason")
    await _expect(ValidationError, service.unblock(admin, "rest-pending"), "cannot unblock a pending restaurant")
    await _expect(ValidationError, service.block(admin, "rest-pending", "spam"), "cannot block a pending restaurant")
    await _expect(
        ValidationError,
        service.apply_action(admin, "rest-pending", "archive"),
        "unknown actions are refused",
    )

    blocked = await service.block(admin, "rest-verified", "Health inspection failed")
    _assert(blocked.verification_status == lifecycle.STATUS_BLOCKED, "verified -> blocked")
    _assert(blocked.rejection_reason == "Health inspection failed", "block reason is stored")
    await _expect(ValidationError, service.verify(admin, "rest-verified"), "cannot verify a blocked restaurant")

    unblocked = await service.unblock(admin, "rest-verified")
    _assert(unblocked.verification_status == lifecycle.STATUS_VERIFIED, "blocked -> verified")
    _assert(unblocked.rejection_reason is None, "unblock clears the reason")

    verified = await service.verify(admin, "rest-pending", expected_status=lifecycle.STATUS_PENDING)
    _assert(verified.verification_status == lifecycle.STATUS_VERIFIED, "pending -> verified")
    _assert(verified.verified_at is not None, "verify records verified_at")

    # Two admins open the same pending restaurant; both act on what they saw.
    results = await asyncio.gather(
        service.verify(admin, "rest-race", expected_status=lifecycle.STATUS_PENDING),
        service.apply_action(
            second_admin,
            "rest-race",
            lifecycle.ACTION_REJECT,
            reason="Duplicate listing",
            expected_status=lifecycle.STATUS_PENDING,
        ),
        return_exceptions=True,
    )
    winners = [r for r in results if isinstance(r, Restaurant)]
    losers = [r for r in results if isinstance(r, ConflictError)]
    _assert(len(winners) == 1 and len(losers) == 1, f"expected one winner and one conflict, got {results}")
    final = await store.get_restaurant("rest-race")
    _assert(final.verification_status == winners[0].verification_status, "store holds the winner's status")

    # The storage layer refuses stale compare-and-set directly as well.
    stale = await store.update_status(
        "rest-race",
        expected_status=lifecycle.STATUS_PENDING,
        new_status=lifecycle.STATUS_VERIFIED,
        rejection_reason=None,
        verified_at=None,
    )
    _assert(stale is None, "stale expected_status must not update")

    audit = [entry.action for entry in await store.list_audit_log("rest-verified")]
    _assert(audit == ["block", "unblock"], f"unexpected audit trail: {audit}")

    stats = await service.stats(admin)
    _assert(stats["restaurants"] == 3, "stats count every restaurant")
    _assert(sum(stats["by_status"].values()) == 3, "per-status counts add up")
    _assert(stats["by_status"][lifecycle.STATUS_PENDING] == 0, "no pending restaurants left")


def main() -> None:
    asyncio.run(_run_checks())
    print("OK: verification state machine smoke passed.")


if __name__ == "__main__":
    main()
