#!/usr/bin/env python3
"""
Session token smoke-check: roles come from the server, not from the client.

What it validates:
- any e-mail gets a session; the same e-mail maps to the same user id
- super_admin is granted only to configured ADMIN_EMAILS
- a client asking for super_admin is downgraded
- tampered, foreign-secret and expired tokens are rejected

Run:
  python3 scripts/smoke_session_tokens.py
"""

from __future__ import annotations

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

from auth import (  # noqa: E402
    ROLE_CUSTOMER,
    ROLE_RESTAURANT_AUTHORITY,
    ROLE_SUPER_ADMIN,
    issue_session_token,
    user_id_for_email,
    verify_session_token,
)


SECRET = "smoke-session-secret"
NOW = 1_780_000_000.0


def _assert(cond: bool, message: str) -> None:
    if not cond:
        raise AssertionError(message)


def main() -> None:
    admins = ["admin@dizmen.example"]

    token, claims = issue_session_token(
        "  Owner@TestCafe.example ",
        secret=SECRET,
        ttl_sec=3600,
        admin_emails=admins,
        now=NOW,
    )
    _assert(claims.email == "owner@testcafe.example", "e-mail is normalized")
    _assert(claims.role == ROLE_RESTAURANT_AUTHORITY, "default role is restaurant_authority")
    _assert(claims.user_id == user_id_for_email("owner@testcafe.example"), "user id is derived from the e-mail")
    _assert(claims.name == "owner", "display name is the e-mail local part")

    verified = verify_session_token(token, secret=SECRET, now=NOW + 10)
    _assert(verified == claims, "valid token round-trips its claims")

    _, customer = issue_session_token("guest@example.com", secret=SECRET, ttl_sec=60, requested_role="customer", now=NOW)
    _assert(customer.role == ROLE_CUSTOMER, "customers may pick the customer role")

    _, sneaky = issue_session_token(
        "owner@testcafe.example",
        secret=SECRET,
        ttl_sec=60,
        requested_role=ROLE_SUPER_ADMIN,
        admin_emails=admins,
        now=NOW,
    )
    _assert(sneaky.role == ROLE_RESTAURANT_AUTHORITY, "clients cannot grant themselves super_admin")

    _, admin = issue_session_token("ADMIN@dizmen.example", secret=SECRET, ttl_sec=60, admin_emails=admins, now=NOW)
    _assert(admin.role == ROLE_SUPER_ADMIN and admin.is_admin, "configured admins get super_admin")

    payload, signature = token.rsplit(".", 1)
    forged_payload = payload[:-2] + ("AA" if payload[-2:] != "AA" else "BB")
    _assert(verify_session_token(f"{forged_payload}.{signature}", secret=SECRET, now=NOW) is None, "tampered payload")
    _assert(verify_session_token(token, secret="other-secret", now=NOW) is None, "foreign secret")
    _assert(verify_session_token(token, secret=SECRET, now=NOW + 3600) is None, "expired token")
    _assert(verify_session_token("garbage", secret=SECRET, now=NOW) is None, "garbage token")
    _assert(verify_session_token("", secret=SECRET, now=NOW) is None, "empty token")
    _assert(verify_session_token("caf\u00e9.deadbeef", secret=SECRET, now=NOW) is None, "non-ASCII token")
    _assert(verify_session_token(f"{payload}.\u00e9", secret=SECRET, now=NOW) is None, "non-ASCII signature")

    try:
        issue_session_token("owner@testcafe.example", secret="", ttl_sec=60)
        raise AssertionError("issuing without a secret must fail")
    except ValueError:
        pass

    print("OK: session tokens smoke passed.")


if __name__ == "__main__":
    main()
