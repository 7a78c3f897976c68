"""Signed session tokens.

Login itself is a pass-through (any e-mail gets a session), but every
privileged operation checks a server-issued claim instead of trusting the
client: the role is decided here, and the token is HMAC-SHA256 signed with
SESSION_SECRET.

Token format: base64url(json claims) + "." + hex(hmac).
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Final


ROLE_SUPER_ADMIN: Final = "super_admin"
ROLE_RESTAURANT_AUTHORITY: Final = "restaurant_authority"
ROLE_CUSTOMER: Final = "customer"
SELF_SERVICE_ROLES: Final[frozenset[str]] = frozenset({ROLE_RESTAURANT_AUTHORITY, ROLE_CUSTOMER})


@dataclass(frozen=True, slots=True)
class SessionClaims:
    user_id: str
    email: str
    role: str
    expires_at: int

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_SUPER_ADMIN

    @property
    def name(self) -> str:
        return self.email.split("@", 1)[0]


def user_id_for_email(email: str) -> str:
    """Stable user id so the same e-mail finds its drafts again."""
    digest = hashlib.sha256(email.strip().lower().encode("utf-8")).hexdigest()
    return f"user-{digest[:16]}"


def resolve_role(email: str, requested_role: str | None, admin_emails: list[str]) -> str:
    """Admin role comes only from configuration, never from the request."""
    normalized = email.strip().lower()
    if normalized in {e.lower() for e in admin_emails}:
        return ROLE_SUPER_ADMIN
    role = str(requested_role or "").strip().lower()
    if role in SELF_SERVICE_ROLES:
        return role
    return ROLE_RESTAURANT_AUTHORITY


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _sign(payload: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload.encode("ascii"), hashlib.sha256).hexdigest()


def issue_session_token(
    email: str,
    *,
    secret: str,
    ttl_sec: int,
    requested_role: str | None = None,
    admin_emails: list[str] | None = None,
    now: float | None = None,
) -> tuple[str, SessionClaims]:
    if not secret:
        raise ValueError("session secret is not configured")
    normalized = email.strip().lower()
    claims = SessionClaims(
        user_id=user_id_for_email(normalized),
        email=normalized,
        role=resolve_role(normalized, requested_role, admin_emails or []),
        expires_at=int((now if now is not None else time.time()) + ttl_sec),
    )
    body = json.dumps(
        {"uid": claims.user_id, "email": claims.email, "role": claims.role, "exp": claims.expires_at},
        separators=(",", ":"),
        sort_keys=True,
    )
    payload = _b64encode(body.encode("utf-8"))
    return f"{payload}.{_sign(payload, secret)}", claims


def verify_session_token(token: str, *, secret: str, now: float | None = None) -> SessionClaims | None:
    """Return claims for a valid, unexpired token; None otherwise."""
    if not token or not secret or "." not in token or not token.isascii():
        return None
    payload, signature = token.rsplit(".", 1)
    if not hmac.compare_digest(_sign(payload, secret), signature):
        return None
    try:
        data = json.loads(_b64decode(payload))
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    try:
        claims = SessionClaims(
            user_id=str(data["uid"]),
            email=str(data["email"]),
            role=str(data["role"]),
            expires_at=int(data["exp"]),
        )
    except (KeyError, TypeError, ValueError):
        return None
    if claims.expires_at <= int(now if now is not None else time.time()):
        return None
    return claims
