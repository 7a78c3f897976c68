"""Onboarding steps and verification status transitions."""

from __future__ import annotations

from typing import Final


STEP_RESTAURANT_INFO: Final = "restaurant_info"
STEP_VERIFICATION_DOCUMENTS: Final = "verification_documents"
STEP_COMPLETE: Final = "complete"

# Wizard order. A draft can only sit on one of the first two.
ONBOARDING_STEPS: Final[tuple[str, ...]] = (
    STEP_RESTAURANT_INFO,
    STEP_VERIFICATION_DOCUMENTS,
    STEP_COMPLETE,
)
DRAFT_STEPS: Final[frozenset[str]] = frozenset({STEP_RESTAURANT_INFO, STEP_VERIFICATION_DOCUMENTS})

STATUS_PENDING: Final = "pending"
STATUS_VERIFIED: Final = "verified"
STATUS_REJECTED: Final = "rejected"
STATUS_BLOCKED: Final = "blocked"

VERIFICATION_STATUSES: Final[frozenset[str]] = frozenset(
    {STATUS_PENDING, STATUS_VERIFIED, STATUS_REJECTED, STATUS_BLOCKED}
)

ACTION_VERIFY: Final = "verify"
ACTION_REJECT: Final = "reject"
ACTION_BLOCK: Final = "block"
ACTION_UNBLOCK: Final = "unblock"

# action -> (allowed current statuses, target status)
ADMIN_TRANSITIONS: Final[dict[str, tuple[frozenset[str], str]]] = {
    ACTION_VERIFY: (frozenset({STATUS_PENDING}), STATUS_VERIFIED),
    ACTION_REJECT: (frozenset({STATUS_PENDING}), STATUS_REJECTED),
    ACTION_BLOCK: (frozenset({STATUS_VERIFIED}), STATUS_BLOCKED),
    ACTION_UNBLOCK: (frozenset({STATUS_BLOCKED}), STATUS_VERIFIED),
}
ACTIONS_REQUIRING_REASON: Final[frozenset[str]] = frozenset({ACTION_REJECT, ACTION_BLOCK})

STATUS_TITLES: Final[dict[str, str]] = {
    STATUS_PENDING: "Pending Review",
    STATUS_VERIFIED: "Verified",
    STATUS_REJECTED: "Rejected",
    STATUS_BLOCKED: "Blocked",
}


def step_number(step: str) -> int:
    """1-based position of `step` in the wizard (complete is 3)."""
    return ONBOARDING_STEPS.index(step) + 1


def progress_percent(step: str) -> int:
    return {STEP_RESTAURANT_INFO: 33, STEP_VERIFICATION_DOCUMENTS: 66}.get(step, 100)


def submission_status(*, document_review: bool) -> str:
    """Status a freshly submitted restaurant lands in."""
    return STATUS_PENDING if document_review else STATUS_VERIFIED


def is_publicly_visible(status: str) -> bool:
    """Only verified restaurants serve their menu through the QR code."""
    return status == STATUS_VERIFIED


def can_resubmit(status: str) -> bool:
    return status == STATUS_REJECTED
