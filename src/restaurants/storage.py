"""Storage contracts for the restaurant lifecycle.

Two implementations exist: `repository` (SQLite, production) and `memory`
(process-local, tests and demo mode).
"""

from __future__ import annotations

from typing import Protocol

from restaurants.models import AuditEntry, Restaurant, RestaurantDraft, VerificationDocument


class RestaurantStore(Protocol):
    async def get_restaurant(self, restaurant_id: str) -> Restaurant | None:
        """Restaurant by id."""

    async def get_restaurant_by_owner(self, owner_id: str) -> Restaurant | None:
        """Most recent restaurant owned by `owner_id`."""

    async def get_restaurant_by_qr(self, qr_code: str) -> Restaurant | None:
        """Restaurant the QR code points to."""

    async def list_restaurants(self, status: str | None = None) -> list[Restaurant]:
        """All restaurants, newest first, optionally filtered by status."""

    async def count_by_status(self) -> dict[str, int]:
        """Restaurant counts keyed by verification status."""

    async def find_submission(self, owner_id: str, idempotency_key: str) -> str | None:
        """Restaurant id recorded for an earlier submission with this key."""

    async def create_restaurant(
        self,
        restaurant: Restaurant,
        *,
        idempotency_key: str | None,
        document_ids: list[int],
    ) -> Restaurant:
        """Insert the restaurant, record the key, attach pending documents.

        Raises ConflictError when the idempotency key is already taken.
        """

    async def replace_submission(
        self,
        restaurant: Restaurant,
        *,
        expected_status: str,
        idempotency_key: str | None,
        document_ids: list[int],
    ) -> Restaurant | None:
        """Overwrite a resubmitted restaurant. None when its status moved on."""

    async def update_status(
        self,
        restaurant_id: str,
        *,
        expected_status: str,
        new_status: str,
        rejection_reason: str | None,
        verified_at: str | None,
    ) -> Restaurant | None:
        """Compare-and-set the verification status. None when `expected_status` is stale."""

    async def add_document(self, document: VerificationDocument) -> VerificationDocument:
        """Store document metadata and return it with its id."""

    async def list_documents(self, owner_id: str, *, pending_only: bool = True) -> list[VerificationDocument]:
        """Documents of an owner; pending ones are not attached to a restaurant yet."""

    async def list_restaurant_documents(self, restaurant_id: str) -> list[VerificationDocument]:
        """Documents attached to a restaurant."""

    async def delete_document(self, owner_id: str, document_id: int) -> VerificationDocument | None:
        """Remove a pending document. Returns the removed row."""

    async def write_audit_log(self, *, restaurant_id: str, actor_id: str, action: str, payload_json: str) -> None:
        """Append a lifecycle audit entry."""

    async def list_audit_log(self, restaurant_id: str) -> list[AuditEntry]:
        """Audit entries in insertion order."""


class DraftStore(Protocol):
    async def load(self, owner_id: str) -> RestaurantDraft | None:
        """Current draft of `owner_id`."""

    async def save(self, draft: RestaurantDraft, *, expected_version: int | None = None) -> RestaurantDraft:
        """Overwrite the draft and bump its version.

        With `expected_version`, raises ConflictError when the stored version differs.
        """

    async def clear(self, owner_id: str) -> bool:
        """Drop the draft. True if one existed."""
