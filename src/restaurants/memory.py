"""Process-local restaurant stores for tests and STORAGE_BACKEND=memory."""

from __future__ import annotations

import copy
from dataclasses import replace

from database import utc_now_iso
from errors import ConflictError, StorageError
from restaurants.models import AuditEntry, Restaurant, RestaurantDraft, VerificationDocument


class MemoryRestaurantStore:
    def __init__(self) -> None:
        self._restaurants: dict[str, Restaurant] = {}
        self._documents: dict[int, VerificationDocument] = {}
        self._submissions: dict[tuple[str, str], str] = {}
        self._audit: list[AuditEntry] = []
        self._next_document_id = 1

    async def get_restaurant(self, restaurant_id: str) -> Restaurant | None:
        restaurant = self._restaurants.get(str(restaurant_id))
        return copy.deepcopy(restaurant) if restaurant else None

    async def get_restaurant_by_owner(self, owner_id: str) -> Restaurant | None:
        owned = [r for r in self._restaurants.values() if r.owner_id == str(owner_id)]
        if not owned:
            return None
        return copy.deepcopy(max(owned, key=lambda r: r.created_at))

    async def get_restaurant_by_qr(self, qr_code: str) -> Restaurant | None:
        for restaurant in self._restaurants.values():
            if restaurant.qr_code == str(qr_code):
                return copy.deepcopy(restaurant)
        return None

    async def list_restaurants(self, status: str | None = None) -> list[Restaurant]:
        rows = [
            copy.deepcopy(r)
            for r in self._restaurants.values()
            if status is None or r.verification_status == status
        ]
        return sorted(rows, key=lambda r: r.created_at, reverse=True)

    async def count_by_status(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for restaurant in self._restaurants.values():
            counts[restaurant.verification_status] = counts.get(restaurant.verification_status, 0) + 1
        return counts

    async def find_submission(self, owner_id: str, idempotency_key: str) -> str | None:
        return self._submissions.get((str(owner_id), str(idempotency_key)))

    def _claim_key(self, owner_id: str, restaurant_id: str, idempotency_key: str | None) -> None:
        if not idempotency_key:
            return
        key = (owner_id, idempotency_key)
        if key in self._submissions:
            raise ConflictError("This submission was already processed.")
        self._submissions[key] = restaurant_id

    def _attach(self, owner_id: str, restaurant_id: str, document_ids: list[int]) -> None:
        for doc_id in document_ids:
            doc = self._documents.get(int(doc_id))
            if doc and doc.owner_id == owner_id and doc.restaurant_id is None:
                doc.restaurant_id = restaurant_id

    async def create_restaurant(
        self,
        restaurant: Restaurant,
        *,
        idempotency_key: str | None,
        document_ids: list[int],
    ) -> Restaurant:
        self._claim_key(restaurant.owner_id, restaurant.id, idempotency_key)
        self._restaurants[restaurant.id] = copy.deepcopy(restaurant)
        self._attach(restaurant.owner_id, restaurant.id, document_ids)
        return copy.deepcopy(restaurant)

    async def replace_submission(
        self,
        restaurant: Restaurant,
        *,
        expected_status: str,
        idempotency_key: str | None,
        document_ids: list[int],
    ) -> Restaurant | None:
        current = self._restaurants.get(restaurant.id)
        if not current or current.verification_status != expected_status:
            return None
        self._claim_key(restaurant.owner_id, restaurant.id, idempotency_key)
        self._restaurants[restaurant.id] = replace(
            copy.deepcopy(restaurant),
            qr_code=current.qr_code,
            created_at=current.created_at,
        )
        self._attach(restaurant.owner_id, restaurant.id, document_ids)
        return copy.deepcopy(self._restaurants[restaurant.id])

    async def update_status(
        self,
        restaurant_id: str,
        *,
        expected_status: str,
        new_status: str,
        rejection_reason: str | None,
        verified_at: str | None,
    ) -> Restaurant | None:
        current = self._restaurants.get(str(restaurant_id))
        if not current or current.verification_status != expected_status:
            return None
        current.verification_status = new_status
        current.rejection_reason = rejection_reason
        if verified_at:
            current.verified_at = verified_at
        current.updated_at = utc_now_iso()
        return copy.deepcopy(current)

    async def add_document(self, document: VerificationDocument) -> VerificationDocument:
        stored = replace(document, id=self._next_document_id)
        self._next_document_id += 1
        self._documents[stored.id] = stored
        return copy.deepcopy(stored)

    async def list_documents(self, owner_id: str, *, pending_only: bool = True) -> list[VerificationDocument]:
        return [
            copy.deepcopy(doc)
            for doc in sorted(self._documents.values(), key=lambda d: d.id)
            if doc.owner_id == str(owner_id) and (not pending_only or doc.restaurant_id is None)
        ]

    async def list_restaurant_documents(self, restaurant_id: str) -> list[VerificationDocument]:
        return [
            copy.deepcopy(doc)
            for doc in sorted(self._documents.values(), key=lambda d: d.id)
            if doc.restaurant_id == str(restaurant_id)
        ]

    async def delete_document(self, owner_id: str, document_id: int) -> VerificationDocument | None:
        doc = self._documents.get(int(document_id))
        if not doc or doc.owner_id != str(owner_id) or doc.restaurant_id is not None:
            return None
        return self._documents.pop(int(document_id))

    async def write_audit_log(self, *, restaurant_id: str, actor_id: str, action: str, payload_json: str) -> None:
        self._audit.append(
            AuditEntry(
                id=len(self._audit) + 1,
                restaurant_id=str(restaurant_id),
                actor_id=str(actor_id),
                action=str(action),
                payload_json=payload_json,
                created_at=utc_now_iso(),
            )
        )

    async def list_audit_log(self, restaurant_id: str) -> list[AuditEntry]:
        return [copy.deepcopy(e) for e in self._audit if e.restaurant_id == str(restaurant_id)]


class MemoryDraftStore:
    def __init__(self) -> None:
        self._drafts: dict[str, RestaurantDraft] = {}
        # Test hook: number of upcoming saves that fail like a broken disk.
        self.fail_next_saves = 0

    async def load(self, owner_id: str) -> RestaurantDraft | None:
        draft = self._drafts.get(str(owner_id))
        return copy.deepcopy(draft) if draft else None

    async def save(self, draft: RestaurantDraft, *, expected_version: int | None = None) -> RestaurantDraft:
        if self.fail_next_saves > 0:
            self.fail_next_saves -= 1
            raise StorageError("Storage failure in save_draft: simulated write error")
        current = self._drafts.get(draft.owner_id)
        current_version = current.version if current else 0
        if expected_version is not None and int(expected_version) != current_version:
            raise ConflictError("The draft was changed in another session. Reload it before saving.")
        stored = replace(copy.deepcopy(draft), version=current_version + 1)
        self._drafts[draft.owner_id] = stored
        return copy.deepcopy(stored)

    async def clear(self, owner_id: str) -> bool:
        return self._drafts.pop(str(owner_id), None) is not None
