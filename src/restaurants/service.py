"""Onboarding wizard and admin verification use-cases."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, TypeVar

from auth import ROLE_RESTAURANT_AUTHORITY, SessionClaims
from config import CFG, is_document_review_enabled
from database import utc_now_iso
from errors import (
    AccessDeniedError,
    ConflictError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from restaurants import lifecycle
from restaurants.documents import DEFAULT_DOCUMENT_TYPE, DocumentStorage
from restaurants.forms import (
    STEP_ONE_REQUIRED,
    empty_form,
    normalize_form_data,
    validate_restaurant_info,
)
from restaurants.models import (
    Restaurant,
    RestaurantDraft,
    SocialMediaLink,
    VerificationDocument,
    WizardState,
)
from restaurants.storage import DraftStore, RestaurantStore

if TYPE_CHECKING:
    from menus.storage import MenuStore


logger = logging.getLogger(__name__)

T = TypeVar("T")

IDEMPOTENCY_KEY_MAX_LENGTH = 128


def _to_json(data: dict[str, Any]) -> str:
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


def _parse_iso(raw_value: str | None) -> datetime | None:
    if not raw_value:
        return None
    try:
        parsed = datetime.fromisoformat(str(raw_value))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def next_save_timestamp(previous: str | None) -> str:
    """Wall-clock now, nudged past `previous` so saves stay strictly ordered."""
    now = datetime.now(timezone.utc)
    prev = _parse_iso(previous)
    if prev and now <= prev:
        now = prev + timedelta(microseconds=1)
    return now.isoformat()


def new_restaurant_id() -> str:
    return f"rest-{secrets.token_hex(6)}"


def form_from_restaurant(restaurant: Restaurant) -> dict[str, Any]:
    return {
        "name": restaurant.name,
        "description": restaurant.description,
        "address": restaurant.address,
        "phone": restaurant.phone,
        "website": restaurant.website,
        "google_location_url": restaurant.google_location_url,
        "social_media_links": [
            {"platform": link.platform, "url": link.url} for link in restaurant.social_media_links
        ],
    }


class TimedStorage:
    """Timeout guard around store calls."""

    def __init__(self, timeout_sec: float | None) -> None:
        self.timeout_sec = timeout_sec if timeout_sec is not None else CFG.storage_timeout_sec

    async def _call(self, awaitable: Awaitable[T], *, what: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_sec)
        except asyncio.TimeoutError as error:
            logger.error("Storage call %s timed out after %.1fs", what, self.timeout_sec)
            raise StorageError(f"Storage did not answer in time ({what}).") from error


def _require_owner(actor: SessionClaims) -> None:
    if actor.role != ROLE_RESTAURANT_AUTHORITY:
        raise AccessDeniedError("Only restaurant accounts can register a restaurant.")


class OnboardingService(TimedStorage):
    """Resumable registration wizard: restaurant_info -> verification_documents -> complete."""

    def __init__(
        self,
        restaurants: RestaurantStore,
        drafts: DraftStore,
        documents: DocumentStorage,
        *,
        document_review: bool | None = None,
        timeout_sec: float | None = None,
    ) -> None:
        super().__init__(timeout_sec)
        self.restaurants = restaurants
        self.drafts = drafts
        self.documents = documents
        self.document_review = is_document_review_enabled() if document_review is None else bool(document_review)
        # owner_id -> (lock, callers holding or waiting)
        self._submit_locks: dict[str, tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def _owner_lock(self, owner_id: str) -> AsyncIterator[None]:
        lock, users = self._submit_locks.get(owner_id) or (asyncio.Lock(), 0)
        self._submit_locks[owner_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._submit_locks[owner_id]
            if users <= 1:
                del self._submit_locks[owner_id]
            else:
                self._submit_locks[owner_id] = (lock, users - 1)

    async def _active_restaurant(self, owner_id: str) -> Restaurant | None:
        """Owner's restaurant unless it was rejected (rejected owners go through the wizard again)."""
        restaurant = await self._call(self.restaurants.get_restaurant_by_owner(owner_id), what="get_restaurant_by_owner")
        if restaurant and not lifecycle.can_resubmit(restaurant.verification_status):
            return restaurant
        return None

    async def _assert_wizard_open(self, owner_id: str) -> None:
        if await self._active_restaurant(owner_id):
            raise ValidationError("Your restaurant is already registered.")

    async def load_wizard(self, actor: SessionClaims) -> WizardState:
        """Decide between dashboard and wizard; resume a saved draft when there is one."""
        _require_owner(actor)
        owner_id = actor.user_id
        restaurant = await self._call(self.restaurants.get_restaurant_by_owner(owner_id), what="get_restaurant_by_owner")
        if restaurant and not lifecycle.can_resubmit(restaurant.verification_status):
            return WizardState(
                mode="dashboard",
                step=lifecycle.STEP_COMPLETE,
                restaurant=restaurant,
                rejection_reason=restaurant.rejection_reason,
            )

        documents = await self._call(self.restaurants.list_documents(owner_id), what="list_documents")
        rejection_reason = restaurant.rejection_reason if restaurant else None
        draft = await self._call(self.drafts.load(owner_id), what="load_draft")
        if draft:
            logger.info("Owner %s resumed onboarding draft at step %s", owner_id, draft.step)
            return WizardState(
                mode="wizard",
                step=draft.step,
                form_data=normalize_form_data(draft.form_data),
                resumed=True,
                last_saved=draft.last_saved,
                version=draft.version,
                documents=documents,
                restaurant=restaurant,
                rejection_reason=rejection_reason,
            )

        form = form_from_restaurant(restaurant) if restaurant else empty_form()
        return WizardState(
            mode="wizard",
            step=lifecycle.STEP_RESTAURANT_INFO,
            form_data=form,
            documents=documents,
            restaurant=restaurant,
            rejection_reason=rejection_reason,
        )

    async def get_draft(self, actor: SessionClaims) -> RestaurantDraft | None:
        _require_owner(actor)
        return await self._call(self.drafts.load(actor.user_id), what="load_draft")

    async def save_draft(
        self,
        actor: SessionClaims,
        *,
        step: str,
        form_data: dict[str, Any] | None,
        expected_version: int | None = None,
    ) -> RestaurantDraft:
        """Overwrite the owner's draft. Valid or not, the form is kept as typed."""
        _require_owner(actor)
        if step not in lifecycle.DRAFT_STEPS:
            raise ValidationError("Unknown onboarding step.", {"step": "Unknown onboarding step"})
        owner_id = actor.user_id
        await self._assert_wizard_open(owner_id)

        previous = await self._call(self.drafts.load(owner_id), what="load_draft")
        draft = RestaurantDraft(
            owner_id=owner_id,
            step=step,
            form_data=normalize_form_data(form_data),
            last_saved=next_save_timestamp(previous.last_saved if previous else None),
        )
        saved = await self._call(self.drafts.save(draft, expected_version=expected_version), what="save_draft")
        logger.info("Owner %s saved onboarding draft v%s at step %s", owner_id, saved.version, step)
        return saved

    async def clear_draft(self, actor: SessionClaims) -> bool:
        _require_owner(actor)
        return await self._call(self.drafts.clear(actor.user_id), what="clear_draft")

    async def advance(
        self,
        actor: SessionClaims,
        *,
        form_data: dict[str, Any] | None,
        expected_version: int | None = None,
    ) -> RestaurantDraft:
        """restaurant_info -> verification_documents, auto-saving the draft."""
        _require_owner(actor)
        form = normalize_form_data(form_data)
        validate_restaurant_info(form, fields=STEP_ONE_REQUIRED + ("website", "google_location_url", "social_media_links"))
        return await self.save_draft(
            actor,
            step=lifecycle.STEP_VERIFICATION_DOCUMENTS,
            form_data=form,
            expected_version=expected_version,
        )

    async def go_back(
        self,
        actor: SessionClaims,
        *,
        form_data: dict[str, Any] | None = None,
        expected_version: int | None = None,
    ) -> RestaurantDraft:
        _require_owner(actor)
        if form_data is None:
            current = await self._call(self.drafts.load(actor.user_id), what="load_draft")
            form_data = current.form_data if current else None
        return await self.save_draft(
            actor,
            step=lifecycle.STEP_RESTAURANT_INFO,
            form_data=form_data,
            expected_version=expected_version,
        )

    async def upload_document(
        self,
        actor: SessionClaims,
        *,
        file_name: str,
        content_type: str | None,
        data: bytes,
        document_type: str = DEFAULT_DOCUMENT_TYPE,
    ) -> VerificationDocument:
        _require_owner(actor)
        owner_id = actor.user_id
        await self._assert_wizard_open(owner_id)
        canonical_type = self.documents.check(file_name, content_type, len(data))
        stored_path = await self.documents.write(owner_id, file_name, data)
        document = VerificationDocument(
            id=0,
            owner_id=owner_id,
            document_type=str(document_type or DEFAULT_DOCUMENT_TYPE),
            file_name=stored_path.name.split("_", 1)[-1],
            content_type=canonical_type,
            size_bytes=len(data),
            stored_path=str(stored_path),
            uploaded_at=utc_now_iso(),
        )
        try:
            saved = await self._call(self.restaurants.add_document(document), what="add_document")
        except StorageError:
            await self.documents.remove(stored_path)
            raise
        logger.info("Owner %s uploaded document %s (%s bytes)", owner_id, saved.id, saved.size_bytes)
        return saved

    async def remove_document(self, actor: SessionClaims, document_id: int) -> VerificationDocument:
        _require_owner(actor)
        removed = await self._call(
            self.restaurants.delete_document(actor.user_id, int(document_id)),
            what="delete_document",
        )
        if not removed:
            raise NotFoundError("Document not found.")
        await self.documents.remove(removed.stored_path)
        return removed

    async def submit(
        self,
        actor: SessionClaims,
        *,
        form_data: dict[str, Any] | None,
        idempotency_key: str | None = None,
    ) -> Restaurant:
        """Final submission. Repeats with the same idempotency key return the first result."""
        _require_owner(actor)
        owner_id = actor.user_id
        key = str(idempotency_key or "").strip() or None
        if key and len(key) > IDEMPOTENCY_KEY_MAX_LENGTH:
            raise ValidationError("Idempotency key is too long.")

        async with self._owner_lock(owner_id):
            if key:
                existing_id = await self._call(self.restaurants.find_submission(owner_id, key), what="find_submission")
                if existing_id:
                    existing = await self._call(self.restaurants.get_restaurant(existing_id), what="get_restaurant")
                    if existing:
                        logger.info("Owner %s repeated submission %s; returning %s", owner_id, key, existing.id)
                        return existing

            form = normalize_form_data(form_data)
            validate_restaurant_info(form)

            current = await self._call(self.restaurants.get_restaurant_by_owner(owner_id), what="get_restaurant_by_owner")
            if current and not lifecycle.can_resubmit(current.verification_status):
                raise ValidationError("Your restaurant is already registered.")

            documents = await self._call(self.restaurants.list_documents(owner_id), what="list_documents")
            if self.document_review and not documents:
                raise ValidationError(
                    "Please upload at least one verification document",
                    {"documents": "At least one verification document is required"},
                )

            now = utc_now_iso()
            status = lifecycle.submission_status(document_review=self.document_review)
            restaurant = Restaurant(
                id=current.id if current else new_restaurant_id(),
                owner_id=owner_id,
                name=form["name"],
                description=form["description"],
                address=form["address"],
                phone=form["phone"],
                website=form["website"],
                google_location_url=form["google_location_url"],
                social_media_links=[
                    SocialMediaLink(platform=link["platform"], url=link["url"])
                    for link in form["social_media_links"]
                ],
                qr_code="",
                verification_status=status,
                onboarding_step=lifecycle.STEP_COMPLETE,
                rejection_reason=None,
                verified_at=now if status == lifecycle.STATUS_VERIFIED else None,
                created_at=current.created_at if current else now,
                updated_at=now,
            )
            restaurant.qr_code = current.qr_code if current else restaurant.id
            document_ids = [doc.id for doc in documents]

            if current:
                saved = await self._call(
                    self.restaurants.replace_submission(
                        restaurant,
                        expected_status=lifecycle.STATUS_REJECTED,
                        idempotency_key=key,
                        document_ids=document_ids,
                    ),
                    what="replace_submission",
                )
                if saved is None:
                    raise ConflictError("The restaurant status changed while resubmitting. Reload and try again.")
                action = "resubmitted"
            else:
                saved = await self._call(
                    self.restaurants.create_restaurant(
                        restaurant,
                        idempotency_key=key,
                        document_ids=document_ids,
                    ),
                    what="create_restaurant",
                )
                action = "submitted"

            await self._call(
                self.restaurants.write_audit_log(
                    restaurant_id=saved.id,
                    actor_id=owner_id,
                    action=action,
                    payload_json=_to_json(
                        {
                            "status": saved.verification_status,
                            "documents": len(document_ids),
                            "idempotency_key": key,
                        }
                    ),
                ),
                what="write_audit_log",
            )
            try:
                await self._call(self.drafts.clear(owner_id), what="clear_draft")
            except StorageError:
                # The restaurant exists, so load_wizard ignores the stale draft.
                logger.exception("Failed to clear onboarding draft for owner %s", owner_id)

        logger.info(
            "Restaurant %s %s by owner %s with status %s",
            saved.id,
            action,
            owner_id,
            saved.verification_status,
        )
        return saved


class VerificationService(TimedStorage):
    """Administrator decisions on restaurants."""

    def __init__(
        self,
        restaurants: RestaurantStore,
        *,
        menus: MenuStore | None = None,
        timeout_sec: float | None = None,
    ) -> None:
        super().__init__(timeout_sec)
        self.restaurants = restaurants
        self.menus = menus

    def _require_admin(self, actor: SessionClaims) -> None:
        if not actor.is_admin:
            raise AccessDeniedError("This action is available to administrators only.")

    async def list_restaurants(self, actor: SessionClaims, status: str | None = None) -> list[Restaurant]:
        self._require_admin(actor)
        if status and status not in lifecycle.VERIFICATION_STATUSES:
            raise ValidationError(f"Unknown verification status: {status}")
        return await self._call(self.restaurants.list_restaurants(status), what="list_restaurants")

    async def get_restaurant(self, actor: SessionClaims, restaurant_id: str) -> dict[str, Any]:
        self._require_admin(actor)
        restaurant = await self._call(self.restaurants.get_restaurant(restaurant_id), what="get_restaurant")
        if not restaurant:
            raise NotFoundError("Restaurant not found.")
        documents = await self._call(
            self.restaurants.list_restaurant_documents(restaurant_id),
            what="list_restaurant_documents",
        )
        audit = await self._call(self.restaurants.list_audit_log(restaurant_id), what="list_audit_log")
        return {"restaurant": restaurant, "documents": documents, "audit_log": audit}

    async def stats(self, actor: SessionClaims) -> dict[str, Any]:
        """Dashboard counters: restaurants per status plus menu, item and review totals."""
        self._require_admin(actor)
        counts = await self._call(self.restaurants.count_by_status(), what="count_by_status")
        by_status = {status: int(counts.get(status, 0)) for status in sorted(lifecycle.VERIFICATION_STATUSES)}
        result: dict[str, Any] = {"restaurants": sum(by_status.values()), "by_status": by_status}
        if self.menus is not None:
            result.update(await self._call(self.menus.totals(), what="menu_totals"))
        return result

    async def apply_action(
        self,
        actor: SessionClaims,
        restaurant_id: str,
        action: str,
        *,
        reason: str | None = None,
        expected_status: str | None = None,
    ) -> Restaurant:
        """Run one admin transition as a compare-and-set on the current status."""
        self._require_admin(actor)
        normalized_action = str(action or "").strip().lower()
        transition = lifecycle.ADMIN_TRANSITIONS.get(normalized_action)
        if not transition:
            raise ValidationError(f"Unknown verification action: {action}")
        allowed_from, target = transition

        clean_reason = str(reason or "").strip()
        if normalized_action in lifecycle.ACTIONS_REQUIRING_REASON and not clean_reason:
            raise ValidationError(
                f"Please provide a reason to {normalized_action} this restaurant",
                {"reason": "Reason is required"},
            )

        restaurant = await self._call(self.restaurants.get_restaurant(restaurant_id), what="get_restaurant")
        if not restaurant:
            raise NotFoundError("Restaurant not found.")
        current = restaurant.verification_status
        if expected_status and expected_status != current:
            raise ConflictError(
                f"Restaurant is {current}, not {expected_status}. Another administrator may have acted on it."
            )
        if current not in allowed_from:
            raise ValidationError(f"Cannot {normalized_action} a restaurant that is {current}.")

        updated = await self._call(
            self.restaurants.update_status(
                restaurant.id,
                expected_status=current,
                new_status=target,
                rejection_reason=clean_reason if normalized_action in lifecycle.ACTIONS_REQUIRING_REASON else None,
                verified_at=utc_now_iso() if target == lifecycle.STATUS_VERIFIED else None,
            ),
            what="update_status",
        )
        if updated is None:
            raise ConflictError("Restaurant status changed concurrently. Reload and try again.")

        await self._call(
            self.restaurants.write_audit_log(
                restaurant_id=updated.id,
                actor_id=actor.user_id,
                action=normalized_action,
                payload_json=_to_json({"from": current, "to": target, "reason": clean_reason or None}),
            ),
            what="write_audit_log",
        )
        logger.info(
            "Admin %s %s restaurant %s: %s -> %s",
            actor.email,
            normalized_action,
            updated.id,
            current,
            target,
        )
        return updated

    async def verify(self, actor: SessionClaims, restaurant_id: str, *, expected_status: str | None = None) -> Restaurant:
        return await self.apply_action(actor, restaurant_id, lifecycle.ACTION_VERIFY, expected_status=expected_status)

    async def reject(self, actor: SessionClaims, restaurant_id: str, reason: str) -> Restaurant:
        return await self.apply_action(actor, restaurant_id, lifecycle.ACTION_REJECT, reason=reason)

    async def block(self, actor: SessionClaims, restaurant_id: str, reason: str) -> Restaurant:
        return await self.apply_action(actor, restaurant_id, lifecycle.ACTION_BLOCK, reason=reason)

    async def unblock(self, actor: SessionClaims, restaurant_id: str) -> Restaurant:
        return await self.apply_action(actor, restaurant_id, lifecycle.ACTION_UNBLOCK)
