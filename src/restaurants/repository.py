"""SQLite persistence for restaurants, documents, drafts and audit log."""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import aiosqlite

from database import fetch_all, fetch_one, open_db, utc_now_iso, with_sqlite_retry
from errors import ConflictError, StorageError
from restaurants.models import (
    AuditEntry,
    Restaurant,
    RestaurantDraft,
    SocialMediaLink,
    VerificationDocument,
)

T = TypeVar("T")

RESTAURANT_COLUMNS = (
    "id, owner_id, name, description, address, phone, website, google_location_url, "
    "social_media_links_json, qr_code, verification_status, onboarding_step, "
    "rejection_reason, verified_at, created_at, updated_at"
)
DOCUMENT_COLUMNS = (
    "id, owner_id, restaurant_id, document_type, file_name, content_type, "
    "size_bytes, stored_path, uploaded_at"
)


def restaurant_from_row(row: dict[str, Any]) -> Restaurant:
    try:
        raw_links = json.loads(row.get("social_media_links_json") or "[]")
    except ValueError:
        raw_links = []
    links = [
        SocialMediaLink(platform=str(link.get("platform") or ""), url=str(link.get("url") or ""))
        for link in raw_links
        if isinstance(link, dict)
    ]
    return Restaurant(
        id=str(row["id"]),
        owner_id=str(row["owner_id"]),
        name=str(row["name"]),
        description=str(row.get("description") or ""),
        address=str(row["address"]),
        phone=str(row.get("phone") or ""),
        website=str(row.get("website") or ""),
        google_location_url=str(row.get("google_location_url") or ""),
        social_media_links=links,
        qr_code=str(row["qr_code"]),
        verification_status=str(row["verification_status"]),
        onboarding_step=str(row["onboarding_step"]),
        rejection_reason=row.get("rejection_reason"),
        verified_at=row.get("verified_at"),
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
    )


def document_from_row(row: dict[str, Any]) -> VerificationDocument:
    return VerificationDocument(
        id=int(row["id"]),
        owner_id=str(row["owner_id"]),
        restaurant_id=row.get("restaurant_id"),
        document_type=str(row["document_type"]),
        file_name=str(row["file_name"]),
        content_type=str(row["content_type"]),
        size_bytes=int(row["size_bytes"]),
        stored_path=str(row["stored_path"]),
        uploaded_at=str(row["uploaded_at"]),
    )


def _links_json(restaurant: Restaurant) -> str:
    return json.dumps(
        [{"platform": link.platform, "url": link.url} for link in restaurant.social_media_links],
        ensure_ascii=False,
        separators=(",", ":"),
    )


class SqliteStore:
    """Shared plumbing: retry on lock contention, surface failures as StorageError."""

    def __init__(self, db_path: str | None = None) -> None:
        self.db_path = db_path

    async def _run(self, where: str, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await with_sqlite_retry(fn, where=where, db_path=self.db_path)
        except (aiosqlite.Error, sqlite3.Error) as error:
            raise StorageError(f"Storage failure in {where}: {error}") from error


class RestaurantRepository(SqliteStore):
    """Restaurants, verification documents, submissions and audit log."""

    async def get_restaurant(self, restaurant_id: str) -> Restaurant | None:
        async def _op() -> Restaurant | None:
            async with open_db(self.db_path) as db:
                row = await fetch_one(
                    db,
                    f"SELECT {RESTAURANT_COLUMNS} FROM restaurants WHERE id = ?",
                    (str(restaurant_id),),
                )
                return restaurant_from_row(row) if row else None

        return await self._run("get_restaurant", _op)

    async def get_restaurant_by_owner(self, owner_id: str) -> Restaurant | None:
        async def _op() -> Restaurant | None:
            async with open_db(self.db_path) as db:
                row = await fetch_one(
                    db,
                    f"""
                    SELECT {RESTAURANT_COLUMNS}
                      FROM restaurants
                     WHERE owner_id = ?
                     ORDER BY created_at DESC
                     LIMIT 1
                    """,
                    (str(owner_id),),
                )
                return restaurant_from_row(row) if row else None

        return await self._run("get_restaurant_by_owner", _op)

    async def get_restaurant_by_qr(self, qr_code: str) -> Restaurant | None:
        async def _op() -> Restaurant | None:
            async with open_db(self.db_path) as db:
                row = await fetch_one(
                    db,
                    f"SELECT {RESTAURANT_COLUMNS} FROM restaurants WHERE qr_code = ?",
                    (str(qr_code),),
                )
                return restaurant_from_row(row) if row else None

        return await self._run("get_restaurant_by_qr", _op)

    async def list_restaurants(self, status: str | None = None) -> list[Restaurant]:
        async def _op() -> list[Restaurant]:
            async with open_db(self.db_path) as db:
                if status:
                    rows = await fetch_all(
                        db,
                        f"""
                        SELECT {RESTAURANT_COLUMNS}
                          FROM restaurants
                         WHERE verification_status = ?
                         ORDER BY created_at DESC
                        """,
                        (str(status),),
                    )
                else:
                    rows = await fetch_all(
                        db,
                        f"SELECT {RESTAURANT_COLUMNS} FROM restaurants ORDER BY created_at DESC",
                    )
                return [restaurant_from_row(row) for row in rows]

        return await self._run("list_restaurants", _op)

    async def count_by_status(self) -> dict[str, int]:
        async def _op() -> dict[str, int]:
            async with open_db(self.db_path) as db:
                rows = await fetch_all(
                    db,
                    "SELECT verification_status, COUNT(*) AS cnt FROM restaurants GROUP BY verification_status",
                )
                return {str(row["verification_status"]): int(row["cnt"]) for row in rows}

        return await self._run("count_by_status", _op)

    async def find_submission(self, owner_id: str, idempotency_key: str) -> str | None:
        async def _op() -> str | None:
            async with open_db(self.db_path) as db:
                row = await fetch_one(
                    db,
                    """
                    SELECT restaurant_id
                      FROM restaurant_submissions
                     WHERE owner_id = ? AND idempotency_key = ?
                    """,
                    (str(owner_id), str(idempotency_key)),
                )
                return str(row["restaurant_id"]) if row else None

        return await self._run("find_submission", _op)

    async def _attach_documents(
        self,
        db: aiosqlite.Connection,
        *,
        owner_id: str,
        restaurant_id: str,
        document_ids: list[int],
    ) -> None:
        if not document_ids:
            return
        placeholders = ",".join("?" for _ in document_ids)
        await db.execute(
            f"""
            UPDATE verification_documents
               SET restaurant_id = ?
             WHERE owner_id = ?
               AND restaurant_id IS NULL
               AND id IN ({placeholders})
            """,
            (restaurant_id, owner_id, *[int(doc_id) for doc_id in document_ids]),
        )

    async def _record_submission(
        self,
        db: aiosqlite.Connection,
        *,
        owner_id: str,
        restaurant_id: str,
        idempotency_key: str | None,
    ) -> None:
        if not idempotency_key:
            return
        try:
            await db.execute(
                """
                INSERT INTO restaurant_submissions(owner_id, idempotency_key, restaurant_id, created_at)
                VALUES(?, ?, ?, ?)
                """,
                (owner_id, idempotency_key, restaurant_id, utc_now_iso()),
            )
        except sqlite3.IntegrityError as error:
            raise ConflictError("This submission was already processed.") from error

    async def create_restaurant(
        self,
        restaurant: Restaurant,
        *,
        idempotency_key: str | None,
        document_ids: list[int],
    ) -> Restaurant:
        async def _op() -> Restaurant:
            async with open_db(self.db_path) as db:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    await self._record_submission(
                        db,
                        owner_id=restaurant.owner_id,
                        restaurant_id=restaurant.id,
                        idempotency_key=idempotency_key,
                    )
                    await db.execute(
                        f"""
                        INSERT INTO restaurants({RESTAURANT_COLUMNS})
                        VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            restaurant.id,
                            restaurant.owner_id,
                            restaurant.name,
                            restaurant.description,
                            restaurant.address,
                            restaurant.phone,
                            restaurant.website,
                            restaurant.google_location_url,
                            _links_json(restaurant),
                            restaurant.qr_code,
                            restaurant.verification_status,
                            restaurant.onboarding_step,
                            restaurant.rejection_reason,
                            restaurant.verified_at,
                            restaurant.created_at,
                            restaurant.updated_at,
                        ),
                    )
                    await self._attach_documents(
                        db,
                        owner_id=restaurant.owner_id,
                        restaurant_id=restaurant.id,
                        document_ids=document_ids,
                    )
                    await db.commit()
                except BaseException:
                    await db.rollback()
                    raise
            return restaurant

        return await self._run("create_restaurant", _op)

    async def replace_submission(
        self,
        restaurant: Restaurant,
        *,
        expected_status: str,
        idempotency_key: str | None,
        document_ids: list[int],
    ) -> Restaurant | None:
        async def _op() -> Restaurant | None:
            async with open_db(self.db_path) as db:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    cursor = await db.execute(
                        """
                        UPDATE restaurants
                           SET name = ?, description = ?, address = ?, phone = ?,
                               website = ?, google_location_url = ?, social_media_links_json = ?,
                               verification_status = ?, onboarding_step = ?,
                               rejection_reason = ?, verified_at = ?, updated_at = ?
                         WHERE id = ? AND verification_status = ?
                        """,
                        (
                            restaurant.name,
                            restaurant.description,
                            restaurant.address,
                            restaurant.phone,
                            restaurant.website,
                            restaurant.google_location_url,
                            _links_json(restaurant),
                            restaurant.verification_status,
                            restaurant.onboarding_step,
                            restaurant.rejection_reason,
                            restaurant.verified_at,
                            restaurant.updated_at,
                            restaurant.id,
                            expected_status,
                        ),
                    )
                    if int(cursor.rowcount or 0) == 0:
                        await db.rollback()
                        return None
                    await self._record_submission(
                        db,
                        owner_id=restaurant.owner_id,
                        restaurant_id=restaurant.id,
                        idempotency_key=idempotency_key,
                    )
                    await self._attach_documents(
                        db,
                        owner_id=restaurant.owner_id,
                        restaurant_id=restaurant.id,
                        document_ids=document_ids,
                    )
                    await db.commit()
                except BaseException:
                    await db.rollback()
                    raise
            return restaurant

        return await self._run("replace_submission", _op)

    async def update_status(
        self,
        restaurant_id: str,
        *,
        expected_status: str,
        new_status: str,
        rejection_reason: str | None,
        verified_at: str | None,
    ) -> Restaurant | None:
        async def _op() -> Restaurant | None:
            async with open_db(self.db_path) as db:
                cursor = await db.execute(
                    """
                    UPDATE restaurants
                       SET verification_status = ?,
                           rejection_reason = ?,
                           verified_at = COALESCE(?, verified_at),
                           updated_at = ?
                     WHERE id = ? AND verification_status = ?
                    """,
                    (
                        new_status,
                        rejection_reason,
                        verified_at,
                        utc_now_iso(),
                        str(restaurant_id),
                        expected_status,
                    ),
                )
                await db.commit()
                if int(cursor.rowcount or 0) == 0:
                    return None
                row = await fetch_one(
                    db,
                    f"SELECT {RESTAURANT_COLUMNS} FROM restaurants WHERE id = ?",
                    (str(restaurant_id),),
                )
                return restaurant_from_row(row) if row else None

        return await self._run("update_status", _op)

    async def add_document(self, document: VerificationDocument) -> VerificationDocument:
        async def _op() -> VerificationDocument:
            async with open_db(self.db_path) as db:
                cursor = await db.execute(
                    """
                    INSERT INTO verification_documents(
                        owner_id, restaurant_id, document_type, file_name,
                        content_type, size_bytes, stored_path, uploaded_at
                    ) VALUES(?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        document.owner_id,
                        document.restaurant_id,
                        document.document_type,
                        document.file_name,
                        document.content_type,
                        int(document.size_bytes),
                        document.stored_path,
                        document.uploaded_at,
                    ),
                )
                await db.commit()
                document.id = int(cursor.lastrowid or 0)
                return document

        return await self._run("add_document", _op)

    async def list_documents(self, owner_id: str, *, pending_only: bool = True) -> list[VerificationDocument]:
        async def _op() -> list[VerificationDocument]:
            query = f"SELECT {DOCUMENT_COLUMNS} FROM verification_documents WHERE owner_id = ?"
            if pending_only:
                query += " AND restaurant_id IS NULL"
            async with open_db(self.db_path) as db:
                rows = await fetch_all(db, query + " ORDER BY id", (str(owner_id),))
                return [document_from_row(row) for row in rows]

        return await self._run("list_documents", _op)

    async def list_restaurant_documents(self, restaurant_id: str) -> list[VerificationDocument]:
        async def _op() -> list[VerificationDocument]:
            async with open_db(self.db_path) as db:
                rows = await fetch_all(
                    db,
                    f"SELECT {DOCUMENT_COLUMNS} FROM verification_documents WHERE restaurant_id = ? ORDER BY id",
                    (str(restaurant_id),),
                )
                return [document_from_row(row) for row in rows]

        return await self._run("list_restaurant_documents", _op)

    async def delete_document(self, owner_id: str, document_id: int) -> VerificationDocument | None:
        async def _op() -> VerificationDocument | None:
            async with open_db(self.db_path) as db:
                row = await fetch_one(
                    db,
                    f"""
                    SELECT {DOCUMENT_COLUMNS}
                      FROM verification_documents
                     WHERE id = ? AND owner_id = ? AND restaurant_id IS NULL
                    """,
                    (int(document_id), str(owner_id)),
                )
                if not row:
                    return None
                await db.execute("DELETE FROM verification_documents WHERE id = ?", (int(document_id),))
                await db.commit()
                return document_from_row(row)

        return await self._run("delete_document", _op)

    async def write_audit_log(self, *, restaurant_id: str, actor_id: str, action: str, payload_json: str) -> None:
        async def _op() -> None:
            async with open_db(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO restaurant_audit_log(restaurant_id, actor_id, action, payload_json, created_at)
                    VALUES(?, ?, ?, ?, ?)
                    """,
                    (str(restaurant_id), str(actor_id), str(action), payload_json, utc_now_iso()),
                )
                await db.commit()

        await self._run("write_audit_log", _op)

    async def list_audit_log(self, restaurant_id: str) -> list[AuditEntry]:
        async def _op() -> list[AuditEntry]:
            async with open_db(self.db_path) as db:
                rows = await fetch_all(
                    db,
                    """
                    SELECT id, restaurant_id, actor_id, action, payload_json, created_at
                      FROM restaurant_audit_log
                     WHERE restaurant_id = ?
                     ORDER BY id
                    """,
                    (str(restaurant_id),),
                )
                return [AuditEntry(**row) for row in rows]

        return await self._run("list_audit_log", _op)


class DraftRepository(SqliteStore):
    """One overwritable onboarding draft per owner."""

    async def load(self, owner_id: str) -> RestaurantDraft | None:
        async def _op() -> RestaurantDraft | None:
            async with open_db(self.db_path) as db:
                row = await fetch_one(
                    db,
                    "SELECT owner_id, step, form_data_json, last_saved, version FROM restaurant_drafts WHERE owner_id = ?",
                    (str(owner_id),),
                )
            if not row:
                return None
            try:
                form_data = json.loads(row["form_data_json"] or "{}")
            except ValueError:
                form_data = {}
            return RestaurantDraft(
                owner_id=str(row["owner_id"]),
                step=str(row["step"]),
                form_data=form_data if isinstance(form_data, dict) else {},
                last_saved=str(row["last_saved"]),
                version=int(row["version"]),
            )

        return await self._run("load_draft", _op)

    async def save(self, draft: RestaurantDraft, *, expected_version: int | None = None) -> RestaurantDraft:
        form_json = json.dumps(draft.form_data, ensure_ascii=False, separators=(",", ":"))

        async def _op() -> RestaurantDraft:
            async with open_db(self.db_path) as db:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    row = await fetch_one(
                        db,
                        "SELECT version FROM restaurant_drafts WHERE owner_id = ?",
                        (draft.owner_id,),
                    )
                    current_version = int(row["version"]) if row else 0
                    if expected_version is not None and int(expected_version) != current_version:
                        raise ConflictError(
                            "The draft was changed in another session. Reload it before saving."
                        )
                    new_version = current_version + 1
                    await db.execute(
                        """
                        INSERT INTO restaurant_drafts(owner_id, step, form_data_json, last_saved, version)
                        VALUES(?, ?, ?, ?, ?)
                        ON CONFLICT(owner_id) DO UPDATE SET
                            step = excluded.step,
                            form_data_json = excluded.form_data_json,
                            last_saved = excluded.last_saved,
                            version = excluded.version
                        """,
                        (draft.owner_id, draft.step, form_json, draft.last_saved, new_version),
                    )
                    await db.commit()
                except BaseException:
                    await db.rollback()
                    raise
            return RestaurantDraft(
                owner_id=draft.owner_id,
                step=draft.step,
                form_data=dict(draft.form_data),
                last_saved=draft.last_saved,
                version=new_version,
            )

        return await self._run("save_draft", _op)

    async def clear(self, owner_id: str) -> bool:
        async def _op() -> bool:
            async with open_db(self.db_path) as db:
                cursor = await db.execute("DELETE FROM restaurant_drafts WHERE owner_id = ?", (str(owner_id),))
                await db.commit()
                return int(cursor.rowcount or 0) > 0

        return await self._run("clear_draft", _op)
