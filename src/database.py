import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, TypeVar

import aiosqlite

from config import DB_PATH
from sqlite_lock_logger import log_sqlite_lock_event


SQLITE_BUSY_TIMEOUT_MS = 5000
WRITE_RETRY_ATTEMPTS = 3
WRITE_RETRY_BASE_DELAY_SEC = 0.05
logger = logging.getLogger(__name__)

T = TypeVar("T")


def utc_now_iso() -> str:
    """Current UTC timestamp in ISO-8601."""
    return datetime.now(timezone.utc).isoformat()


async def apply_sqlite_pragmas(db: aiosqlite.Connection) -> None:
    """Apply SQLite settings for concurrent access from several workers."""
    await db.execute("PRAGMA journal_mode=WAL;")
    await db.execute("PRAGMA synchronous=NORMAL;")
    await db.execute("PRAGMA foreign_keys=ON;")
    await db.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS};")


@asynccontextmanager
async def open_db(db_path: str | None = None) -> AsyncIterator[aiosqlite.Connection]:
    async with aiosqlite.connect(db_path or DB_PATH) as db:
        db.row_factory = aiosqlite.Row
        await apply_sqlite_pragmas(db)
        yield db


def is_sqlite_locked_error(exc: BaseException) -> bool:
    if not isinstance(exc, (sqlite3.OperationalError, aiosqlite.OperationalError)):
        return False
    msg = str(exc).lower()
    return "database is locked" in msg or "database table is locked" in msg


async def with_sqlite_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    where: str,
    retries: int = WRITE_RETRY_ATTEMPTS,
    base_delay: float = WRITE_RETRY_BASE_DELAY_SEC,
    db_path: str | None = None,
) -> T:
    """Run `fn` and retry it with exponential backoff on lock contention."""
    attempt = 0
    while True:
        try:
            return await fn()
        except (sqlite3.OperationalError, aiosqlite.OperationalError) as exc:
            if not is_sqlite_locked_error(exc) or attempt >= retries:
                raise
            delay = base_delay * (2**attempt)
            logger.warning("SQLite locked in %s; retry %s/%s in %.2fs", where, attempt + 1, retries, delay)
            log_sqlite_lock_event(
                where=where,
                exc=exc,
                attempt=attempt + 1,
                retries=retries,
                delay_sec=delay,
                db_path=db_path,
            )
            await asyncio.sleep(delay)
            attempt += 1


async def fetch_one(db: aiosqlite.Connection, query: str, params: tuple[Any, ...] = ()) -> dict[str, Any] | None:
    async with db.execute(query, params) as cur:
        row = await cur.fetchone()
        return dict(row) if row else None


async def fetch_all(db: aiosqlite.Connection, query: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
    async with db.execute(query, params) as cur:
        rows = await cur.fetchall()
        return [dict(row) for row in rows]


async def init_db(db_path: str | None = None) -> None:
    """Create tables and indexes. Safe to call on every start."""
    async with open_db(db_path) as db:
        await db.execute(
            """CREATE TABLE IF NOT EXISTS restaurants (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                address TEXT NOT NULL,
                phone TEXT NOT NULL DEFAULT '',
                website TEXT NOT NULL DEFAULT '',
                google_location_url TEXT NOT NULL DEFAULT '',
                social_media_links_json TEXT NOT NULL DEFAULT '[]',
                qr_code TEXT NOT NULL UNIQUE,
                verification_status TEXT NOT NULL,
                onboarding_step TEXT NOT NULL,
                rejection_reason TEXT DEFAULT NULL,
                verified_at TEXT DEFAULT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )"""
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_restaurants_owner ON restaurants (owner_id)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_restaurants_status ON restaurants (verification_status)"
        )
        # One row per owner: the wizard snapshot is overwritten on every save.
        await db.execute(
            """CREATE TABLE IF NOT EXISTS restaurant_drafts (
                owner_id TEXT PRIMARY KEY,
                step TEXT NOT NULL,
                form_data_json TEXT NOT NULL,
                last_saved TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1
            )"""
        )
        await db.execute(
            """CREATE TABLE IF NOT EXISTS verification_documents (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL,
                restaurant_id TEXT DEFAULT NULL,
                document_type TEXT NOT NULL,
                file_name TEXT NOT NULL,
                content_type TEXT NOT NULL,
                size_bytes INTEGER NOT NULL,
                stored_path TEXT NOT NULL,
                uploaded_at TEXT NOT NULL
            )"""
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_verification_documents_owner ON verification_documents (owner_id)"
        )
        await db.execute(
            """CREATE TABLE IF NOT EXISTS restaurant_submissions (
                owner_id TEXT NOT NULL,
                idempotency_key TEXT NOT NULL,
                restaurant_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (owner_id, idempotency_key)
            )"""
        )
        await db.execute(
            """CREATE TABLE IF NOT EXISTS restaurant_audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                restaurant_id TEXT NOT NULL,
                actor_id TEXT NOT NULL,
                action TEXT NOT NULL,
                payload_json TEXT NOT NULL DEFAULT '{}',
                created_at TEXT NOT NULL
            )"""
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_restaurant_audit_log_restaurant ON restaurant_audit_log (restaurant_id, id)"
        )
        await db.execute(
            """CREATE TABLE IF NOT EXISTS menus (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                restaurant_id TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                icon TEXT DEFAULT NULL,
                sort_order INTEGER NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1,
                time_ranges_json TEXT NOT NULL DEFAULT '[]',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )"""
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_menus_restaurant ON menus (restaurant_id, sort_order)"
        )
        await db.execute(
            """CREATE TABLE IF NOT EXISTS menu_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                menu_id INTEGER NOT NULL,
                restaurant_id TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                price REAL NOT NULL,
                category TEXT NOT NULL DEFAULT '',
                images_json TEXT NOT NULL DEFAULT '[]',
                is_available INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (menu_id) REFERENCES menus(id) ON DELETE CASCADE
            )"""
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_menu_items_menu ON menu_items (menu_id)"
        )
        # Reviews are append-only and outlive the item they point to.
        await db.execute(
            """CREATE TABLE IF NOT EXISTS reviews (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                menu_item_id INTEGER NOT NULL,
                customer_id TEXT DEFAULT NULL,
                customer_name TEXT NOT NULL,
                rating INTEGER NOT NULL,
                comment TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL
            )"""
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_reviews_item ON reviews (menu_item_id)"
        )
        await db.commit()
    logger.info("Database schema ready at %s", db_path or DB_PATH)
