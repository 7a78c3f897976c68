"""SQLite lock contention trail.

Even with WAL and busy_timeout, concurrent writers (API workers, admin scripts)
can hit "database is locked". Each retry is appended as one JSON line to
SQLITE_LOCK_LOG_PATH (default: <LOG_DIR>/locks.log) so contention is visible
after the fact.

The writer is best-effort: it never raises into application code.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


_LOCK_LOG_PATH: str | None = None
_LOCK_LOG_PATH_INITIALIZED = False


def _resolve_lock_log_path() -> str | None:
    """Resolve the lock log path once per process."""
    global _LOCK_LOG_PATH_INITIALIZED, _LOCK_LOG_PATH
    if _LOCK_LOG_PATH_INITIALIZED:
        return _LOCK_LOG_PATH
    _LOCK_LOG_PATH_INITIALIZED = True

    explicit = (os.getenv("SQLITE_LOCK_LOG_PATH") or "").strip().strip('"').strip("'")
    if explicit:
        _LOCK_LOG_PATH = None if explicit == "-" else explicit
        return _LOCK_LOG_PATH

    log_dir = (os.getenv("LOG_DIR") or "logs").strip().strip('"').strip("'")
    if not log_dir or log_dir == "-":
        _LOCK_LOG_PATH = None
        return None
    _LOCK_LOG_PATH = str(Path(log_dir) / "locks.log")
    return _LOCK_LOG_PATH


def log_sqlite_lock_event(
    *,
    where: str,
    exc: BaseException,
    attempt: int,
    retries: int,
    delay_sec: float | None = None,
    db_path: str | None = None,
) -> None:
    """Append a JSONL entry about lock contention.

    attempt: 1-based attempt number (1..retries).
    """
    path = _resolve_lock_log_path()
    if not path:
        return

    payload: dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "where": str(where or ""),
        "attempt": int(attempt),
        "retries": int(retries),
        "error": str(exc),
        "pid": os.getpid(),
    }
    if db_path:
        payload["db_path"] = str(db_path)
    if delay_sec is not None:
        payload["delay_sec"] = round(float(delay_sec), 3)

    try:
        log_path = Path(path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
        with log_path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")
    except OSError:
        return
