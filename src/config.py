import os
import time
from pathlib import Path
from dataclasses import dataclass

from dotenv import load_dotenv

# .env is read from the working directory of the process
env_path = Path.cwd() / ".env"
load_dotenv(env_path)


def _set_process_timezone() -> None:
    """Apply TZ from env so datetime.now() matches the restaurants' wall clock."""
    tz = os.getenv("DIZMEN_TIMEZONE") or "Europe/Istanbul"
    if tz:
        os.environ["TZ"] = tz
        if hasattr(time, "tzset"):
            try:
                time.tzset()
            except Exception:
                # tzset is not available on every platform
                pass


_set_process_timezone()

VERIFICATION_MODE_REVIEW = "review"
VERIFICATION_MODE_INSTANT = "instant"
SUPPORTED_VERIFICATION_MODES = {VERIFICATION_MODE_REVIEW, VERIFICATION_MODE_INSTANT}

STORAGE_BACKEND_SQLITE = "sqlite"
STORAGE_BACKEND_MEMORY = "memory"
SUPPORTED_STORAGE_BACKENDS = {STORAGE_BACKEND_SQLITE, STORAGE_BACKEND_MEMORY}


@dataclass
class Config:
    # HTTP API
    api_host: str
    api_port: int
    public_base_url: str  # Base URL encoded into restaurant QR codes
    # Sessions
    session_secret: str
    session_ttl_sec: int
    admin_emails: list[str]  # Only these e-mails receive the super_admin role
    # Restaurant lifecycle
    verification_mode: str  # review: documents + admin approval, instant: live on submit
    # Storage
    storage_backend: str
    storage_timeout_sec: float
    upload_dir: str
    max_document_bytes: int
    timezone: str


def parse_list(env_value: str) -> list[str]:
    """Parse a comma/space separated list, lowercased."""
    if not env_value:
        return []
    env_value = env_value.strip().strip('"').strip("'")
    items = [item.strip().lower() for item in env_value.replace(",", " ").split()]
    return [item for item in items if item]


def parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean env flag."""
    if value is None:
        return default
    value = value.strip().strip('"').strip("'").lower()
    if value in {"1", "true", "yes", "y", "on"}:
        return True
    if value in {"0", "false", "no", "n", "off"}:
        return False
    return default


def parse_int(value: str | None) -> int | None:
    """Parse an optional int env value."""
    if value is None:
        return None
    value = value.strip().strip('"').strip("'")
    if not value:
        return None
    return int(value)


def _clean(value: str | None, default: str = "") -> str:
    if value is None:
        return default
    return value.strip().strip('"').strip("'") or default


def parse_choice(value: str | None, supported: set[str], default: str) -> str:
    cleaned = _clean(value, default).lower()
    if cleaned in supported:
        return cleaned
    return default


CFG = Config(
    api_host=_clean(os.getenv("API_HOST"), "0.0.0.0"),
    api_port=int(os.getenv("API_PORT", "8080")),
    public_base_url=_clean(os.getenv("PUBLIC_BASE_URL"), "http://localhost:3000").rstrip("/"),
    session_secret=_clean(os.getenv("SESSION_SECRET")),
    session_ttl_sec=parse_int(os.getenv("SESSION_TTL_SEC")) or 7 * 24 * 3600,
    admin_emails=parse_list(os.getenv("ADMIN_EMAILS", "")),
    verification_mode=parse_choice(
        os.getenv("VERIFICATION_MODE"),
        SUPPORTED_VERIFICATION_MODES,
        VERIFICATION_MODE_REVIEW,
    ),
    storage_backend=parse_choice(
        os.getenv("STORAGE_BACKEND"),
        SUPPORTED_STORAGE_BACKENDS,
        STORAGE_BACKEND_SQLITE,
    ),
    storage_timeout_sec=float(os.getenv("STORAGE_TIMEOUT_SEC", "10")),
    upload_dir=_clean(os.getenv("UPLOAD_DIR"), str(Path.cwd() / "uploads")),
    max_document_bytes=parse_int(os.getenv("MAX_DOCUMENT_BYTES")) or 10 * 1024 * 1024,
    timezone=_clean(os.getenv("DIZMEN_TIMEZONE"), "Europe/Istanbul"),
)

# Database path: from env or relative to the working directory
DB_PATH = os.getenv("DB_PATH", str(Path.cwd() / "dizmen.db"))


def is_document_review_enabled() -> bool:
    """Restaurants need uploaded documents and admin approval before going live."""
    return CFG.verification_mode == VERIFICATION_MODE_REVIEW


def is_memory_storage_enabled() -> bool:
    return CFG.storage_backend == STORAGE_BACKEND_MEMORY
