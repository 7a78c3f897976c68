"""Restaurant lifecycle models."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class SocialMediaLink:
    platform: str
    url: str


@dataclass(slots=True)
class Restaurant:
    id: str
    owner_id: str
    name: str
    address: str
    qr_code: str
    verification_status: str
    onboarding_step: str
    created_at: str
    updated_at: str
    description: str = ""
    phone: str = ""
    website: str = ""
    google_location_url: str = ""
    social_media_links: list[SocialMediaLink] = field(default_factory=list)
    rejection_reason: str | None = None
    verified_at: str | None = None


@dataclass(slots=True)
class VerificationDocument:
    id: int
    owner_id: str
    document_type: str
    file_name: str
    content_type: str
    size_bytes: int
    stored_path: str
    uploaded_at: str
    restaurant_id: str | None = None


@dataclass(slots=True)
class RestaurantDraft:
    owner_id: str
    step: str
    form_data: dict[str, Any]
    last_saved: str
    version: int = 0


@dataclass(slots=True)
class WizardState:
    """What the owner UI should render right now."""

    mode: str  # "wizard" or "dashboard"
    step: str
    form_data: dict[str, Any] = field(default_factory=dict)
    resumed: bool = False
    last_saved: str | None = None
    version: int = 0
    documents: list[VerificationDocument] = field(default_factory=list)
    restaurant: Restaurant | None = None
    rejection_reason: str | None = None


@dataclass(slots=True)
class AuditEntry:
    id: int
    restaurant_id: str
    actor_id: str
    action: str
    payload_json: str
    created_at: str
