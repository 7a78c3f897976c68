"""Restaurant information form: normalization and field validation."""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import urlparse

from errors import ValidationError


FORM_FIELDS = (
    "name",
    "description",
    "address",
    "phone",
    "website",
    "google_location_url",
    "social_media_links",
)
# Fields checked before the wizard moves past the first step.
STEP_ONE_REQUIRED = ("name", "address")

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 120
ADDRESS_MIN_LENGTH = 5
ADDRESS_MAX_LENGTH = 300
DESCRIPTION_MAX_LENGTH = 1200
MAX_SOCIAL_LINKS = 10
PHONE_RE = re.compile(r"^\+?[0-9 ()\-]{5,24}$")


def empty_form() -> dict[str, Any]:
    return {
        "name": "",
        "description": "",
        "address": "",
        "phone": "",
        "website": "",
        "google_location_url": "",
        "social_media_links": [],
    }


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def normalize_form_data(raw: dict[str, Any] | None) -> dict[str, Any]:
    """Coerce a loosely typed payload into the canonical form shape.

    Unknown keys are dropped. Nothing is validated here: drafts may hold
    half-filled or invalid values.
    """
    form = empty_form()
    if not raw:
        return form
    for key in FORM_FIELDS:
        if key == "social_media_links":
            continue
        form[key] = _text(raw.get(key))

    links: list[dict[str, str]] = []
    raw_links = raw.get("social_media_links") or []
    if isinstance(raw_links, list):
        for entry in raw_links:
            if not isinstance(entry, dict):
                continue
            links.append({"platform": _text(entry.get("platform")), "url": _text(entry.get("url"))})
    form["social_media_links"] = links
    return form


def is_valid_url(value: str) -> bool:
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def collect_field_errors(form: dict[str, Any], *, fields: tuple[str, ...] | None = None) -> dict[str, str]:
    """Return {field: message} for every invalid field among `fields` (all by default)."""
    check = set(fields or FORM_FIELDS)
    errors: dict[str, str] = {}

    if "name" in check:
        name = form.get("name") or ""
        if len(name) < NAME_MIN_LENGTH:
            errors["name"] = f"Restaurant name must be at least {NAME_MIN_LENGTH} characters"
        elif len(name) > NAME_MAX_LENGTH:
            errors["name"] = "Restaurant name is too long"

    if "address" in check:
        address = form.get("address") or ""
        if len(address) < ADDRESS_MIN_LENGTH:
            errors["address"] = "Address is required"
        elif len(address) > ADDRESS_MAX_LENGTH:
            errors["address"] = "Address is too long"

    if "description" in check and len(form.get("description") or "") > DESCRIPTION_MAX_LENGTH:
        errors["description"] = "Description is too long"

    if "phone" in check:
        phone = form.get("phone") or ""
        if phone and not PHONE_RE.match(phone):
            errors["phone"] = "Invalid phone number"

    if "website" in check:
        website = form.get("website") or ""
        if website and not is_valid_url(website):
            errors["website"] = "Invalid URL"

    if "google_location_url" in check:
        location = form.get("google_location_url") or ""
        if location and not is_valid_url(location):
            errors["google_location_url"] = "Invalid Google Maps URL"

    if "social_media_links" in check:
        links = form.get("social_media_links") or []
        if len(links) > MAX_SOCIAL_LINKS:
            errors["social_media_links"] = f"At most {MAX_SOCIAL_LINKS} links"
        for idx, link in enumerate(links):
            if not link.get("platform"):
                errors[f"social_media_links.{idx}.platform"] = "Platform name is required"
            if not is_valid_url(link.get("url") or ""):
                errors[f"social_media_links.{idx}.url"] = "Invalid URL"

    return errors


def validate_restaurant_info(form: dict[str, Any], *, fields: tuple[str, ...] | None = None) -> None:
    errors = collect_field_errors(form, fields=fields)
    if errors:
        raise ValidationError("Please fix the errors before continuing", errors)
