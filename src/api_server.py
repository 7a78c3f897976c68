"""
HTTP JSON API for restaurant owners, administrators and customers.

Every response is JSON with "status": "ok" | "error", except the QR code
PNG. Privileged routes expect "Authorization: Bearer <session token>"
issued by POST /api/v1/auth/session.
"""

import asyncio
import json
import logging
import re
from dataclasses import asdict, dataclass, is_dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from aiohttp import hdrs, web

from auth import SessionClaims, issue_session_token, verify_session_token
from config import CFG, DB_PATH, is_memory_storage_enabled
from errors import (
    AccessDeniedError,
    ConflictError,
    DizmenError,
    NotFoundError,
    StorageError,
    UploadError,
    ValidationError,
)
from menus.availability import is_menu_available_now
from menus.memory import MemoryMenuStore
from menus.qr import menu_qr_png
from menus.repository import MenuRepository
from menus.service import MenuService, menu_url
from restaurants import lifecycle
from restaurants.documents import DEFAULT_DOCUMENT_TYPE, DocumentStorage
from restaurants.memory import MemoryDraftStore, MemoryRestaurantStore
from restaurants.repository import DraftRepository, RestaurantRepository
from restaurants.service import OnboardingService, VerificationService


logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
ERROR_STATUS: tuple[tuple[type[DizmenError], int], ...] = (
    (ValidationError, 400),
    (AccessDeniedError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (UploadError, 422),
    (StorageError, 503),
)
UPLOAD_CHUNK_BYTES = 64 * 1024


@dataclass(slots=True)
class Services:
    onboarding: OnboardingService
    verification: VerificationService
    menus: MenuService


SERVICES_KEY = web.AppKey("services", Services)


def build_services(
    *,
    memory: bool | None = None,
    db_path: str | None = None,
    upload_dir: str | Path | None = None,
    document_review: bool | None = None,
) -> Services:
    """Wire services to SQLite repositories or, with memory=True, in-process stores."""
    use_memory = is_memory_storage_enabled() if memory is None else memory
    if use_memory:
        restaurants = MemoryRestaurantStore()
        drafts = MemoryDraftStore()
        menus = MemoryMenuStore()
    else:
        path = db_path or DB_PATH
        restaurants = RestaurantRepository(path)
        drafts = DraftRepository(path)
        menus = MenuRepository(path)
    documents = DocumentStorage(upload_dir or CFG.upload_dir, max_bytes=CFG.max_document_bytes)
    return Services(
        onboarding=OnboardingService(restaurants, drafts, documents, document_review=document_review),
        verification=VerificationService(restaurants, menus=menus),
        menus=MenuService(menus, restaurants),
    )


def _payload(value: Any) -> Any:
    """Dataclasses and containers -> JSON-ready values."""
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, dict):
        return {str(k): _payload(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_payload(v) for v in value]
    return value


def _ok(**data: Any) -> web.Response:
    return web.json_response({"status": "ok", **{k: _payload(v) for k, v in data.items()}})


def _error(message: str, status: int, **extra: Any) -> web.Response:
    return web.json_response({"status": "error", "message": message, **extra}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except DizmenError as error:
        status = next((code for cls, code in ERROR_STATUS if isinstance(error, cls)), 400)
        if status >= 500:
            logger.warning("%s %s failed: %s", request.method, request.path, error)
        extra: dict[str, Any] = {}
        if isinstance(error, ValidationError) and error.field_errors:
            extra["field_errors"] = error.field_errors
        return _error(str(error), status, **extra)
    except Exception:
        logger.exception("Unhandled error in %s %s", request.method, request.path)
        return _error("Internal server error", 500)


def _services(request: web.Request) -> Services:
    return request.app[SERVICES_KEY]


def _unauthorized(message: str = "Unauthorized") -> web.HTTPUnauthorized:
    return web.HTTPUnauthorized(
        text=json.dumps({"status": "error", "message": message}),
        content_type="application/json",
    )


def _get_session(request: web.Request) -> SessionClaims | None:
    header = request.headers.get(hdrs.AUTHORIZATION, "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return verify_session_token(token.strip(), secret=CFG.session_secret)


def _require_session(request: web.Request) -> SessionClaims:
    claims = _get_session(request)
    if not claims:
        raise _unauthorized()
    return claims


async def _read_json(request: web.Request) -> dict[str, Any]:
    try:
        data = await request.json()
    except ValueError:
        raise ValidationError("Invalid JSON") from None
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON")
    return data


def _optional_int(data: dict[str, Any], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{key} must be an integer")
    return value


def _wizard_payload(state) -> dict[str, Any]:
    payload = asdict(state)
    payload["step_number"] = lifecycle.step_number(state.step)
    payload["progress_percent"] = lifecycle.progress_percent(state.step)
    if state.restaurant:
        payload["status_title"] = lifecycle.STATUS_TITLES.get(state.restaurant.verification_status)
        payload["menu_url"] = menu_url(state.restaurant)
    return payload


def _menu_payload(menu, now: datetime | None = None) -> dict[str, Any]:
    payload = asdict(menu)
    payload["available_now"] = is_menu_available_now(menu, now)
    return payload


# --- auth & health ------------------------------------------------------


async def health_handler(request: web.Request) -> web.Response:
    """Health check endpoint."""
    return web.json_response({
        "status": "ok",
        "timestamp": datetime.now().isoformat(),
        "service": "dizmen-api",
    })


async def session_handler(request: web.Request) -> web.Response:
    data = await _read_json(request)
    email = str(data.get("email") or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError("Please enter a valid e-mail", {"email": "Invalid e-mail"})
    token, claims = issue_session_token(
        email,
        secret=CFG.session_secret,
        ttl_sec=CFG.session_ttl_sec,
        requested_role=data.get("role"),
        admin_emails=CFG.admin_emails,
    )
    logger.info("Session issued for %s as %s", claims.email, claims.role)
    return _ok(token=token, user=claims, name=claims.name)


# --- onboarding ---------------------------------------------------------


async def onboarding_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    state = await _services(request).onboarding.load_wizard(claims)
    return _ok(wizard=_wizard_payload(state))


def _require_same_user(request: web.Request, claims: SessionClaims) -> None:
    if request.match_info["user_id"] != claims.user_id:
        raise AccessDeniedError("You can only access your own draft.")


async def draft_get_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    _require_same_user(request, claims)
    draft = await _services(request).onboarding.get_draft(claims)
    if not draft:
        raise NotFoundError("No saved draft.")
    return _ok(draft=draft)


async def draft_put_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    _require_same_user(request, claims)
    data = await _read_json(request)
    draft = await _services(request).onboarding.save_draft(
        claims,
        step=str(data.get("step") or lifecycle.STEP_RESTAURANT_INFO),
        form_data=data.get("form_data") if isinstance(data.get("form_data"), dict) else None,
        expected_version=_optional_int(data, "expected_version"),
    )
    return _ok(draft=draft)


async def draft_delete_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    _require_same_user(request, claims)
    cleared = await _services(request).onboarding.clear_draft(claims)
    return _ok(cleared=cleared)


async def advance_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    data = await _read_json(request)
    draft = await _services(request).onboarding.advance(
        claims,
        form_data=data.get("form_data") if isinstance(data.get("form_data"), dict) else None,
        expected_version=_optional_int(data, "expected_version"),
    )
    return _ok(draft=draft)


async def back_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    data = await _read_json(request) if request.can_read_body else {}
    draft = await _services(request).onboarding.go_back(
        claims,
        form_data=data.get("form_data") if isinstance(data.get("form_data"), dict) else None,
        expected_version=_optional_int(data, "expected_version"),
    )
    return _ok(draft=draft)


async def document_upload_handler(request: web.Request) -> web.Response:
    """multipart/form-data with a `file` part and an optional `document_type` part."""
    claims = _require_session(request)
    max_bytes = CFG.max_document_bytes
    try:
        reader = await request.multipart()
    except (AssertionError, ValueError, KeyError):
        raise UploadError("Send the document as multipart/form-data.") from None

    file_name = ""
    content_type = None
    data = bytearray()
    document_type = DEFAULT_DOCUMENT_TYPE
    async for part in reader:
        if part.name == "document_type":
            document_type = (await part.text()).strip() or DEFAULT_DOCUMENT_TYPE
        elif part.name == "file":
            file_name = part.filename or ""
            content_type = part.headers.get(hdrs.CONTENT_TYPE)
            while chunk := await part.read_chunk(UPLOAD_CHUNK_BYTES):
                data.extend(chunk)
                if len(data) > max_bytes:
                    raise UploadError(f"Documents must be at most {max_bytes // (1024 * 1024)} MB.")
    if not file_name:
        raise UploadError("No file was uploaded.")

    document = await _services(request).onboarding.upload_document(
        claims,
        file_name=file_name,
        content_type=content_type,
        data=bytes(data),
        document_type=document_type,
    )
    return _ok(document=document)


async def document_delete_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    document = await _services(request).onboarding.remove_document(claims, int(request.match_info["document_id"]))
    return _ok(document=document)


async def submit_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    data = await _read_json(request)
    restaurant = await _services(request).onboarding.submit(
        claims,
        form_data=data.get("form_data") if isinstance(data.get("form_data"), dict) else None,
        idempotency_key=request.headers.get("Idempotency-Key"),
    )
    return _ok(restaurant=restaurant, menu_url=menu_url(restaurant))


# --- admin --------------------------------------------------------------


async def admin_restaurants_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    status = request.query.get("status") or None
    restaurants = await _services(request).verification.list_restaurants(claims, status)
    return _ok(restaurants=restaurants)


async def admin_restaurant_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    details = await _services(request).verification.get_restaurant(claims, request.match_info["restaurant_id"])
    return _ok(**details)


async def admin_stats_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    stats = await _services(request).verification.stats(claims)
    return _ok(stats=stats)


async def verification_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    data = await _read_json(request)
    restaurant = await _services(request).verification.apply_action(
        claims,
        request.match_info["restaurant_id"],
        str(data.get("action") or ""),
        reason=data.get("reason"),
        expected_status=data.get("expected_status"),
    )
    return _ok(restaurant=restaurant)


# --- owner menus --------------------------------------------------------


async def menus_list_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    menus = await _services(request).menus.list_menus(claims)
    now = datetime.now()
    return _ok(menus=[_menu_payload(m, now) for m in menus])


async def menu_create_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    data = await _read_json(request)
    menu = await _services(request).menus.create_menu(claims, data)
    return _ok(menu=_menu_payload(menu))


async def menu_update_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    data = await _read_json(request)
    menu = await _services(request).menus.update_menu(claims, int(request.match_info["menu_id"]), data)
    return _ok(menu=_menu_payload(menu))


async def menu_toggle_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    menu = await _services(request).menus.toggle_menu(claims, int(request.match_info["menu_id"]))
    return _ok(menu=_menu_payload(menu))


async def menu_delete_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    confirmation = request.query.get("confirmation")
    if confirmation is None and request.can_read_body:
        confirmation = (await _read_json(request)).get("confirmation")
    deleted_items = await _services(request).menus.delete_menu(
        claims,
        int(request.match_info["menu_id"]),
        confirmation=confirmation,
    )
    return _ok(deleted_items=deleted_items)


async def items_list_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    items = await _services(request).menus.list_items(claims, int(request.match_info["menu_id"]))
    return _ok(items=items)


async def item_create_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    data = await _read_json(request)
    item = await _services(request).menus.create_item(claims, int(request.match_info["menu_id"]), data)
    return _ok(item=item)


async def item_update_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    data = await _read_json(request)
    item = await _services(request).menus.update_item(claims, int(request.match_info["item_id"]), data)
    return _ok(item=item)


async def item_toggle_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    item = await _services(request).menus.toggle_item(claims, int(request.match_info["item_id"]))
    return _ok(item=item)


async def item_move_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    data = await _read_json(request)
    item = await _services(request).menus.move_item(
        claims,
        int(request.match_info["item_id"]),
        data.get("target_menu_id"),
    )
    return _ok(item=item)


async def item_delete_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    await _services(request).menus.delete_item(claims, int(request.match_info["item_id"]))
    return _ok()


async def restaurant_qr_handler(request: web.Request) -> web.Response:
    claims = _require_session(request)
    restaurant = await _services(request).menus.owned_restaurant(claims)
    png = await asyncio.to_thread(menu_qr_png, menu_url(restaurant), restaurant.name)
    return web.Response(
        body=png,
        content_type="image/png",
        headers={
            "Cache-Control": "no-store",
            "Content-Disposition": f'inline; filename="{restaurant.qr_code}.png"',
        },
    )


# --- public -------------------------------------------------------------


async def public_menu_handler(request: web.Request) -> web.Response:
    page = await _services(request).menus.public_menu(request.match_info["qr_code"])
    restaurant = page["restaurant"]
    return _ok(
        restaurant={
            "id": restaurant.id,
            "name": restaurant.name,
            "description": restaurant.description,
            "address": restaurant.address,
            "phone": restaurant.phone,
            "website": restaurant.website,
            "google_location_url": restaurant.google_location_url,
            "social_media_links": restaurant.social_media_links,
            "verification_status": restaurant.verification_status,
        },
        available=page["available"],
        notice=page["notice"],
        menus=page["menus"],
    )


async def reviews_list_handler(request: web.Request) -> web.Response:
    result = await _services(request).menus.list_reviews(int(request.match_info["item_id"]))
    return _ok(**result)


async def review_create_handler(request: web.Request) -> web.Response:
    data = await _read_json(request)
    review = await _services(request).menus.add_review(
        int(request.match_info["item_id"]),
        data,
        customer=_get_session(request),
    )
    return _ok(review=review)


def create_api_app(services: Services | None = None) -> web.Application:
    """Build the aiohttp application around the given (or configured) services."""
    app = web.Application(middlewares=[error_middleware])
    app[SERVICES_KEY] = services or build_services()

    app.router.add_get("/api/v1/health", health_handler)
    app.router.add_post("/api/v1/auth/session", session_handler)

    # Onboarding wizard
    app.router.add_get("/api/v1/onboarding", onboarding_handler)
    app.router.add_get("/api/v1/users/{user_id}/draft", draft_get_handler)
    app.router.add_put("/api/v1/users/{user_id}/draft", draft_put_handler)
    app.router.add_delete("/api/v1/users/{user_id}/draft", draft_delete_handler)
    app.router.add_post("/api/v1/onboarding/advance", advance_handler)
    app.router.add_post("/api/v1/onboarding/back", back_handler)
    app.router.add_post("/api/v1/onboarding/documents", document_upload_handler)
    app.router.add_delete("/api/v1/onboarding/documents/{document_id:\\d+}", document_delete_handler)
    app.router.add_post("/api/v1/restaurants", submit_handler)

    # Admin
    app.router.add_get("/api/v1/admin/restaurants", admin_restaurants_handler)
    app.router.add_get("/api/v1/admin/restaurants/{restaurant_id}", admin_restaurant_handler)
    app.router.add_get("/api/v1/admin/stats", admin_stats_handler)
    app.router.add_patch("/api/v1/restaurants/{restaurant_id}/verification", verification_handler)

    # Owner menus
    app.router.add_get("/api/v1/menus", menus_list_handler)
    app.router.add_post("/api/v1/menus", menu_create_handler)
    app.router.add_patch("/api/v1/menus/{menu_id:\\d+}", menu_update_handler)
    app.router.add_delete("/api/v1/menus/{menu_id:\\d+}", menu_delete_handler)
    app.router.add_post("/api/v1/menus/{menu_id:\\d+}/toggle", menu_toggle_handler)
    app.router.add_get("/api/v1/menus/{menu_id:\\d+}/items", items_list_handler)
    app.router.add_post("/api/v1/menus/{menu_id:\\d+}/items", item_create_handler)
    app.router.add_patch("/api/v1/items/{item_id:\\d+}", item_update_handler)
    app.router.add_delete("/api/v1/items/{item_id:\\d+}", item_delete_handler)
    app.router.add_post("/api/v1/items/{item_id:\\d+}/toggle", item_toggle_handler)
    app.router.add_post("/api/v1/items/{item_id:\\d+}/move", item_move_handler)
    app.router.add_get("/api/v1/restaurant/qr", restaurant_qr_handler)

    # Customers
    app.router.add_get("/api/v1/public/menu/{qr_code}", public_menu_handler)
    app.router.add_get("/api/v1/public/items/{item_id:\\d+}/reviews", reviews_list_handler)
    app.router.add_post("/api/v1/public/items/{item_id:\\d+}/reviews", review_create_handler)

    # Plain health check on the root
    app.router.add_get("/", health_handler)

    return app


async def start_api_server(app: web.Application) -> web.AppRunner:
    """Start the API server."""
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, CFG.api_host, CFG.api_port)
    await site.start()

    logger.info("API server started on %s:%s", CFG.api_host, CFG.api_port)

    return runner


async def stop_api_server(runner: web.AppRunner):
    """Stop the API server."""
    await runner.cleanup()
    logger.info("API server stopped")
