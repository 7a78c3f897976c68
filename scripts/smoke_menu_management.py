#!/usr/bin/env python3
"""
Menu management smoke-check: owners curate menus and items of their restaurant.

What it validates:
- only a registered (complete, not rejected) restaurant can manage menus
- new menus are active and get order = count + 1
- HH:mm time ranges are validated; reversed ranges are stored as given
- deleting a non-empty menu needs the confirmation phrase and cascades to items
- moving an item needs a different, active menu and changes its schedule
- owners cannot touch menus or items of another restaurant

Run:
  python3 scripts/smoke_menu_management.py
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
import sys


def _setup_import_path() -> None:
    for candidate in (
        Path(__file__).resolve().parents[1] / "src",
        Path.cwd() / "src",
        Path("/app/src"),
    ):
        if candidate.exists():
            sys.path.insert(0, str(candidate))
            return


_setup_import_path()

from auth import ROLE_CUSTOMER, ROLE_RESTAURANT_AUTHORITY, SessionClaims, user_id_for_email  # noqa: E402
from errors import AccessDeniedError, NotFoundError, ValidationError  # noqa: E402
from menus.availability import is_item_available_now  # noqa: E402
from menus.memory import MemoryMenuStore  # noqa: E402
from menus.service import DELETE_MENU_CONFIRMATION, MenuService  # noqa: E402
from restaurants.documents import DocumentStorage  # noqa: E402
from restaurants.memory import MemoryDraftStore, MemoryRestaurantStore  # noqa: E402
from restaurants.service import OnboardingService  # noqa: E402


def _assert(cond: bool, message: str) -> None:
    if not cond:
        raise AssertionError(message)


def _claims(email: str, role: str = ROLE_RESTAURANT_AUTHORITY) -> SessionClaims:
    return SessionClaims(user_id=user_id_for_email(email), email=email, role=role, expires_at=2**31)


async def _expect(error_type: type[Exception], coro, message: str) -> Exception:
    try:
        await coro
    except error_type as error:
        return error
    raise AssertionError(message)


async def _register(onboarding: OnboardingService, owner: SessionClaims, name: str) -> None:
    await onboarding.submit(
        owner,
        form_data={"name": name, "address": "Istiklal Cd. 1, Beyoglu, Istanbul"},
        idempotency_key=f"register-{owner.user_id}",
    )


async def _run_checks(upload_dir: Path) -> None:
    restaurants = MemoryRestaurantStore()
    menus = MemoryMenuStore()
    onboarding = OnboardingService(
        restaurants,
        MemoryDraftStore(),
        DocumentStorage(upload_dir, max_bytes=1024),
        document_review=False,
        timeout_sec=5,
    )
    service = MenuService(menus, restaurants, timeout_sec=5)
    owner = _claims("owner@testcafe.example")
    rival = _claims("rival@othercafe.example")

    await _expect(NotFoundError, service.list_menus(owner), "unregistered owner has no menus")
    await _expect(AccessDeniedError, service.list_menus(_claims("guest@x.example", ROLE_CUSTOMER)), "customers cannot manage")

    await _register(onboarding, owner, "Test Cafe")
    await _register(onboarding, rival, "Other Cafe")

    breakfast = await service.create_menu(
        owner,
        {"name": "Breakfast", "icon": "🍳", "time_ranges": [{"start_time": "07:00", "end_time": "11:00"}]},
    )
    lunch = await service.create_menu(owner, {"name": "Lunch", "description": "Weekday lunch"})
    late = await service.create_menu(
        owner,
        {"name": "Late night", "time_ranges": [{"start_time": "23:00", "end_time": "02:00"}]},
    )
    _assert([breakfast.order, lunch.order, late.order] == [1, 2, 3], "menus are appended at count + 1")
    _assert(breakfast.is_active and lunch.is_active, "new menus are active")
    _assert(late.time_ranges[0].start_time == "23:00", "reversed range is stored as given")
    rival_menu = await service.create_menu(rival, {"name": "Rival specials"})
    _assert(rival_menu.order == 1, "order counts per restaurant")

    await _expect(ValidationError, service.create_menu(owner, {"name": ""}), "menu name is required")
    error = await _expect(
        ValidationError,
        service.create_menu(owner, {"name": "Bad", "time_ranges": [{"start_time": "7:00", "end_time": "25:00"}]}),
        "malformed clocks are refused",
    )
    _assert(
        {"time_ranges.0.start_time", "time_ranges.0.end_time"} <= set(error.field_errors),
        "both malformed ends are reported",
    )
    await _expect(
        ValidationError,
        service.update_menu(owner, lunch.id, {"time_ranges": [{"start_time": "12:00"}]}),
        "update validates ranges too",
    )

    updated = await service.update_menu(
        owner,
        lunch.id,
        {"time_ranges": [{"start_time": "12:00", "end_time": "15:00"}], "description": "Set menu"},
    )
    _assert(updated.description == "Set menu" and len(updated.time_ranges) == 1, "menu update is stored")

    menemen = await service.create_item(
        owner,
        breakfast.id,
        {"name": "Menemen", "price": "7.50", "category": "Eggs", "images": ["https://img.example/m.jpg", " "]},
    )
    _assert(menemen.price == 7.5, "price is parsed")
    _assert(menemen.images == ["https://img.example/m.jpg"], "blank images are dropped")
    _assert(menemen.is_available, "new items are available")
    simit = await service.create_item(owner, breakfast.id, {"name": "Simit", "price": 1.25, "category": "Bakery"})
    await _expect(ValidationError, service.create_item(owner, breakfast.id, {"name": "Free", "price": -1}), "negative price")
    await _expect(ValidationError, service.create_item(owner, breakfast.id, {"name": "NaN", "price": "abc"}), "bad price")

    toggled = await service.toggle_item(owner, simit.id)
    _assert(not toggled.is_available, "toggle hides the item")
    edited = await service.update_item(owner, simit.id, {"price": 1.5, "is_available": True})
    _assert(edited.price == 1.5 and edited.is_available, "item update is stored")

    # Moving an item changes the window it follows.
    morning = datetime(2026, 5, 4, 9, 30)
    noon = datetime(2026, 5, 4, 13, 0)
    _assert(is_item_available_now(menemen, breakfast, morning), "breakfast item visible in the morning")
    await _expect(ValidationError, service.move_item(owner, menemen.id, breakfast.id), "move to the same menu")
    paused = await service.toggle_menu(owner, late.id)
    _assert(not paused.is_active, "toggle deactivates the menu")
    await _expect(ValidationError, service.move_item(owner, menemen.id, late.id), "move to an inactive menu")
    await _expect(NotFoundError, service.move_item(owner, menemen.id, rival_menu.id), "move to a foreign menu")
    moved = await service.move_item(owner, menemen.id, lunch.id)
    _assert(moved.menu_id == lunch.id, "item now belongs to lunch")
    lunch_now = await menus.get_menu(lunch.id)
    _assert(not is_item_available_now(moved, lunch_now, morning), "moved item follows lunch hours")
    _assert(is_item_available_now(moved, lunch_now, noon), "moved item is visible at lunch")
    _assert(moved.price == menemen.price and moved.name == menemen.name, "move keeps item content")

    # Ownership.
    await _expect(NotFoundError, service.update_menu(rival, breakfast.id, {"name": "Mine"}), "foreign menu update")
    await _expect(NotFoundError, service.delete_item(rival, simit.id), "foreign item delete")
    await _expect(NotFoundError, service.list_items(rival, breakfast.id), "foreign item list")

    # Delete with confirmation; items cascade.
    deleted_empty = await service.delete_menu(owner, late.id)
    _assert(deleted_empty == 0, "empty menus delete without confirmation")
    await _expect(ValidationError, service.delete_menu(owner, breakfast.id), "non-empty delete needs the phrase")
    await _expect(
        ValidationError,
        service.delete_menu(owner, breakfast.id, confirmation="delete"),
        "wrong phrase is refused",
    )
    _assert(await menus.get_menu(breakfast.id) is not None, "refused delete keeps the menu")
    deleted = await service.delete_menu(owner, breakfast.id, confirmation=DELETE_MENU_CONFIRMATION)
    _assert(deleted == 1, f"breakfast had one item left, deleted {deleted}")
    _assert(await menus.get_item(simit.id) is None, "items are deleted with their menu")
    _assert(await menus.get_item(menemen.id) is not None, "moved item survives the old menu")

    remaining = await service.list_menus(owner)
    _assert([m.name for m in remaining] == ["Lunch"], "only lunch remains")

    await service.delete_item(owner, menemen.id)
    await _expect(NotFoundError, service.toggle_item(owner, menemen.id), "deleted item is gone")


def main() -> None:
    tmpdir = Path(tempfile.mkdtemp(prefix="dizmen-smoke-menus-"))
    try:
        asyncio.run(_run_checks(tmpdir))
        print("OK: menu management smoke passed.")
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


if __name__ == "__main__":
    main()
