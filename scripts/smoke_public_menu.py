#!/usr/bin/env python3
"""
Public menu smoke-check: what a customer sees after scanning the QR code.

What it validates:
- only active menus open at the given moment are shown, sorted by order
- unavailable items are hidden; visible items are grouped by category
- average ratings come from reviews; rating 0/absent and 6 are refused
- reviews are kept after their item is deleted
- blocked and pending restaurants show a notice and no menus
- the QR code PNG encodes the public menu URL

Run:
  python3 scripts/smoke_public_menu.py
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

from auth import ROLE_RESTAURANT_AUTHORITY, ROLE_SUPER_ADMIN, SessionClaims, user_id_for_email  # noqa: E402
from errors import NotFoundError, ValidationError  # noqa: E402
from menus.memory import MemoryMenuStore  # noqa: E402
from menus.qr import menu_qr_png  # noqa: E402
from menus.service import MenuService, menu_url  # noqa: E402
from restaurants.documents import DocumentStorage  # noqa: E402
from restaurants.memory import MemoryDraftStore, MemoryRestaurantStore  # noqa: E402
from restaurants.service import OnboardingService, VerificationService  # noqa: E402


def _assert(cond: bool, message: str) -> None:
    if not cond:
        raise AssertionError(message)


def _claims(email: str, role: str = ROLE_RESTAURANT_AUTHORITY) -> SessionClaims:
    return SessionClaims(user_id=user_id_for_email(email), email=email, role=role, expires_at=2**31)


async def _expect(error_type: type[Exception], coro, message: str) -> None:
    try:
        await coro
    except error_type:
        return
    raise AssertionError(message)


def _names(section: dict) -> dict[str, list[str]]:
    return {category: [entry["item"].name for entry in entries] for category, entries in section["categories"].items()}


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
    verification = VerificationService(restaurants, menus=menus, timeout_sec=5)
    service = MenuService(menus, restaurants, timeout_sec=5)
    owner = _claims("owner@testcafe.example")
    admin = _claims("admin@dizmen.example", ROLE_SUPER_ADMIN)

    restaurant = await onboarding.submit(
        owner,
        form_data={"name": "Test Cafe", "address": "Moda Cd. 5, Kadikoy"},
        idempotency_key="public-menu",
    )

    breakfast = await service.create_menu(
        owner,
        {"name": "Breakfast", "time_ranges": [{"start_time": "07:00", "end_time": "11:00"}]},
    )
    all_day = await service.create_menu(owner, {"name": "Drinks"})
    dinner = await service.create_menu(
        owner,
        {"name": "Dinner", "time_ranges": [{"start_time": "18:00", "end_time": "23:00"}]},
    )
    hidden = await service.create_menu(owner, {"name": "Seasonal"})
    await service.toggle_menu(owner, hidden.id)

    menemen = await service.create_item(owner, breakfast.id, {"name": "Menemen", "price": 7.5, "category": "Eggs"})
    await service.create_item(owner, breakfast.id, {"name": "Omelette", "price": 6, "category": "Eggs"})
    await service.create_item(owner, breakfast.id, {"name": "Simit", "price": 1.25})
    await service.create_item(owner, breakfast.id, {"name": "Sold out", "price": 3, "is_available": False})
    tea = await service.create_item(owner, all_day.id, {"name": "Tea", "price": 1, "category": "Hot"})
    await service.create_item(owner, dinner.id, {"name": "Kebab", "price": 14, "category": "Grill"})
    await service.create_item(owner, hidden.id, {"name": "Pumpkin dessert", "price": 5})

    page = await service.public_menu(restaurant.qr_code, now=datetime(2026, 5, 4, 10, 30))
    _assert(page["available"], "verified restaurant serves its menu")
    _assert([s["menu"].name for s in page["menus"]] == ["Breakfast", "Drinks"], "10:30 shows breakfast and drinks")
    _assert(page["menus"][0]["hours"] == ["07:00 - 11:00"], "menu hours are formatted")
    _assert(
        _names(page["menus"][0]) == {"Eggs": ["Menemen", "Omelette"], "Other": ["Simit"]},
        "items grouped by category, unavailable hidden",
    )

    evening = await service.public_menu(restaurant.qr_code, now=datetime(2026, 5, 4, 19, 0))
    _assert([s["menu"].name for s in evening["menus"]] == ["Drinks", "Dinner"], "19:00 shows drinks and dinner")

    # Reviews.
    for payload in ({"rating": 0}, {}, {"rating": 6}, {"rating": "5"}, {"rating": True}):
        await _expect(ValidationError, service.add_review(menemen.id, payload), f"invalid rating {payload}")
    await service.add_review(menemen.id, {"rating": 5, "customer_name": "Ayse", "comment": "Great"})
    anonymous = await service.add_review(menemen.id, {"rating": 4})
    _assert(anonymous.customer_name == "Anonymous", "blank names post anonymously")
    await service.add_review(menemen.id, {"rating": 4})
    reviews = await service.list_reviews(menemen.id)
    _assert(len(reviews["reviews"]) == 3, "three reviews stored")
    _assert(reviews["average_rating"] == 4.3, f"average is 4.3, got {reviews['average_rating']}")

    rated = await service.public_menu(restaurant.qr_code, now=datetime(2026, 5, 4, 10, 30))
    eggs = rated["menus"][0]["categories"]["Eggs"]
    _assert(eggs[0]["average_rating"] == 4.3 and eggs[0]["review_count"] == 3, "public menu carries ratings")
    _assert(eggs[1]["average_rating"] == 0, "unrated item averages 0")
    _assert(eggs[0]["price_display"] == "$7.50", "public menu carries formatted prices")

    await service.add_review(tea.id, {"rating": 2})
    await service.delete_item(owner, tea.id)
    await _expect(NotFoundError, service.list_reviews(tea.id), "deleted item has no public page")
    _assert(len(await menus.list_reviews(tea.id)) == 1, "reviews outlive their item")

    stats = await verification.stats(admin)
    _assert(stats["reviews"] == 4 and stats["menus"] == 4, f"unexpected stats {stats}")
    _assert(stats["average_rating"] == 3.8, f"global average is 3.8, got {stats['average_rating']}")

    # Blocked restaurants show a notice instead of menus.
    await verification.block(admin, restaurant.id, "Hygiene complaint")
    blocked = await service.public_menu(restaurant.qr_code, now=datetime(2026, 5, 4, 10, 30))
    _assert(not blocked["available"] and blocked["menus"] == [], "blocked restaurant serves no menu")
    _assert(blocked["notice"], "blocked restaurant shows a notice")
    await _expect(NotFoundError, service.add_review(menemen.id, {"rating": 5}), "no reviews while blocked")
    owner_menus = await service.list_menus(owner)
    _assert(len(owner_menus) == 4, "blocked owner still manages menus")

    await verification.unblock(admin, restaurant.id)
    again = await service.public_menu(restaurant.qr_code, now=datetime(2026, 5, 4, 10, 30))
    _assert(again["available"], "unblocked restaurant serves its menu again")
    await _expect(NotFoundError, service.public_menu("rest-unknown"), "unknown QR code is 404")

    url = menu_url(restaurant, "https://dizmen.example/")
    _assert(url == f"https://dizmen.example/menu/{restaurant.qr_code}", f"unexpected menu url {url}")
    png = menu_qr_png(url, restaurant.name)
    _assert(png.startswith(b"\x89PNG\r\n\x1a\n"), "QR code is a PNG")


def main() -> None:
    tmpdir = Path(tempfile.mkdtemp(prefix="dizmen-smoke-public-"))
    try:
        asyncio.run(_run_checks(tmpdir))
        print("OK: public menu smoke passed.")
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


if __name__ == "__main__":
    main()
