"""Menu management for owners and the public QR menu for customers."""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any

from auth import ROLE_RESTAURANT_AUTHORITY, SessionClaims
from config import CFG
from database import utc_now_iso
from errors import AccessDeniedError, NotFoundError, ValidationError
from menus.availability import (
    calculate_average_rating,
    format_price,
    format_time_range,
    is_item_available_now,
    is_menu_available_now,
    is_valid_clock,
)
from menus.models import Menu, MenuItem, Review, TimeRange
from menus.storage import MenuStore
from restaurants import lifecycle
from restaurants.models import Restaurant
from restaurants.service import TimedStorage
from restaurants.storage import RestaurantStore


logger = logging.getLogger(__name__)

DELETE_MENU_CONFIRMATION = "delete all my related items"
MENU_NAME_MAX_LENGTH = 80
ITEM_NAME_MAX_LENGTH = 120
DESCRIPTION_MAX_LENGTH = 500
COMMENT_MAX_LENGTH = 1000
MAX_TIME_RANGES = 10
MAX_IMAGES = 10
MIN_RATING = 1
MAX_RATING = 5
ANONYMOUS_CUSTOMER = "Anonymous"
UNCATEGORIZED = "Other"


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _flag(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ValidationError(f"{name} must be true or false", {name: "Must be true or false"})


def parse_time_ranges(raw: Any) -> list[TimeRange]:
    """Validate HH:mm clock strings. Reversed ranges are kept; they just never match."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("time_ranges must be a list", {"time_ranges": "Must be a list"})
    if len(raw) > MAX_TIME_RANGES:
        raise ValidationError(f"At most {MAX_TIME_RANGES} time ranges", {"time_ranges": "Too many time ranges"})
    ranges: list[TimeRange] = []
    errors: dict[str, str] = {}
    for idx, entry in enumerate(raw):
        if not isinstance(entry, dict):
            errors[f"time_ranges.{idx}"] = "Expected start_time and end_time"
            continue
        start = _text(entry.get("start_time"))
        end = _text(entry.get("end_time"))
        if not is_valid_clock(start):
            errors[f"time_ranges.{idx}.start_time"] = "Use 24-hour HH:mm"
        if not is_valid_clock(end):
            errors[f"time_ranges.{idx}.end_time"] = "Use 24-hour HH:mm"
        ranges.append(TimeRange(start_time=start, end_time=end))
    if errors:
        raise ValidationError("Invalid time ranges", errors)
    return ranges


def parse_price(raw: Any) -> float:
    if isinstance(raw, bool):
        raise ValidationError("Invalid price", {"price": "Price must be a number"})
    try:
        price = round(float(raw), 2)
    except (TypeError, ValueError):
        raise ValidationError("Invalid price", {"price": "Price must be a number"}) from None
    if not math.isfinite(price) or price < 0:
        raise ValidationError("Invalid price", {"price": "Price cannot be negative"})
    return price


def parse_images(raw: Any) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("images must be a list", {"images": "Must be a list"})
    images = [_text(i) for i in raw if _text(i)]
    if len(images) > MAX_IMAGES:
        raise ValidationError(f"At most {MAX_IMAGES} images", {"images": "Too many images"})
    return images


def _required_name(raw: Any, max_length: int) -> str:
    name = _text(raw)
    if not name:
        raise ValidationError("Name is required", {"name": "Name is required"})
    if len(name) > max_length:
        raise ValidationError("Name is too long", {"name": "Name is too long"})
    return name


def _description(raw: Any) -> str:
    description = _text(raw)
    if len(description) > DESCRIPTION_MAX_LENGTH:
        raise ValidationError("Description is too long", {"description": "Description is too long"})
    return description


def menu_url(restaurant: Restaurant, base_url: str | None = None) -> str:
    return f"{(base_url or CFG.public_base_url).rstrip('/')}/menu/{restaurant.qr_code}"


class MenuService(TimedStorage):
    def __init__(
        self,
        menus: MenuStore,
        restaurants: RestaurantStore,
        *,
        timeout_sec: float | None = None,
    ) -> None:
        super().__init__(timeout_sec)
        self.menus = menus
        self.restaurants = restaurants

    # --- ownership -----------------------------------------------------

    async def owned_restaurant(self, actor: SessionClaims) -> Restaurant:
        """Restaurant the owner may manage: registered and not rejected."""
        if actor.role != ROLE_RESTAURANT_AUTHORITY:
            raise AccessDeniedError("Only restaurant accounts can manage menus.")
        restaurant = await self._call(
            self.restaurants.get_restaurant_by_owner(actor.user_id),
            what="get_restaurant_by_owner",
        )
        if not restaurant:
            raise NotFoundError("Register your restaurant first.")
        if (
            restaurant.onboarding_step != lifecycle.STEP_COMPLETE
            or restaurant.verification_status == lifecycle.STATUS_REJECTED
        ):
            raise AccessDeniedError("Finish restaurant registration before managing menus.")
        return restaurant

    async def _owned_menu(self, actor: SessionClaims, menu_id: int) -> tuple[Restaurant, Menu]:
        restaurant = await self.owned_restaurant(actor)
        menu = await self._call(self.menus.get_menu(int(menu_id)), what="get_menu")
        if not menu or menu.restaurant_id != restaurant.id:
            raise NotFoundError("Menu not found.")
        return restaurant, menu

    async def _owned_item(self, actor: SessionClaims, item_id: int) -> tuple[Restaurant, MenuItem]:
        restaurant = await self.owned_restaurant(actor)
        item = await self._call(self.menus.get_item(int(item_id)), what="get_item")
        if not item or item.restaurant_id != restaurant.id:
            raise NotFoundError("Item not found.")
        return restaurant, item

    # --- menus ---------------------------------------------------------

    async def list_menus(self, actor: SessionClaims) -> list[Menu]:
        restaurant = await self.owned_restaurant(actor)
        return await self._call(self.menus.list_menus(restaurant.id), what="list_menus")

    async def create_menu(self, actor: SessionClaims, payload: dict[str, Any]) -> Menu:
        restaurant = await self.owned_restaurant(actor)
        now = utc_now_iso()
        menu = Menu(
            id=0,
            restaurant_id=restaurant.id,
            name=_required_name(payload.get("name"), MENU_NAME_MAX_LENGTH),
            description=_description(payload.get("description")),
            icon=_text(payload.get("icon")) or None,
            order=0,
            is_active=True,
            time_ranges=parse_time_ranges(payload.get("time_ranges")),
            created_at=now,
            updated_at=now,
        )
        created = await self._call(self.menus.create_menu(menu), what="create_menu")
        logger.info("Restaurant %s created menu %s at position %s", restaurant.id, created.id, created.order)
        return created

    async def update_menu(self, actor: SessionClaims, menu_id: int, payload: dict[str, Any]) -> Menu:
        _, menu = await self._owned_menu(actor, menu_id)
        if "name" in payload:
            menu.name = _required_name(payload.get("name"), MENU_NAME_MAX_LENGTH)
        if "description" in payload:
            menu.description = _description(payload.get("description"))
        if "icon" in payload:
            menu.icon = _text(payload.get("icon")) or None
        if "time_ranges" in payload:
            menu.time_ranges = parse_time_ranges(payload.get("time_ranges"))
        if "is_active" in payload:
            menu.is_active = _flag(payload.get("is_active"), "is_active")
        if "order" in payload:
            try:
                order = int(payload.get("order"))
            except (TypeError, ValueError):
                raise ValidationError("Invalid order", {"order": "Order must be a number"}) from None
            if order < 1:
                raise ValidationError("Invalid order", {"order": "Order starts at 1"})
            menu.order = order
        menu.updated_at = utc_now_iso()
        updated = await self._call(self.menus.update_menu(menu), what="update_menu")
        if not updated:
            raise NotFoundError("Menu not found.")
        return updated

    async def toggle_menu(self, actor: SessionClaims, menu_id: int) -> Menu:
        _, menu = await self._owned_menu(actor, menu_id)
        menu.is_active = not menu.is_active
        menu.updated_at = utc_now_iso()
        updated = await self._call(self.menus.update_menu(menu), what="update_menu")
        if not updated:
            raise NotFoundError("Menu not found.")
        logger.info("Menu %s is now %s", updated.id, "active" if updated.is_active else "inactive")
        return updated

    async def delete_menu(self, actor: SessionClaims, menu_id: int, *, confirmation: str | None = None) -> int:
        """Delete a menu with its items. Non-empty menus need the confirmation phrase."""
        restaurant, menu = await self._owned_menu(actor, menu_id)
        items = await self._call(self.menus.list_items(menu.id), what="list_items")
        if items and _text(confirmation).lower() != DELETE_MENU_CONFIRMATION:
            raise ValidationError(
                f'Type "{DELETE_MENU_CONFIRMATION}" to delete this menu and its {len(items)} items',
                {"confirmation": "Confirmation phrase does not match"},
            )
        deleted_items = await self._call(self.menus.delete_menu(menu.id), what="delete_menu")
        logger.info("Restaurant %s deleted menu %s with %s items", restaurant.id, menu.id, deleted_items)
        return deleted_items

    # --- items ---------------------------------------------------------

    async def list_items(self, actor: SessionClaims, menu_id: int) -> list[MenuItem]:
        _, menu = await self._owned_menu(actor, menu_id)
        return await self._call(self.menus.list_items(menu.id), what="list_items")

    async def create_item(self, actor: SessionClaims, menu_id: int, payload: dict[str, Any]) -> MenuItem:
        restaurant, menu = await self._owned_menu(actor, menu_id)
        now = utc_now_iso()
        item = MenuItem(
            id=0,
            menu_id=menu.id,
            restaurant_id=restaurant.id,
            name=_required_name(payload.get("name"), ITEM_NAME_MAX_LENGTH),
            description=_description(payload.get("description")),
            price=parse_price(payload.get("price")),
            category=_text(payload.get("category")),
            images=parse_images(payload.get("images")),
            is_available=_flag(payload.get("is_available", True), "is_available"),
            created_at=now,
            updated_at=now,
        )
        return await self._call(self.menus.create_item(item), what="create_item")

    async def update_item(self, actor: SessionClaims, item_id: int, payload: dict[str, Any]) -> MenuItem:
        _, item = await self._owned_item(actor, item_id)
        if "name" in payload:
            item.name = _required_name(payload.get("name"), ITEM_NAME_MAX_LENGTH)
        if "description" in payload:
            item.description = _description(payload.get("description"))
        if "price" in payload:
            item.price = parse_price(payload.get("price"))
        if "category" in payload:
            item.category = _text(payload.get("category"))
        if "images" in payload:
            item.images = parse_images(payload.get("images"))
        if "is_available" in payload:
            item.is_available = _flag(payload.get("is_available"), "is_available")
        return await self._save_item(item)

    async def _save_item(self, item: MenuItem) -> MenuItem:
        item.updated_at = utc_now_iso()
        updated = await self._call(self.menus.update_item(item), what="update_item")
        if not updated:
            raise NotFoundError("Item not found.")
        return updated

    async def toggle_item(self, actor: SessionClaims, item_id: int) -> MenuItem:
        _, item = await self._owned_item(actor, item_id)
        item.is_available = not item.is_available
        return await self._save_item(item)

    async def move_item(self, actor: SessionClaims, item_id: int, target_menu_id: int) -> MenuItem:
        """Move an item to another active menu; it takes on that menu's schedule."""
        restaurant, item = await self._owned_item(actor, item_id)
        try:
            target_id = int(target_menu_id)
        except (TypeError, ValueError):
            raise ValidationError("Choose a target menu", {"target_menu_id": "Required"}) from None
        if target_id == item.menu_id:
            raise ValidationError("The item is already in this menu", {"target_menu_id": "Pick a different menu"})
        target = await self._call(self.menus.get_menu(target_id), what="get_menu")
        if not target or target.restaurant_id != restaurant.id:
            raise NotFoundError("Target menu not found.")
        if not target.is_active:
            raise ValidationError("Items can only be moved to an active menu", {"target_menu_id": "Menu is inactive"})
        previous_menu_id = item.menu_id
        item.menu_id = target.id
        moved = await self._save_item(item)
        logger.info("Item %s moved from menu %s to menu %s", moved.id, previous_menu_id, target.id)
        return moved

    async def delete_item(self, actor: SessionClaims, item_id: int) -> None:
        _, item = await self._owned_item(actor, item_id)
        if not await self._call(self.menus.delete_item(item.id), what="delete_item"):
            raise NotFoundError("Item not found.")

    # --- reviews -------------------------------------------------------

    async def _public_item(self, item_id: int) -> MenuItem:
        item = await self._call(self.menus.get_item(int(item_id)), what="get_item")
        if not item:
            raise NotFoundError("Item not found.")
        restaurant = await self._call(self.restaurants.get_restaurant(item.restaurant_id), what="get_restaurant")
        if not restaurant or not lifecycle.is_publicly_visible(restaurant.verification_status):
            raise NotFoundError("Item not found.")
        return item

    async def add_review(
        self,
        item_id: int,
        payload: dict[str, Any],
        *,
        customer: SessionClaims | None = None,
    ) -> Review:
        item = await self._public_item(item_id)
        raw_rating = payload.get("rating")
        if isinstance(raw_rating, bool) or not isinstance(raw_rating, int) or not MIN_RATING <= raw_rating <= MAX_RATING:
            raise ValidationError("Please select a rating", {"rating": f"Rating must be {MIN_RATING}-{MAX_RATING}"})
        comment = _text(payload.get("comment"))
        if len(comment) > COMMENT_MAX_LENGTH:
            raise ValidationError("Review is too long", {"comment": "Review is too long"})
        customer_name = _text(payload.get("customer_name"))[:80] or ANONYMOUS_CUSTOMER
        review = Review(
            id=0,
            menu_item_id=item.id,
            customer_id=customer.user_id if customer else None,
            customer_name=customer_name,
            rating=raw_rating,
            comment=comment,
            created_at=utc_now_iso(),
        )
        saved = await self._call(self.menus.add_review(review), what="add_review")
        logger.info("Review %s (%s stars) added to item %s", saved.id, saved.rating, item.id)
        return saved

    async def list_reviews(self, item_id: int) -> dict[str, Any]:
        item = await self._public_item(item_id)
        reviews = await self._call(self.menus.list_reviews(item.id), what="list_reviews")
        return {
            "item": item,
            "reviews": reviews,
            "average_rating": calculate_average_rating(r.rating for r in reviews),
        }

    # --- public menu ---------------------------------------------------

    async def public_menu(self, qr_code: str, now: datetime | None = None) -> dict[str, Any]:
        """What a customer sees after scanning the QR code at `now`."""
        restaurant = await self._call(self.restaurants.get_restaurant_by_qr(str(qr_code)), what="get_restaurant_by_qr")
        if not restaurant:
            raise NotFoundError("Restaurant not found.")

        if not lifecycle.is_publicly_visible(restaurant.verification_status):
            if restaurant.verification_status == lifecycle.STATUS_BLOCKED:
                notice = "This restaurant is currently unavailable."
            else:
                notice = "This restaurant's menu is not published yet."
            return {"restaurant": restaurant, "available": False, "notice": notice, "menus": []}

        moment = now or datetime.now()
        menus = await self._call(self.menus.list_menus(restaurant.id), what="list_menus")
        visible_menus = [m for m in menus if is_menu_available_now(m, moment)]
        items = await self._call(self.menus.list_restaurant_items(restaurant.id), what="list_restaurant_items")
        ratings = await self._call(
            self.menus.ratings_by_item([i.id for i in items]),
            what="ratings_by_item",
        )

        sections: list[dict[str, Any]] = []
        for menu in sorted(visible_menus, key=lambda m: m.order):
            categories: dict[str, list[dict[str, Any]]] = {}
            for item in items:
                if item.menu_id != menu.id or not is_item_available_now(item, menu, moment):
                    continue
                item_ratings = ratings.get(item.id, [])
                categories.setdefault(item.category or UNCATEGORIZED, []).append(
                    {
                        "item": item,
                        "price_display": format_price(item.price),
                        "average_rating": calculate_average_rating(item_ratings),
                        "review_count": len(item_ratings),
                    }
                )
            sections.append(
                {
                    "menu": menu,
                    "hours": [format_time_range(r) for r in menu.time_ranges],
                    "categories": categories,
                }
            )
        return {"restaurant": restaurant, "available": True, "notice": None, "menus": sections}

    async def totals(self) -> dict[str, float]:
        return await self._call(self.menus.totals(), what="menu_totals")
