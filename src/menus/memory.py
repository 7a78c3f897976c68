"""Process-local menu store for tests and STORAGE_BACKEND=memory."""

from __future__ import annotations

import copy
from dataclasses import replace

from database import utc_now_iso
from menus.availability import calculate_average_rating
from menus.models import Menu, MenuItem, Review


class MemoryMenuStore:
    def __init__(self) -> None:
        self._menus: dict[int, Menu] = {}
        self._items: dict[int, MenuItem] = {}
        self._reviews: list[Review] = []
        self._next_menu_id = 1
        self._next_item_id = 1

    async def list_menus(self, restaurant_id: str) -> list[Menu]:
        menus = [m for m in self._menus.values() if m.restaurant_id == str(restaurant_id)]
        return [copy.deepcopy(m) for m in sorted(menus, key=lambda m: (m.order, m.id))]

    async def get_menu(self, menu_id: int) -> Menu | None:
        menu = self._menus.get(int(menu_id))
        return copy.deepcopy(menu) if menu else None

    async def create_menu(self, menu: Menu) -> Menu:
        count = sum(1 for m in self._menus.values() if m.restaurant_id == menu.restaurant_id)
        stored = replace(copy.deepcopy(menu), id=self._next_menu_id, order=count + 1)
        self._next_menu_id += 1
        self._menus[stored.id] = stored
        return copy.deepcopy(stored)

    async def update_menu(self, menu: Menu) -> Menu | None:
        if menu.id not in self._menus:
            return None
        stored = replace(copy.deepcopy(menu), updated_at=utc_now_iso())
        self._menus[menu.id] = stored
        return copy.deepcopy(stored)

    async def delete_menu(self, menu_id: int) -> int:
        if self._menus.pop(int(menu_id), None) is None:
            return 0
        doomed = [item_id for item_id, item in self._items.items() if item.menu_id == int(menu_id)]
        for item_id in doomed:
            del self._items[item_id]
        return len(doomed)

    async def list_items(self, menu_id: int) -> list[MenuItem]:
        items = [i for i in self._items.values() if i.menu_id == int(menu_id)]
        return [copy.deepcopy(i) for i in sorted(items, key=lambda i: i.id)]

    async def list_restaurant_items(self, restaurant_id: str) -> list[MenuItem]:
        items = [i for i in self._items.values() if i.restaurant_id == str(restaurant_id)]
        return [copy.deepcopy(i) for i in sorted(items, key=lambda i: i.id)]

    async def get_item(self, item_id: int) -> MenuItem | None:
        item = self._items.get(int(item_id))
        return copy.deepcopy(item) if item else None

    async def create_item(self, item: MenuItem) -> MenuItem:
        stored = replace(copy.deepcopy(item), id=self._next_item_id)
        self._next_item_id += 1
        self._items[stored.id] = stored
        return copy.deepcopy(stored)

    async def update_item(self, item: MenuItem) -> MenuItem | None:
        if item.id not in self._items:
            return None
        stored = replace(copy.deepcopy(item), updated_at=utc_now_iso())
        self._items[item.id] = stored
        return copy.deepcopy(stored)

    async def delete_item(self, item_id: int) -> bool:
        return self._items.pop(int(item_id), None) is not None

    async def add_review(self, review: Review) -> Review:
        stored = replace(copy.deepcopy(review), id=len(self._reviews) + 1)
        self._reviews.append(stored)
        return copy.deepcopy(stored)

    async def list_reviews(self, menu_item_id: int) -> list[Review]:
        reviews = [r for r in self._reviews if r.menu_item_id == int(menu_item_id)]
        return [copy.deepcopy(r) for r in sorted(reviews, key=lambda r: r.id, reverse=True)]

    async def ratings_by_item(self, menu_item_ids: list[int]) -> dict[int, list[int]]:
        wanted = {int(i) for i in menu_item_ids}
        ratings: dict[int, list[int]] = {}
        for review in self._reviews:
            if review.menu_item_id in wanted:
                ratings.setdefault(review.menu_item_id, []).append(review.rating)
        return ratings

    async def totals(self) -> dict[str, float]:
        return {
            "menus": len(self._menus),
            "items": len(self._items),
            "reviews": len(self._reviews),
            "average_rating": calculate_average_rating(r.rating for r in self._reviews),
        }
