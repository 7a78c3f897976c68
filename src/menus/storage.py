"""Storage contract for menus, items and reviews."""

from __future__ import annotations

from typing import Protocol

from menus.models import Menu, MenuItem, Review


class MenuStore(Protocol):
    async def list_menus(self, restaurant_id: str) -> list[Menu]:
        """Menus of a restaurant ordered by `order`."""

    async def get_menu(self, menu_id: int) -> Menu | None:
        """Menu by id."""

    async def create_menu(self, menu: Menu) -> Menu:
        """Insert a menu at position count + 1 of its restaurant."""

    async def update_menu(self, menu: Menu) -> Menu | None:
        """Overwrite editable fields. None when the menu is gone."""

    async def delete_menu(self, menu_id: int) -> int:
        """Delete a menu and its items. Returns the number of deleted items."""

    async def list_items(self, menu_id: int) -> list[MenuItem]:
        """Items of one menu in creation order."""

    async def list_restaurant_items(self, restaurant_id: str) -> list[MenuItem]:
        """Items of every menu of a restaurant."""

    async def get_item(self, item_id: int) -> MenuItem | None:
        """Item by id."""

    async def create_item(self, item: MenuItem) -> MenuItem:
        """Insert an item and return it with its id."""

    async def update_item(self, item: MenuItem) -> MenuItem | None:
        """Overwrite editable fields, menu_id included. None when the item is gone."""

    async def delete_item(self, item_id: int) -> bool:
        """Delete an item. Its reviews are kept."""

    async def add_review(self, review: Review) -> Review:
        """Append a review and return it with its id."""

    async def list_reviews(self, menu_item_id: int) -> list[Review]:
        """Reviews of an item, newest first."""

    async def ratings_by_item(self, menu_item_ids: list[int]) -> dict[int, list[int]]:
        """Ratings grouped by item id."""

    async def totals(self) -> dict[str, float]:
        """Platform-wide counters: menus, items, reviews, average_rating."""
