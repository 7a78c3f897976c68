"""SQLite persistence for menus, items and reviews."""

from __future__ import annotations

import json
from typing import Any

from database import fetch_all, fetch_one, open_db
from menus.availability import calculate_average_rating
from menus.models import Menu, MenuItem, Review, TimeRange
from restaurants.repository import SqliteStore


MENU_COLUMNS = (
    "id, restaurant_id, name, description, icon, sort_order, is_active, "
    "time_ranges_json, created_at, updated_at"
)
ITEM_COLUMNS = (
    "id, menu_id, restaurant_id, name, description, price, category, "
    "images_json, is_available, created_at, updated_at"
)
REVIEW_COLUMNS = "id, menu_item_id, customer_id, customer_name, rating, comment, created_at"


def _load_list(raw: str | None) -> list[Any]:
    try:
        value = json.loads(raw or "[]")
    except ValueError:
        return []
    return value if isinstance(value, list) else []


def _dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def menu_from_row(row: dict[str, Any]) -> Menu:
    ranges = [
        TimeRange(start_time=str(r.get("start_time") or ""), end_time=str(r.get("end_time") or ""))
        for r in _load_list(row.get("time_ranges_json"))
        if isinstance(r, dict)
    ]
    return Menu(
        id=int(row["id"]),
        restaurant_id=str(row["restaurant_id"]),
        name=str(row["name"]),
        description=str(row.get("description") or ""),
        icon=row.get("icon"),
        order=int(row["sort_order"]),
        is_active=bool(row["is_active"]),
        time_ranges=ranges,
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
    )


def item_from_row(row: dict[str, Any]) -> MenuItem:
    return MenuItem(
        id=int(row["id"]),
        menu_id=int(row["menu_id"]),
        restaurant_id=str(row["restaurant_id"]),
        name=str(row["name"]),
        description=str(row.get("description") or ""),
        price=float(row["price"]),
        category=str(row.get("category") or ""),
        images=[str(i) for i in _load_list(row.get("images_json"))],
        is_available=bool(row["is_available"]),
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
    )


def review_from_row(row: dict[str, Any]) -> Review:
    return Review(
        id=int(row["id"]),
        menu_item_id=int(row["menu_item_id"]),
        customer_id=row.get("customer_id"),
        customer_name=str(row["customer_name"]),
        rating=int(row["rating"]),
        comment=str(row.get("comment") or ""),
        created_at=str(row["created_at"]),
    )


def _ranges_json(menu: Menu) -> str:
    return _dump([{"start_time": r.start_time, "end_time": r.end_time} for r in menu.time_ranges])


class MenuRepository(SqliteStore):
    async def list_menus(self, restaurant_id: str) -> list[Menu]:
        async def _op() -> list[Menu]:
            async with open_db(self.db_path) as db:
                rows = await fetch_all(
                    db,
                    f"SELECT {MENU_COLUMNS} FROM menus WHERE restaurant_id = ? ORDER BY sort_order, id",
                    (str(restaurant_id),),
                )
                return [menu_from_row(row) for row in rows]

        return await self._run("list_menus", _op)

    async def get_menu(self, menu_id: int) -> Menu | None:
        async def _op() -> Menu | None:
            async with open_db(self.db_path) as db:
                row = await fetch_one(db, f"SELECT {MENU_COLUMNS} FROM menus WHERE id = ?", (int(menu_id),))
                return menu_from_row(row) if row else None

        return await self._run("get_menu", _op)

    async def create_menu(self, menu: Menu) -> Menu:
        async def _op() -> Menu:
            async with open_db(self.db_path) as db:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    row = await fetch_one(
                        db,
                        "SELECT COUNT(*) AS cnt FROM menus WHERE restaurant_id = ?",
                        (menu.restaurant_id,),
                    )
                    order = int(row["cnt"] if row else 0) + 1
                    cursor = await db.execute(
                        """
                        INSERT INTO menus(restaurant_id, name, description, icon, sort_order,
                                          is_active, time_ranges_json, created_at, updated_at)
                        VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            menu.restaurant_id,
                            menu.name,
                            menu.description,
                            menu.icon,
                            order,
                            1 if menu.is_active else 0,
                            _ranges_json(menu),
                            menu.created_at,
                            menu.updated_at,
                        ),
                    )
                    menu_id = int(cursor.lastrowid)
                    await db.commit()
                except BaseException:
                    await db.rollback()
                    raise
            menu.id = menu_id
            menu.order = order
            return menu

        return await self._run("create_menu", _op)

    async def update_menu(self, menu: Menu) -> Menu | None:
        async def _op() -> Menu | None:
            async with open_db(self.db_path) as db:
                cursor = await db.execute(
                    """
                    UPDATE menus
                       SET name = ?, description = ?, icon = ?, sort_order = ?,
                           is_active = ?, time_ranges_json = ?, updated_at = ?
                     WHERE id = ?
                    """,
                    (
                        menu.name,
                        menu.description,
                        menu.icon,
                        menu.order,
                        1 if menu.is_active else 0,
                        _ranges_json(menu),
                        menu.updated_at,
                        menu.id,
                    ),
                )
                await db.commit()
                if int(cursor.rowcount or 0) == 0:
                    return None
                row = await fetch_one(db, f"SELECT {MENU_COLUMNS} FROM menus WHERE id = ?", (menu.id,))
                return menu_from_row(row) if row else None

        return await self._run("update_menu", _op)

    async def delete_menu(self, menu_id: int) -> int:
        async def _op() -> int:
            async with open_db(self.db_path) as db:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    row = await fetch_one(
                        db,
                        "SELECT COUNT(*) AS cnt FROM menu_items WHERE menu_id = ?",
                        (int(menu_id),),
                    )
                    await db.execute("DELETE FROM menu_items WHERE menu_id = ?", (int(menu_id),))
                    await db.execute("DELETE FROM menus WHERE id = ?", (int(menu_id),))
                    await db.commit()
                except BaseException:
                    await db.rollback()
                    raise
                return int(row["cnt"] if row else 0)

        return await self._run("delete_menu", _op)

    async def list_items(self, menu_id: int) -> list[MenuItem]:
        async def _op() -> list[MenuItem]:
            async with open_db(self.db_path) as db:
                rows = await fetch_all(
                    db,
                    f"SELECT {ITEM_COLUMNS} FROM menu_items WHERE menu_id = ? ORDER BY id",
                    (int(menu_id),),
                )
                return [item_from_row(row) for row in rows]

        return await self._run("list_items", _op)

    async def list_restaurant_items(self, restaurant_id: str) -> list[MenuItem]:
        async def _op() -> list[MenuItem]:
            async with open_db(self.db_path) as db:
                rows = await fetch_all(
                    db,
                    f"SELECT {ITEM_COLUMNS} FROM menu_items WHERE restaurant_id = ? ORDER BY id",
                    (str(restaurant_id),),
                )
                return [item_from_row(row) for row in rows]

        return await self._run("list_restaurant_items", _op)

    async def get_item(self, item_id: int) -> MenuItem | None:
        async def _op() -> MenuItem | None:
            async with open_db(self.db_path) as db:
                row = await fetch_one(db, f"SELECT {ITEM_COLUMNS} FROM menu_items WHERE id = ?", (int(item_id),))
                return item_from_row(row) if row else None

        return await self._run("get_item", _op)

    async def create_item(self, item: MenuItem) -> MenuItem:
        async def _op() -> MenuItem:
            async with open_db(self.db_path) as db:
                cursor = await db.execute(
                    """
                    INSERT INTO menu_items(menu_id, restaurant_id, name, description, price, category,
                                           images_json, is_available, created_at, updated_at)
                    VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        item.menu_id,
                        item.restaurant_id,
                        item.name,
                        item.description,
                        float(item.price),
                        item.category,
                        _dump(list(item.images)),
                        1 if item.is_available else 0,
                        item.created_at,
                        item.updated_at,
                    ),
                )
                await db.commit()
                item.id = int(cursor.lastrowid)
                return item

        return await self._run("create_item", _op)

    async def update_item(self, item: MenuItem) -> MenuItem | None:
        async def _op() -> MenuItem | None:
            async with open_db(self.db_path) as db:
                cursor = await db.execute(
                    """
                    UPDATE menu_items
                       SET menu_id = ?, name = ?, description = ?, price = ?, category = ?,
                           images_json = ?, is_available = ?, updated_at = ?
                     WHERE id = ?
                    """,
                    (
                        item.menu_id,
                        item.name,
                        item.description,
                        float(item.price),
                        item.category,
                        _dump(list(item.images)),
                        1 if item.is_available else 0,
                        item.updated_at,
                        item.id,
                    ),
                )
                await db.commit()
                if int(cursor.rowcount or 0) == 0:
                    return None
                row = await fetch_one(db, f"SELECT {ITEM_COLUMNS} FROM menu_items WHERE id = ?", (item.id,))
                return item_from_row(row) if row else None

        return await self._run("update_item", _op)

    async def delete_item(self, item_id: int) -> bool:
        async def _op() -> bool:
            async with open_db(self.db_path) as db:
                cursor = await db.execute("DELETE FROM menu_items WHERE id = ?", (int(item_id),))
                await db.commit()
                return int(cursor.rowcount or 0) > 0

        return await self._run("delete_item", _op)

    async def add_review(self, review: Review) -> Review:
        async def _op() -> Review:
            async with open_db(self.db_path) as db:
                cursor = await db.execute(
                    """
                    INSERT INTO reviews(menu_item_id, customer_id, customer_name, rating, comment, created_at)
                    VALUES(?, ?, ?, ?, ?, ?)
                    """,
                    (
                        review.menu_item_id,
                        review.customer_id,
                        review.customer_name,
                        int(review.rating),
                        review.comment,
                        review.created_at,
                    ),
                )
                await db.commit()
                review.id = int(cursor.lastrowid)
                return review

        return await self._run("add_review", _op)

    async def list_reviews(self, menu_item_id: int) -> list[Review]:
        async def _op() -> list[Review]:
            async with open_db(self.db_path) as db:
                rows = await fetch_all(
                    db,
                    f"SELECT {REVIEW_COLUMNS} FROM reviews WHERE menu_item_id = ? ORDER BY id DESC",
                    (int(menu_item_id),),
                )
                return [review_from_row(row) for row in rows]

        return await self._run("list_reviews", _op)

    async def ratings_by_item(self, menu_item_ids: list[int]) -> dict[int, list[int]]:
        ids = [int(i) for i in menu_item_ids]
        if not ids:
            return {}

        async def _op() -> dict[int, list[int]]:
            placeholders = ", ".join("?" for _ in ids)
            async with open_db(self.db_path) as db:
                rows = await fetch_all(
                    db,
                    f"SELECT menu_item_id, rating FROM reviews WHERE menu_item_id IN ({placeholders})",
                    tuple(ids),
                )
            ratings: dict[int, list[int]] = {}
            for row in rows:
                ratings.setdefault(int(row["menu_item_id"]), []).append(int(row["rating"]))
            return ratings

        return await self._run("ratings_by_item", _op)

    async def totals(self) -> dict[str, float]:
        async def _op() -> dict[str, float]:
            async with open_db(self.db_path) as db:
                menus = await fetch_one(db, "SELECT COUNT(*) AS cnt FROM menus")
                items = await fetch_one(db, "SELECT COUNT(*) AS cnt FROM menu_items")
                ratings = await fetch_all(db, "SELECT rating FROM reviews")
            return {
                "menus": int(menus["cnt"] if menus else 0),
                "items": int(items["cnt"] if items else 0),
                "reviews": len(ratings),
                "average_rating": calculate_average_rating(int(r["rating"]) for r in ratings),
            }

        return await self._run("menu_totals", _op)
