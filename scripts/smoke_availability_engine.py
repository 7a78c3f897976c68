#!/usr/bin/env python3
"""
Availability smoke-check: menus and items follow active flags and time windows.

What it validates:
- no ranges (None or empty) means always available
- a 09:00-17:00 window is inclusive at both ends, minute precision
- overlapping ranges are OR'd; reversed and malformed ranges never match
- inactive menus and unavailable items are hidden regardless of time
- helper formatting: time range, average rating, price

Run:
  python3 scripts/smoke_availability_engine.py
"""

from __future__ import annotations

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

from menus.availability import (  # noqa: E402
    calculate_average_rating,
    format_price,
    format_time_range,
    is_item_available_now,
    is_menu_available_now,
    is_time_range_active,
    parse_clock,
)
from menus.models import Menu, MenuItem, TimeRange  # noqa: E402


def _assert(cond: bool, message: str) -> None:
    if not cond:
        raise AssertionError(message)


def _at(hour: int, minute: int, second: int = 0) -> datetime:
    return datetime(2026, 3, 14, hour, minute, second)


def _menu(*, is_active: bool = True, ranges: list[TimeRange] | None = None) -> Menu:
    return Menu(
        id=1,
        restaurant_id="rest-1",
        name="Breakfast",
        order=1,
        created_at="2026-01-01T00:00:00+00:00",
        updated_at="2026-01-01T00:00:00+00:00",
        is_active=is_active,
        time_ranges=list(ranges or []),
    )


def _item(*, is_available: bool = True) -> MenuItem:
    return MenuItem(
        id=1,
        menu_id=1,
        restaurant_id="rest-1",
        name="Menemen",
        price=7.5,
        created_at="2026-01-01T00:00:00+00:00",
        updated_at="2026-01-01T00:00:00+00:00",
        is_available=is_available,
    )


def _check_ranges() -> None:
    for moment in (_at(0, 0), _at(12, 0), _at(23, 59)):
        _assert(is_time_range_active([], moment), "empty ranges must be always active")
        _assert(is_time_range_active(None, moment), "absent ranges must be always active")

    day = [TimeRange("09:00", "17:00")]
    _assert(not is_time_range_active(day, _at(8, 59)), "08:59 is before 09:00-17:00")
    _assert(is_time_range_active(day, _at(9, 0)), "start minute is inclusive")
    _assert(is_time_range_active(day, _at(13, 30)), "13:30 is inside 09:00-17:00")
    _assert(is_time_range_active(day, _at(17, 0, 59)), "end minute is inclusive, seconds ignored")
    _assert(not is_time_range_active(day, _at(17, 1)), "17:01 is after 09:00-17:00")

    point = [TimeRange("09:00", "09:00")]
    _assert(is_time_range_active(point, _at(9, 0)), "single-minute range matches its minute")
    _assert(not is_time_range_active(point, _at(9, 1)), "single-minute range matches nothing else")

    split = [TimeRange("07:00", "11:00"), TimeRange("10:00", "14:00"), TimeRange("18:00", "22:00")]
    _assert(is_time_range_active(split, _at(10, 30)), "overlapping ranges are a union")
    _assert(not is_time_range_active(split, _at(16, 0)), "gap between ranges is inactive")
    _assert(is_time_range_active(split, _at(21, 0)), "evening range matches")

    reversed_range = [TimeRange("22:00", "02:00")]
    for moment in (_at(23, 0), _at(1, 0), _at(12, 0)):
        _assert(not is_time_range_active(reversed_range, moment), "reversed range never matches")

    malformed = [TimeRange("9am", "17:00"), TimeRange("25:00", "26:00")]
    _assert(not is_time_range_active(malformed, _at(12, 0)), "malformed ranges never match")
    _assert(
        is_time_range_active([{"start_time": "09:00", "end_time": "17:00"}], _at(10, 0)),
        "plain dict ranges are accepted",
    )
    _assert(parse_clock("07:05") == 7 * 60 + 5, "07:05 parses to minutes")
    _assert(parse_clock("7:05") is None, "clock strings must be zero-padded")


def _check_menus_and_items() -> None:
    breakfast = _menu(ranges=[TimeRange("07:00", "11:00")])
    _assert(is_menu_available_now(breakfast, _at(10, 30)), "breakfast is available at 10:30")
    _assert(not is_menu_available_now(breakfast, _at(12, 0)), "breakfast is closed at 12:00")

    inactive = _menu(is_active=False)
    _assert(not is_menu_available_now(inactive, _at(12, 0)), "inactive menu is never available")
    inactive_with_range = _menu(is_active=False, ranges=[TimeRange("00:00", "23:59")])
    _assert(not is_menu_available_now(inactive_with_range, _at(12, 0)), "inactive wins over ranges")

    always = _menu()
    _assert(is_item_available_now(_item(), always, _at(3, 0)), "available item in open menu is visible")
    _assert(not is_item_available_now(_item(is_available=False), always, _at(3, 0)), "unavailable item is hidden")
    _assert(not is_item_available_now(_item(), breakfast, _at(12, 0)), "item follows its menu schedule")
    _assert(not is_item_available_now(_item(), inactive, _at(12, 0)), "item in inactive menu is hidden")


def _check_helpers() -> None:
    _assert(format_time_range(TimeRange("07:00", "11:00")) == "07:00 - 11:00", "range display")
    _assert(calculate_average_rating([]) == 0, "no reviews -> 0")
    _assert(calculate_average_rating([5, 4, 4]) == 4.3, "average rounds to one decimal")
    _assert(calculate_average_rating([4, 4, 4, 5]) == 4.3, "4.25 rounds half up to 4.3")
    _assert(calculate_average_rating([3, 4, 4, 4]) == 3.8, "3.75 rounds half up to 3.8")
    _assert(format_price(12.5) == "$12.50", "price shows two decimals")
    _assert(format_price(1234) == "$1,234.00", "price groups thousands")


def main() -> None:
    _check_ranges()
    _check_menus_and_items()
    _check_helpers()
    print("OK: availability engine smoke passed.")


if __name__ == "__main__":
    main()
