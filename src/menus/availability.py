"""Time-based availability of menus and items.

A menu without time ranges is available all day while it is active. With
ranges, it is available when the current minute falls inside at least one
of them, both ends inclusive. Ranges never wrap around midnight: a range
whose start is after its end matches nothing.

"Now" is the local wall clock of the process; config.py sets TZ from
DIZMEN_TIMEZONE at import time.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from menus.models import Menu, MenuItem, TimeRange


CLOCK_RE = re.compile(r"^([01][0-9]|2[0-3]):([0-5][0-9])$")


def parse_clock(value: str) -> int | None:
    """'HH:mm' -> minutes since midnight, None when malformed."""
    match = CLOCK_RE.match(str(value or ""))
    if not match:
        return None
    return int(match.group(1)) * 60 + int(match.group(2))


def is_valid_clock(value: str) -> bool:
    return parse_clock(value) is not None


def _minute_of_day(now: datetime | None) -> int:
    moment = now or datetime.now()
    return moment.hour * 60 + moment.minute


def _range_bounds(time_range: TimeRange | dict[str, Any]) -> tuple[int | None, int | None]:
    if isinstance(time_range, dict):
        return parse_clock(time_range.get("start_time", "")), parse_clock(time_range.get("end_time", ""))
    return parse_clock(time_range.start_time), parse_clock(time_range.end_time)


def is_time_range_active(
    ranges: Iterable[TimeRange | dict[str, Any]] | None = None,
    now: datetime | None = None,
) -> bool:
    """True when no ranges are given or `now` falls inside any of them."""
    range_list = list(ranges or [])
    if not range_list:
        return True
    current = _minute_of_day(now)
    for time_range in range_list:
        start, end = _range_bounds(time_range)
        if start is None or end is None:
            continue
        if start <= current <= end:
            return True
    return False


def is_menu_available_now(menu: Menu, now: datetime | None = None) -> bool:
    if not menu.is_active:
        return False
    return is_time_range_active(menu.time_ranges, now)


def is_item_available_now(item: MenuItem, menu: Menu, now: datetime | None = None) -> bool:
    # Items have no schedule of their own; they follow their menu.
    if not item.is_available:
        return False
    return is_menu_available_now(menu, now)


def format_time_range(time_range: TimeRange) -> str:
    return f"{time_range.start_time} - {time_range.end_time}"


def calculate_average_rating(ratings: Iterable[int | float]) -> float:
    values = [float(r) for r in ratings]
    if not values:
        return 0.0
    average = Decimal(str(sum(values) / len(values)))
    # Half-up, so 4.25 shows as 4.3
    return float(average.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def format_price(price: float) -> str:
    return f"${float(price):,.2f}"
