"""Menu, item and review models."""

from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class TimeRange:
    start_time: str  # HH:mm
    end_time: str  # HH:mm


@dataclass(slots=True)
class Menu:
    id: int
    restaurant_id: str
    name: str
    order: int
    created_at: str
    updated_at: str
    description: str = ""
    icon: str | None = None
    is_active: bool = True
    time_ranges: list[TimeRange] = field(default_factory=list)


@dataclass(slots=True)
class MenuItem:
    id: int
    menu_id: int
    restaurant_id: str
    name: str
    price: float
    created_at: str
    updated_at: str
    description: str = ""
    category: str = ""
    images: list[str] = field(default_factory=list)
    is_available: bool = True


@dataclass(slots=True)
class Review:
    id: int
    menu_item_id: int
    customer_name: str
    rating: int
    created_at: str
    comment: str = ""
    customer_id: str | None = None
