# -*- coding: utf-8 -*-
"""
Pagination/Sort Engine.

Two modes:
- server-driven: the backend already sliced the data (totalCount/page/limit in
  the payload). Items are used verbatim, only the page count is derived.
- client-side: filter by coin, sort, then slice.

Callers clamp out-of-range pages themselves (see clamp_page); the engine
returns an empty slice for them instead of guessing.
"""
from __future__ import annotations

import locale
import math
from dataclasses import dataclass, replace
from typing import Any, List, Mapping, Optional, Sequence, Tuple

DEFAULT_PAGE_SIZE = 10
PAGE_SIZE_OPTIONS = (5, 10, 25, 50, 100)
DEFAULT_SORT_COLUMN = "deviation_percent"

# wire name -> attribute name
SORT_COLUMNS = {
    "pairKey": "pair_key",
    "baseCoin": "base_coin",
    "targetCoin": "target_coin",
    "basePrice": "base_price",
    "targetPrice": "target_price",
    "deviationPercent": "deviation_percent",
    "timestamp": "timestamp",
    "coin": "coin",
    "price": "price",
    "source": "source",
}


@dataclass(frozen=True)
class PageRequest:
    page: int = 1  # 1-based
    page_size: int = DEFAULT_PAGE_SIZE
    sort_column: str = DEFAULT_SORT_COLUMN
    sort_direction: str = "desc"  # "asc" | "desc"
    filter_coin: Optional[str] = None

    def __post_init__(self) -> None:
        if self.page < 1:
            raise ValueError(f"page must be >= 1, got {self.page}")
        if self.page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {self.page_size}")
        if self.sort_direction not in ("asc", "desc"):
            raise ValueError(f"sort_direction must be 'asc' or 'desc', got {self.sort_direction!r}")

    def with_page(self, page: int) -> "PageRequest":
        return replace(self, page=page)

    def with_page_size(self, page_size: int) -> "PageRequest":
        return replace(self, page_size=page_size, page=1)

    def with_sort(self, column: str, direction: Optional[str] = None) -> "PageRequest":
        """Same column toggles direction, a new column starts ascending."""
        if direction is None:
            if column == self.sort_column:
                direction = "asc" if self.sort_direction == "desc" else "desc"
            else:
                direction = "asc"
        return replace(self, sort_column=column, sort_direction=direction, page=1)

    def with_filter_coin(self, coin: Optional[str]) -> "PageRequest":
        return replace(self, filter_coin=coin or None, page=1)

    def first_page(self) -> "PageRequest":
        return replace(self, page=1)


@dataclass(frozen=True)
class ServerPageMeta:
    total_count: int
    page: int
    limit: int

    @classmethod
    def from_payload(cls, raw: Any) -> Optional["ServerPageMeta"]:
        """
        Server pagination is only trusted when totalCount, page and limit are
        all present. A bare totalCount does not say which slice the rows are,
        so such payloads are paged client-side instead.
        """
        if not isinstance(raw, Mapping):
            return None
        try:
            if raw.get("totalCount") is None or raw.get("page") is None or raw.get("limit") is None:
                return None
            return cls(
                total_count=max(0, int(raw["totalCount"])),
                page=int(raw["page"]),
                limit=int(raw["limit"]),
            )
        except (TypeError, ValueError):
            return None


@dataclass(frozen=True)
class Page:
    items: List[Any]
    total_pages: int
    total_items: int


def total_pages_for(total_items: int, page_size: int) -> int:
    size = max(1, int(page_size))
    return max(1, math.ceil(max(0, total_items) / size))


def clamp_page(page: int, total_pages: int) -> int:
    return max(1, min(int(page), max(1, int(total_pages))))


def _field(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def _coin_of(item: Any) -> Optional[str]:
    for name in ("base_coin", "coin", "baseCoin"):
        v = _field(item, name)
        if v:
            return v
    key = _field(item, "pair_key") or _field(item, "pairKey")
    if isinstance(key, str) and key:
        return key.split("/", 1)[0]
    return None


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, float) and math.isnan(value)


def _sort_key(value: Any) -> Tuple[int, Any]:
    # numbers before strings if a column is ever mixed; never compares across types
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (0, float(value))
    return (1, locale.strxfrm(str(value)))


def _column_value(item: Any, column: str) -> Any:
    attr = SORT_COLUMNS.get(column, column)
    value = _field(item, attr)
    if value is None and attr != column:
        value = _field(item, column)
    return value


def sort_items(items: Sequence[Any], column: str, direction: str = "asc") -> List[Any]:
    """Stable sort; missing values last in both directions. Unknown columns keep input order."""
    present = []
    missing = []
    for it in items:
        v = _column_value(it, column)
        if _is_missing(v):
            missing.append(it)
        else:
            present.append((v, it))
    present.sort(key=lambda pair: _sort_key(pair[0]), reverse=(direction == "desc"))
    return [it for _, it in present] + missing


def filter_items(items: Sequence[Any], coin: Optional[str]) -> List[Any]:
    if coin is None:
        return list(items)
    return [it for it in items if _coin_of(it) == coin]


def paginate(items: Sequence[Any], request: PageRequest,
             server_meta: Optional[ServerPageMeta] = None) -> Page:
    """
    Apply a PageRequest to a record set.

    With server_meta the items are the page the backend delivered and are
    returned untouched; totals come from the server count.
    """
    if server_meta is not None:
        return Page(
            items=list(items),
            total_pages=total_pages_for(server_meta.total_count, request.page_size),
            total_items=server_meta.total_count,
        )

    filtered = filter_items(items, request.filter_coin)
    ordered = sort_items(filtered, request.sort_column, request.sort_direction)
    size = max(1, int(request.page_size))
    start = (request.page - 1) * size
    page_items = ordered[start:start + size] if start >= 0 else []
    return Page(
        items=page_items,
        total_pages=total_pages_for(len(ordered), size),
        total_items=len(ordered),
    )
