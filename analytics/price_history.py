# -*- coding: utf-8 -*-
"""
Price history helpers for the /price-history endpoint.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from analytics.normalizer import to_float

log = logging.getLogger(__name__)

TIME_RANGES = {
    "24h": timedelta(days=1),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "all": None,
}


@dataclass(frozen=True)
class PricePoint:
    coin: str
    price: float
    timestamp: str
    source: Optional[str] = None
    change: Optional[float] = None
    change_percent: Optional[float] = None


def parse_price_points(raw: Any) -> List[PricePoint]:
    """Drop entries without coin/price/timestamp instead of failing the batch."""
    if not isinstance(raw, list):
        return []
    out: List[PricePoint] = []
    dropped = 0
    for it in raw:
        if not isinstance(it, Mapping):
            dropped += 1
            continue
        coin = it.get("coin")
        price = to_float(it.get("price"))
        ts = it.get("timestamp")
        if not coin or price is None or not ts:
            dropped += 1
            continue
        source = it.get("source")
        out.append(PricePoint(
            coin=str(coin),
            price=price,
            timestamp=str(ts),
            source=str(source) if source else None,
            change=to_float(it.get("change")),
            change_percent=to_float(it.get("changePercent")),
        ))
    if dropped:
        log.debug("[PRICES] dropped %d malformed price points", dropped)
    return out


def group_by_coin(points: Iterable[PricePoint]) -> Dict[str, List[PricePoint]]:
    out: Dict[str, List[PricePoint]] = {}
    for p in points:
        out.setdefault(p.coin, []).append(p)
    return out


def source_counts(points: Iterable[PricePoint]) -> Dict[str, int]:
    out: Dict[str, int] = {}
    for p in points:
        if p.source:
            out[p.source] = out.get(p.source, 0) + 1
    return out


def time_range_window(time_range: str, now: Optional[datetime] = None) -> Tuple[Optional[datetime], datetime]:
    """(start, end) for a range label; unknown labels fall back to 24h, 'all' has no start."""
    end = now or datetime.now(timezone.utc)
    span = TIME_RANGES.get(time_range, TIME_RANGES["24h"])
    if span is None:
        return None, end
    return end - span, end
