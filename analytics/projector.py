# -*- coding: utf-8 -*-
"""
View Projector: pure functions mapping normalized (and paginated) data into
the three presentation shapes used by the dashboard.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from analytics.models import DeviationRecord, TimeSeriesPoint


# ---------- Time series ----------


@dataclass
class Series:
    label: str
    points: List[Optional[float]] = field(default_factory=list)


@dataclass
class TimeSeriesView:
    labels: List[str] = field(default_factory=list)
    series: List[Series] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "labels": self.labels,
            "series": [{"label": s.label, "points": s.points} for s in self.series],
        }


def parse_timestamp(ts: str) -> Optional[datetime]:
    if not isinstance(ts, str) or not ts:
        return None
    s = ts.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(s)
    except ValueError:
        return None


def format_timestamp(ts: str, time_range: str = "24h") -> str:
    dt = parse_timestamp(ts)
    if dt is None:
        return str(ts)
    if time_range == "24h":
        return dt.strftime("%H:%M")
    return dt.strftime("%b %d %H:%M")


def _stamp_key(ts: str):
    dt = parse_timestamp(ts)
    if dt is None:
        return (1, 0.0, ts)
    return (0, dt.timestamp(), ts)


def _pair_order(records: Sequence[DeviationRecord], time_series: Mapping[str, List[TimeSeriesPoint]]) -> List[str]:
    order: List[str] = []
    for r in records:
        if r.pair_key in time_series and r.pair_key not in order:
            order.append(r.pair_key)
    for key in time_series:
        if key not in order:
            order.append(key)
    return order


def to_time_series(records: Sequence[DeviationRecord],
                   time_series: Mapping[str, List[TimeSeriesPoint]],
                   selected_pair: Optional[str] = None,
                   time_range: str = "24h") -> TimeSeriesView:
    """
    Line-chart data. With selected_pair only that pair is plotted; without it
    every pair becomes one line, aligned on the union of timestamps.
    """
    if selected_pair is not None:
        pairs = [selected_pair] if selected_pair in time_series else []
    else:
        pairs = _pair_order(records, time_series)
    if not pairs:
        return TimeSeriesView()

    if len(pairs) == 1:
        pts = time_series[pairs[0]]
        return TimeSeriesView(
            labels=[format_timestamp(p.timestamp, time_range) for p in pts],
            series=[Series(label=pairs[0], points=[p.deviation_percent for p in pts])],
        )

    # union of timestamps, chronological
    stamps = sorted({p.timestamp for key in pairs for p in time_series[key]}, key=_stamp_key)
    index: Dict[str, int] = {ts: i for i, ts in enumerate(stamps)}

    series: List[Series] = []
    for key in pairs:
        points: List[Optional[float]] = [None] * len(stamps)
        for p in time_series[key]:
            points[index[p.timestamp]] = p.deviation_percent
        series.append(Series(label=key, points=points))

    return TimeSeriesView(
        labels=[format_timestamp(ts, time_range) for ts in stamps],
        series=series,
    )


# ---------- Table ----------


def format_price(x: Optional[float]) -> str:
    if x is None or (isinstance(x, float) and math.isnan(x)):
        return "-"
    if abs(x) >= 1:
        return f"${x:,.4f}"
    return f"${x:,.6f}"


def format_percent(x: Optional[float]) -> str:
    if x is None or (isinstance(x, float) and math.isnan(x)):
        return "N/A"
    if x == 0:
        return "0.00%"
    sign = "+" if x > 0 else ""
    return f"{sign}{x:.2f}%"


def direction_glyph(x: Optional[float]) -> str:
    """Positive: base outperforming target."""
    if x is None or (isinstance(x, float) and math.isnan(x)) or x == 0:
        return "="
    return "▲" if x > 0 else "▼"


def deviation_tone(x: Optional[float]) -> str:
    if x is None or (isinstance(x, float) and math.isnan(x)):
        return "neutral"
    if x > 5:
        return "strong-positive"
    if x > 0:
        return "positive"
    if x < -5:
        return "strong-negative"
    if x < 0:
        return "negative"
    return "neutral"


def _split_pair(key: str) -> List[str]:
    parts = (key or "").split("/", 1)
    return parts if len(parts) == 2 else [parts[0], ""]


def to_table(page_items: Sequence[Any], time_range: str = "24h") -> List[Dict[str, Any]]:
    """Rows for DeviationRecord or TimeSeriesPoint items."""
    rows: List[Dict[str, Any]] = []
    for it in page_items:
        key = getattr(it, "pair_key", "")
        base, target = _split_pair(key)
        pct = getattr(it, "deviation_percent", None)
        row: Dict[str, Any] = {
            "pair": key,
            "baseCoin": getattr(it, "base_coin", base),
            "targetCoin": getattr(it, "target_coin", target),
            "basePrice": format_price(getattr(it, "base_price", None)),
            "targetPrice": format_price(getattr(it, "target_price", None)),
            "deviation": format_percent(pct),
            "direction": direction_glyph(pct),
            "tone": deviation_tone(pct),
        }
        ts = getattr(it, "timestamp", None)
        if ts is not None:
            row["time"] = format_timestamp(ts, time_range)
        rows.append(row)
    return rows


# ---------- Heatmap ----------


class DeviationBucket(Enum):
    """Fixed, ordered magnitude tiers. Declaration order is the display order."""
    ABOVE_10 = ">10%"
    FROM_5_TO_10 = "5–10%"
    FROM_2_TO_5 = "2–5%"
    FROM_0_TO_2 = "0–2%"
    FROM_0_TO_NEG_2 = "0 to -2%"
    FROM_NEG_2_TO_NEG_5 = "-2 to -5%"
    FROM_NEG_5_TO_NEG_10 = "-5 to -10%"
    BELOW_NEG_10 = "<-10%"
    UNKNOWN = "unknown"

    @property
    def rank(self) -> int:
        return BUCKET_ORDER.index(self)


BUCKET_ORDER = list(DeviationBucket)


def bucket_for(value: Any) -> DeviationBucket:
    if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
        return DeviationBucket.UNKNOWN
    v = float(value)
    if math.isnan(v):
        return DeviationBucket.UNKNOWN
    if v > 10:
        return DeviationBucket.ABOVE_10
    if v > 5:
        return DeviationBucket.FROM_5_TO_10
    if v > 2:
        return DeviationBucket.FROM_2_TO_5
    if v >= 0:
        return DeviationBucket.FROM_0_TO_2
    if v < -10:
        return DeviationBucket.BELOW_NEG_10
    if v < -5:
        return DeviationBucket.FROM_NEG_5_TO_NEG_10
    if v < -2:
        return DeviationBucket.FROM_NEG_2_TO_NEG_5
    return DeviationBucket.FROM_0_TO_NEG_2


@dataclass(frozen=True)
class HeatmapCell:
    pair_key: str
    bucket: DeviationBucket

    def to_dict(self) -> Dict[str, str]:
        return {"pairKey": self.pair_key, "bucket": self.bucket.value}


def to_heatmap(records: Sequence[DeviationRecord]) -> List[HeatmapCell]:
    return [HeatmapCell(pair_key=r.pair_key, bucket=bucket_for(r.deviation_percent)) for r in records]


def to_heatmap_grid(records: Sequence[DeviationRecord]) -> Dict[str, List[Dict[str, Any]]]:
    """Cells grouped by base coin, one card per base as on the legacy heatmap."""
    grid: Dict[str, List[Dict[str, Any]]] = {}
    for r in records:
        grid.setdefault(r.base_coin, []).append({
            "targetCoin": r.target_coin,
            "deviation": format_percent(r.deviation_percent),
            "bucket": bucket_for(r.deviation_percent).value,
        })
    return grid
