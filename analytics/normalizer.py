# -*- coding: utf-8 -*-
"""
Deviation Normalizer.

Turns the nested /deviations payload into a flat list of DeviationRecord plus
a per-pair time-series index.

Payload shape (latestDeviations):
    {
      "BTC": {
        "ETH": 3.5,                 # target coin -> deviation percent (or null)
        "SOL": null,
        "prices": {"ETH": {"basePrice": 60000, "targetPrice": 3000}},
        "baseSnapshot": {...},      # snapshot of BTC
        "targetSnapshot": {...}     # single snapshot, or {target -> snapshot}
      },
      ...
    }

Reserved keys are structural and never read as coins. Every key is classified
against the reserved set and the coin allowlist before its value is used.

The normalizer never raises: unsuccessful or malformed payloads come back as
an empty result carrying a NormalizationFailure.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from analytics.models import DeviationRecord, Snapshot, TimeSeriesPoint, pair_key

log = logging.getLogger(__name__)

RESERVED_KEYS = frozenset({"prices", "baseSnapshot", "targetSnapshot"})
REQUIRED_KEYS = ("success", "latestDeviations")

NO_DATA_MESSAGE = "No deviation data available for this bot yet."
MALFORMED_MESSAGE = "Deviation data could not be read. Showing no data until the next refresh."


class KeyKind(Enum):
    RESERVED = "reserved"
    COIN = "coin"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class NormalizationFailure:
    """Typed 'no data' signal, distinct from a network failure."""
    kind: str      # "unsuccessful" | "malformed"
    reason: str

    @property
    def message(self) -> str:
        if self.kind == "unsuccessful":
            return NO_DATA_MESSAGE
        return MALFORMED_MESSAGE


@dataclass
class NormalizedDeviations:
    records: List[DeviationRecord] = field(default_factory=list)
    time_series: Dict[str, List[TimeSeriesPoint]] = field(default_factory=dict)
    failure: Optional[NormalizationFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def pairs(self) -> List[str]:
        return list(self.time_series.keys())


def classify_key(key: Any, allowed: Iterable[str]) -> KeyKind:
    if key in RESERVED_KEYS:
        return KeyKind.RESERVED
    if isinstance(key, str) and key in allowed:
        return KeyKind.COIN
    return KeyKind.UNKNOWN


def to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(f) or math.isinf(f):
        return None
    return f


def _parse_snapshot(obj: Any) -> Optional[Snapshot]:
    if not isinstance(obj, Mapping):
        return None
    price = to_float(obj.get("initialPrice"))
    if price is None:
        return None
    units = to_float(obj.get("unitsHeld"))
    ts = obj.get("snapshotTimestamp")
    return Snapshot(
        initial_price=price,
        units_held=units if units is not None else 0.0,
        snapshot_timestamp=str(ts) if ts is not None else "",
    )


def _target_snapshot(obj: Any, target: str) -> Optional[Snapshot]:
    # Either one snapshot for the whole base entry, or keyed by target coin
    if not isinstance(obj, Mapping):
        return None
    if "initialPrice" in obj:
        return _parse_snapshot(obj)
    return _parse_snapshot(obj.get(target))


def _pair_prices(prices: Any, target: str) -> Tuple[float, float]:
    if not isinstance(prices, Mapping):
        return 0.0, 0.0
    entry = prices.get(target)
    if not isinstance(entry, Mapping):
        return 0.0, 0.0
    base_px = to_float(entry.get("basePrice"))
    target_px = to_float(entry.get("targetPrice"))
    return (base_px if base_px is not None else 0.0,
            target_px if target_px is not None else 0.0)


def _validate(raw: Any) -> Optional[NormalizationFailure]:
    if not isinstance(raw, Mapping):
        return NormalizationFailure("malformed", f"payload is {type(raw).__name__}, expected object")
    missing = [k for k in REQUIRED_KEYS if k not in raw]
    if missing:
        return NormalizationFailure("malformed", f"missing keys: {', '.join(missing)}")
    if not raw.get("success"):
        return NormalizationFailure("unsuccessful", "backend reported success=false")
    if not isinstance(raw.get("latestDeviations"), Mapping):
        return NormalizationFailure("malformed", "latestDeviations is not an object")
    return None


def _records(latest: Mapping[str, Any], allowed: frozenset) -> List[DeviationRecord]:
    out: List[DeviationRecord] = []
    seen: set = set()
    for base, entry in latest.items():
        if classify_key(base, allowed) is not KeyKind.COIN:
            log.debug("[NORMALIZE] skip base %r (not an allowed coin)", base)
            continue
        if not isinstance(entry, Mapping):
            continue

        prices = entry.get("prices")
        base_snap = _parse_snapshot(entry.get("baseSnapshot"))
        target_snaps = entry.get("targetSnapshot")

        for target, value in entry.items():
            kind = classify_key(target, allowed)
            if kind is KeyKind.RESERVED:
                continue
            if kind is KeyKind.UNKNOWN:
                log.debug("[NORMALIZE] drop %s/%s (target not in allowlist)", base, target)
                continue
            if target == base:
                continue
            pct = to_float(value)
            if pct is None:
                continue
            key = pair_key(base, target)
            if key in seen:
                continue
            seen.add(key)
            base_px, target_px = _pair_prices(prices, target)
            out.append(DeviationRecord(
                pair_key=key,
                base_coin=base,
                target_coin=target,
                base_price=base_px,
                target_price=target_px,
                deviation_percent=pct,
                base_snapshot=base_snap,
                target_snapshot=_target_snapshot(target_snaps, target),
            ))

    # sorted() is stable, reverse=True keeps encounter order among equal keys
    return sorted(out, key=lambda r: abs(r.deviation_percent), reverse=True)


def _time_series(raw_series: Any) -> Dict[str, List[TimeSeriesPoint]]:
    if raw_series is None:
        return {}
    if not isinstance(raw_series, Mapping):
        log.warning("[NORMALIZE] timeSeriesData ignored: expected object, got %s", type(raw_series).__name__)
        return {}
    out: Dict[str, List[TimeSeriesPoint]] = {}
    for key, points in raw_series.items():
        if not isinstance(key, str) or not isinstance(points, list):
            continue
        series: List[TimeSeriesPoint] = []
        for p in points:
            if not isinstance(p, Mapping) or not p.get("timestamp"):
                continue
            pct = to_float(p.get("deviationPercent"))
            series.append(TimeSeriesPoint(
                timestamp=str(p["timestamp"]),
                pair_key=key,
                base_price=to_float(p.get("basePrice")) or 0.0,
                target_price=to_float(p.get("targetPrice")) or 0.0,
                deviation_percent=pct if pct is not None else 0.0,
            ))
        out[key] = series
    return out


def normalize(raw: Any, allowed_coins: Optional[Iterable[str]] = None) -> NormalizedDeviations:
    """
    Normalize a raw /deviations response.

    Args:
        raw: decoded JSON body
        allowed_coins: coin allowlist; the payload's own `coins` list when None

    Returns:
        NormalizedDeviations; `failure` is set (and records empty) for
        success=false or structurally invalid payloads.
    """
    failure = _validate(raw)
    if failure is not None:
        log.info("[NORMALIZE] %s payload: %s", failure.kind, failure.reason)
        return NormalizedDeviations(failure=failure)

    if allowed_coins is None:
        coins = raw.get("coins")
        allowed_coins = coins if isinstance(coins, list) else []
    allowed = frozenset(c for c in allowed_coins if isinstance(c, str))

    return NormalizedDeviations(
        records=_records(raw["latestDeviations"], allowed),
        time_series=_time_series(raw.get("timeSeriesData")),
    )
