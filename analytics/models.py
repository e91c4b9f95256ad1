# -*- coding: utf-8 -*-
"""
Normalized data model for deviation analytics.

Records and time-series points are produced by the normalizer and replaced
wholesale on every successful fetch. RefreshState is a single value object
that only changes through its transition methods, so a view can never be
"loading" and "error" at the same time.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class Snapshot:
    """Reference point a deviation percentage is measured against."""
    initial_price: float
    units_held: float
    snapshot_timestamp: str  # raw ISO-8601 from the backend


@dataclass(frozen=True)
class DeviationRecord:
    """Latest deviation for one base/target pair."""
    pair_key: str        # "BASE/TARGET"
    base_coin: str
    target_coin: str
    base_price: float
    target_price: float
    deviation_percent: float
    base_snapshot: Optional[Snapshot] = None
    target_snapshot: Optional[Snapshot] = None


@dataclass(frozen=True)
class TimeSeriesPoint:
    """One historical deviation sample, kept in delivered order."""
    timestamp: str
    pair_key: str
    base_price: float
    target_price: float
    deviation_percent: float

    @property
    def base_coin(self) -> str:
        return self.pair_key.split("/", 1)[0]

    @property
    def target_coin(self) -> str:
        parts = self.pair_key.split("/", 1)
        return parts[1] if len(parts) > 1 else ""


def pair_key(base_coin: str, target_coin: str) -> str:
    return f"{base_coin}/{target_coin}"


class RefreshStatus(Enum):
    """Refresh lifecycle states."""
    IDLE = "idle"
    LOADING = "loading"                # manual / hard reset, view blocked
    SILENT_LOADING = "silent-loading"  # auto-refresh, view untouched
    ERROR = "error"

    @property
    def in_flight(self) -> bool:
        return self in (RefreshStatus.LOADING, RefreshStatus.SILENT_LOADING)


class InvalidTransition(Exception):
    """Raised when a RefreshState transition is not allowed from the current status."""
    pass


@dataclass(frozen=True)
class RefreshState:
    """
    Fetch state of one view.

    Transitions:
        idle|error      -> loading | silent-loading   (begin)
        loading|silent  -> loading | silent-loading   (begin, superseding request)
        loading|silent  -> idle                       (succeed)
        loading         -> error                      (fail)
        silent-loading  -> last settled status        (fail, message kept)
        loading|silent  -> last settled status        (settle, explicit abort)
    """
    status: RefreshStatus = RefreshStatus.IDLE
    last_refreshed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    # status to fall back to when an in-flight request is aborted
    settled_status: RefreshStatus = RefreshStatus.IDLE

    @property
    def is_loading(self) -> bool:
        return self.status is RefreshStatus.LOADING

    @property
    def in_flight(self) -> bool:
        return self.status.in_flight

    def begin(self, silent: bool = False) -> "RefreshState":
        settled = self.settled_status if self.in_flight else self.status
        if silent:
            return replace(self, status=RefreshStatus.SILENT_LOADING, settled_status=settled)
        return replace(self, status=RefreshStatus.LOADING, error_message=None, settled_status=settled)

    def succeed(self, at: datetime) -> "RefreshState":
        self._require_in_flight("succeed")
        return RefreshState(
            status=RefreshStatus.IDLE,
            last_refreshed_at=at,
            error_message=None,
            settled_status=RefreshStatus.IDLE,
        )

    def fail(self, message: str, silent: bool = False) -> "RefreshState":
        self._require_in_flight("fail")
        if silent:
            # background failure: keep the settled status, surface the message only
            return replace(self, status=self.settled_status, error_message=message)
        return RefreshState(
            status=RefreshStatus.ERROR,
            last_refreshed_at=self.last_refreshed_at,
            error_message=message,
            settled_status=RefreshStatus.ERROR,
        )

    def settle(self) -> "RefreshState":
        if not self.in_flight:
            return self
        return replace(self, status=self.settled_status)

    def _require_in_flight(self, action: str) -> None:
        if not self.in_flight:
            raise InvalidTransition(f"cannot {action} from status={self.status.value}")

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "lastRefreshedAt": self.last_refreshed_at.isoformat() if self.last_refreshed_at else None,
            "errorMessage": self.error_message,
        }
