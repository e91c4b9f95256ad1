# -*- coding: utf-8 -*-
"""
DeviationView: everything the dashboard shows for one bot.

Owns the normalized data, the page request, the selected pair and time range,
the FetchController and (optionally) the auto-refresh timer. Data is replaced
wholesale on each successful fetch; projections are computed on demand.
"""
from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Dict, List, Mapping, Optional, Union

from analytics.models import RefreshState, TimeSeriesPoint
from analytics.normalizer import NO_DATA_MESSAGE, NormalizedDeviations, normalize
from analytics.pagination import (
    DEFAULT_PAGE_SIZE,
    Page,
    PageRequest,
    ServerPageMeta,
    paginate,
)
from analytics.price_history import (
    TIME_RANGES,
    PricePoint,
    group_by_coin,
    parse_price_points,
    source_counts,
    time_range_window,
)
from analytics.projector import to_heatmap, to_heatmap_grid, to_table, to_time_series
from backend.base import DEFAULT_COINS, BackendBase
from backend.client import fetch_price_histories
from core.refresh import AutoRefresher, FetchController, RefreshPolicy, is_idle

log = logging.getLogger(__name__)

DEFAULT_TIME_RANGE = "24h"


class DeviationView:
    def __init__(
        self,
        bot_id: int,
        client: BackendBase,
        page_size: int = DEFAULT_PAGE_SIZE,
        time_range: str = DEFAULT_TIME_RANGE,
        timeout_s: float = 30.0,
        allowed_coins: Optional[List[str]] = None,
    ):
        _check_time_range(time_range)
        self.bot_id = int(bot_id)
        self.client = client
        self.default_page_size = int(page_size)
        self.default_time_range = time_range

        self.time_range = time_range
        self.selected_pair: Optional[str] = None
        self.request = PageRequest(page_size=self.default_page_size)
        # None -> use the payload's own coin list
        self.coins: Optional[List[str]] = list(allowed_coins) if allowed_coins else None

        self.data = NormalizedDeviations()
        self.server_meta: Optional[ServerPageMeta] = None

        self._controller = FetchController(
            self._fetch,
            self._apply,
            timeout_s=timeout_s,
            on_hard_reset=self._reset_filters,
            name=f"bot{self.bot_id}",
        )
        self._auto: Optional[AutoRefresher] = None

    # ==================== State ====================

    @property
    def state(self) -> RefreshState:
        return self._controller.state

    @property
    def server_paged(self) -> bool:
        return self.server_meta is not None

    # ==================== Fetching ====================

    async def load_coins(self) -> List[str]:
        self.coins = await self.client.fetch_bot_coins(self.bot_id)
        return self.coins

    async def refresh(
        self,
        policy: Union[RefreshPolicy, str] = RefreshPolicy.MANUAL,
        time_range_params: Optional[Dict[str, Any]] = None,
        pair_filter: Optional[str] = None,
    ) -> RefreshState:
        """
        Args:
            policy: manual, silent or hard-reset
            time_range_params: one-off overrides of the query (wire names)
            pair_filter: "BASE/TARGET"; the backend filters on its base coin
        """
        return await self._controller.refresh(policy, time_range_params, pair_filter)

    def abort(self) -> None:
        self._controller.abort()

    def _query(self) -> Dict[str, Any]:
        return {
            "timeRange": self.time_range,
            "baseCoin": self.request.filter_coin,
            "page": self.request.page,
            "limit": self.request.page_size,
        }

    async def _fetch(self, params: Dict[str, Any]) -> Any:
        # built at call time so a hard reset is already reflected
        query = self._query()
        params = dict(params)
        pair = params.pop("pair", None)
        if pair and params.get("baseCoin") is None:
            params["baseCoin"] = str(pair).split("/", 1)[0] or None
        for k, v in params.items():
            if k not in query:
                log.debug(f"[VIEW] bot {self.bot_id}: unknown query param {k!r} ignored")
            elif v is not None:
                query[k] = v
        return await self.client.fetch_deviations(
            self.bot_id,
            time_range=query["timeRange"],
            base_coin=query["baseCoin"],
            page=query["page"],
            limit=query["limit"],
        )

    def _apply(self, raw: Any) -> None:
        data = normalize(raw, self.coins)
        self.data = data
        self.server_meta = ServerPageMeta.from_payload(raw) if data.ok else None
        if self.selected_pair and self.selected_pair not in data.time_series:
            log.debug(f"[VIEW] bot {self.bot_id}: selected pair {self.selected_pair} not in new data")

    def _reset_filters(self) -> None:
        self.request = PageRequest(page_size=self.default_page_size)
        self.selected_pair = None
        self.time_range = self.default_time_range

    # ==================== Setters ====================
    # Every change except set_page goes back to page 1.

    def set_page(self, page: int) -> None:
        self.request = self.request.with_page(int(page))

    def set_page_size(self, page_size: int) -> None:
        self.request = self.request.with_page_size(int(page_size))

    def set_sort(self, column: str, direction: Optional[str] = None) -> None:
        self.request = self.request.with_sort(column, direction)

    def set_filter_coin(self, coin: Optional[str]) -> None:
        self.request = self.request.with_filter_coin(coin)

    def select_pair(self, pair: Optional[str]) -> None:
        self.selected_pair = pair or None
        self.request = self.request.first_page()

    def set_time_range(self, time_range: str) -> None:
        _check_time_range(time_range)
        self.time_range = time_range
        self.request = self.request.first_page()

    async def apply_changes(self, changes: Mapping[str, Any]) -> bool:
        """
        Apply dashboard changes (wire names) and refetch when the backend
        has to see them. Returns True if a fetch was issued.
        """
        refetch = False
        if "timeRange" in changes:
            self.set_time_range(changes["timeRange"])
            refetch = True
        if "filterCoin" in changes:
            self.set_filter_coin(changes["filterCoin"])
            refetch = refetch or self.server_paged
        if "pair" in changes:
            self.select_pair(changes["pair"])
            refetch = refetch or self.server_paged
        if "sortColumn" in changes:
            self.set_sort(changes["sortColumn"], changes.get("sortDirection"))
            refetch = refetch or self.server_paged
        if "pageSize" in changes:
            self.set_page_size(changes["pageSize"])
            refetch = refetch or self.server_paged
        if "page" in changes:
            self.set_page(changes["page"])
            refetch = refetch or self.server_paged
        if refetch:
            await self.refresh(RefreshPolicy.MANUAL)
        return refetch

    # ==================== Projections ====================

    def _page(self, items: List[Any], server_meta: Optional[ServerPageMeta] = None) -> Page:
        page = paginate(items, self.request, server_meta)
        if server_meta is None and page.total_items and self.request.page > page.total_pages:
            # stale page after data shrank; show the last one without touching the request
            page = paginate(items, self.request.with_page(page.total_pages))
        return page

    def _page_dict(self, page: Page, rows: List[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "rows": rows,
            "page": min(self.request.page, page.total_pages),
            "pageSize": self.request.page_size,
            "totalPages": page.total_pages,
            "totalItems": page.total_items,
            "sortColumn": self.request.sort_column,
            "sortDirection": self.request.sort_direction,
            "filterCoin": self.request.filter_coin,
        }

    def table(self) -> Dict[str, Any]:
        """Latest-snapshot table, always paged client-side."""
        records = self.data.records
        if self.selected_pair:
            records = [r for r in records if r.pair_key == self.selected_pair]
        page = self._page(records)
        return self._page_dict(page, to_table(page.items, self.time_range))

    def history_points(self) -> List[TimeSeriesPoint]:
        if self.selected_pair:
            return list(self.data.time_series.get(self.selected_pair, []))
        return [p for pts in self.data.time_series.values() for p in pts]

    def history_table(self) -> Dict[str, Any]:
        """Historical rows; server-sliced when the payload carried pagination."""
        page = self._page(self.history_points(), self.server_meta)
        return self._page_dict(page, to_table(page.items, self.time_range))

    def chart(self) -> Dict[str, Any]:
        return to_time_series(
            self.data.records,
            self.data.time_series,
            selected_pair=self.selected_pair,
            time_range=self.time_range,
        ).to_dict()

    def heatmap(self) -> Dict[str, Any]:
        return {
            "cells": [c.to_dict() for c in to_heatmap(self.data.records)],
            "grid": to_heatmap_grid(self.data.records),
        }

    def empty_message(self) -> Optional[str]:
        if self.data.failure is not None:
            return self.data.failure.message
        if self.state.last_refreshed_at is not None and not self.data.records:
            return NO_DATA_MESSAGE
        return None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "botId": self.bot_id,
            "state": self.state.to_dict(),
            "timeRange": self.time_range,
            "selectedPair": self.selected_pair,
            "pairs": self.data.pairs,
            "coins": self.coins,
            "emptyMessage": self.empty_message(),
            "table": self.table(),
            "history": self.history_table(),
            "chart": self.chart(),
            "heatmap": self.heatmap(),
        }

    # ==================== Price history ====================

    async def price_history(
        self,
        coins: Optional[List[str]] = None,
        time_range: Optional[str] = None,
    ) -> Dict[str, List[PricePoint]]:
        """Per-coin price points; coins whose request failed are missing from the result."""
        time_range = time_range or self.time_range
        _check_time_range(time_range)
        start, end = time_range_window(time_range)
        coins = coins or self.coins or list(DEFAULT_COINS)
        raw = await fetch_price_histories(self.client, self.bot_id, coins, start, end)
        points: List[PricePoint] = []
        for coin in coins:
            points.extend(p for p in parse_price_points(raw.get(coin, [])) if p.coin == coin)
        return group_by_coin(points)

    async def price_summary(self, coins: Optional[List[str]] = None,
                            time_range: Optional[str] = None) -> Dict[str, Any]:
        grouped = await self.price_history(coins, time_range)
        all_points = [p for pts in grouped.values() for p in pts]
        return {
            "coins": {c: [asdict(p) for p in pts] for c, pts in grouped.items()},
            "sources": source_counts(all_points),
        }

    # ==================== Lifecycle ====================

    def start_auto_refresh(self, interval_s: float = 60.0) -> AutoRefresher:
        if self._auto is None:
            self._auto = AutoRefresher(
                lambda: self.refresh(RefreshPolicy.SILENT),
                lambda: is_idle(self.state),
                interval_s=interval_s,
                name=f"bot{self.bot_id}",
            )
        self._auto.start()
        return self._auto

    async def close(self) -> None:
        if self._auto is not None:
            await self._auto.stop()
            self._auto = None
        await self._controller.close()

    async def __aenter__(self) -> "DeviationView":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()


def _check_time_range(time_range: str) -> None:
    if time_range not in TIME_RANGES:
        raise ValueError(f"unknown time range {time_range!r}, expected one of {', '.join(TIME_RANGES)}")
