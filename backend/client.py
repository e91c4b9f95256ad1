# -*- coding: utf-8 -*-
"""REST client for the rebalancing backend (read-only, bearer auth, no retries)."""
from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import aiohttp

from backend.base import BackendBase, DEFAULT_COINS
from core.dns_utils import get_connector

log = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000/api"
DEFAULT_TOKEN_ENV = "MONITOR_API_TOKEN"
DEFAULT_TIMEOUT_S = 30.0


class BackendClient(BackendBase):
    def __init__(self, cfg: Optional[Dict[str, Any]] = None) -> None:
        cfg = cfg or {}
        self.base_url: str = str(cfg.get("base_url") or DEFAULT_BASE_URL).rstrip("/")
        self.token_env: str = str(cfg.get("token_env") or DEFAULT_TOKEN_ENV).strip()
        # Token comes from session storage (env / .env); an explicit value wins
        self._token: str = (cfg.get("token") or os.environ.get(self.token_env, "")).strip()
        self.timeout_s: float = float(cfg.get("timeout_s", DEFAULT_TIMEOUT_S))
        self.force_ipv4: bool = bool(cfg.get("force_ipv4", False))
        self.label = "API"

        self._session: Optional[aiohttp.ClientSession] = None

    def check_credentials(self) -> bool:
        return bool(self._token)

    async def start(self) -> None:
        if self._session is not None and not self._session.closed:
            return
        timeout = aiohttp.ClientTimeout(total=self.timeout_s)
        self._session = aiohttp.ClientSession(
            connector=get_connector(force_ipv4=self.force_ipv4),
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )
        if not self.check_credentials():
            log.warning(f"[{self.label}] {self.token_env} not set, requests will be unauthenticated")

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"} if self._token else {}

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        await self.start()
        url = f"{self.base_url}{path}"
        qs = {k: str(v) for k, v in (params or {}).items() if v is not None}
        try:
            async with self._session.get(url, params=qs, headers=self._auth_headers()) as r:
                if r.status >= 400:
                    detail = await _error_detail(r)
                    # auth failures are ordinary fetch errors
                    raise FetchError(f"HTTP {r.status}: {detail}", status=r.status)
                return await r.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(f"GET {path} timed out after {self.timeout_s:.0f}s") from e
        except aiohttp.ClientError as e:
            raise FetchError(f"GET {path} failed: {e}") from e
        except ValueError as e:
            raise FetchError(f"GET {path} returned invalid JSON: {e}") from e

    # ==================== Deviations ====================

    async def fetch_deviations(
        self,
        bot_id: int,
        time_range: Optional[str] = None,
        base_coin: Optional[str] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        params = {"timeRange": time_range, "baseCoin": base_coin or None, "page": page, "limit": limit}
        return await self._get(f"/bots/{bot_id}/deviations", params)

    # ==================== Prices / coins ====================

    async def fetch_price_history(
        self,
        bot_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        coin: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        params = {
            "from": start.isoformat() if start else None,
            "to": end.isoformat() if end else None,
            "coin": coin,
        }
        data = await self._get(f"/bots/{bot_id}/price-history", params)
        return data if isinstance(data, list) else []

    async def fetch_bot_coins(self, bot_id: int) -> List[str]:
        try:
            data = await self._get(f"/bots/{bot_id}/coins")
        except FetchError as e:
            log.warning(f"[{self.label}] coins for bot {bot_id} unavailable ({e}), using defaults")
            return list(DEFAULT_COINS)
        coins = [c for c in data if isinstance(c, str) and c] if isinstance(data, list) else []
        if not coins:
            log.info(f"[{self.label}] bot {bot_id} returned no coins, using defaults")
            return list(DEFAULT_COINS)
        return coins


async def fetch_price_histories(
    backend: BackendBase,
    bot_id: int,
    coins: Iterable[str],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Dict[str, List[Dict[str, Any]]]:
    """
    Fetch price history for several coins concurrently.

    A coin whose request fails is left out of the result; the others are kept.
    """
    coins = list(coins)
    results = await asyncio.gather(
        *[backend.fetch_price_history(bot_id, start, end, coin) for coin in coins],
        return_exceptions=True,
    )
    out: Dict[str, List[Dict[str, Any]]] = {}
    for coin, res in zip(coins, results):
        if isinstance(res, asyncio.CancelledError):
            raise res
        if isinstance(res, BaseException):
            log.warning(f"[PRICES] bot {bot_id} {coin}: price history failed, omitted ({res})")
            continue
        if res:
            out[coin] = res
    return out


async def _error_detail(r: aiohttp.ClientResponse) -> str:
    try:
        body = await r.json(content_type=None)
        if isinstance(body, dict) and body.get("detail"):
            return str(body["detail"])
    except (ValueError, aiohttp.ClientError):
        log.debug(f"[API] HTTP {r.status} body is not JSON")
    return r.reason or "API error"


class FetchError(Exception):
    """Network or HTTP failure talking to the backend."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class RequestTimeoutError(FetchError):
    """Request exceeded its time budget."""
    pass
