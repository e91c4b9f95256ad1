# -*- coding: utf-8 -*-
"""
Abstract base class for the bot backend boundary.

The monitor only reads from the backend. Implementations (the aiohttp REST
client, test fakes) provide these coroutines so views never depend on
transport details.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

# Used when the coins endpoint is empty or unreachable
DEFAULT_COINS = ["BTC", "ETH", "USDT"]


class BackendBase(ABC):
    """
    Read-only interface to the rebalancing backend.

    Every method raises backend.client.FetchError (or its timeout subclass)
    on transport/HTTP failure, except fetch_bot_coins which falls back to
    DEFAULT_COINS.
    """

    # Label for logging
    label: str = "BACKEND"

    # ==================== Lifecycle ====================

    @abstractmethod
    async def start(self) -> None:
        """Open the HTTP session. Safe to call more than once."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the HTTP session."""
        pass

    @abstractmethod
    def check_credentials(self) -> bool:
        """
        True if a bearer token is configured.
        Does NOT make network calls.
        """
        pass

    # ==================== Deviations ====================

    @abstractmethod
    async def fetch_deviations(
        self,
        bot_id: int,
        time_range: Optional[str] = None,
        base_coin: Optional[str] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        GET /bots/{id}/deviations.

        Returns:
            Raw decoded body: {success, timeSeriesData, latestDeviations, coins,
            totalCount?, page?, limit?}. Not validated here.
        """
        pass

    # ==================== Prices / coins ====================

    @abstractmethod
    async def fetch_price_history(
        self,
        bot_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        coin: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        GET /bots/{id}/price-history.

        Returns:
            List of {coin, price, timestamp, source?, change?, changePercent?}.
        """
        pass

    @abstractmethod
    async def fetch_bot_coins(self, bot_id: int) -> List[str]:
        """
        GET /bots/{id}/coins.

        Returns:
            Coin allowlist, or DEFAULT_COINS when empty/failed.
        """
        pass
