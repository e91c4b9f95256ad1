# -*- coding: utf-8 -*-
"""
Read-only access to the rebalancing backend.

- BackendBase: abstract interface the views depend on
- BackendClient: aiohttp REST implementation (bearer auth)

All clients inherit from BackendBase so tests can swap in fakes.
"""
from backend.base import BackendBase, DEFAULT_COINS
from backend.client import BackendClient, FetchError, RequestTimeoutError, fetch_price_histories

__all__ = [
    "BackendBase",
    "DEFAULT_COINS",
    "BackendClient",
    "FetchError",
    "RequestTimeoutError",
    "fetch_price_histories",
]
