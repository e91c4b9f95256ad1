# -*- coding: utf-8 -*-
"""
Pytest configuration and shared fixtures.
"""
import pytest
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


@pytest.fixture
def deviation_payload():
    """Two-coin payload with one pair, prices and snapshots."""
    return {
        "success": True,
        "coins": ["BTC", "ETH"],
        "latestDeviations": {
            "BTC": {
                "ETH": 3.5,
                "prices": {"ETH": {"basePrice": 60000, "targetPrice": 3000}},
                "baseSnapshot": {
                    "initialPrice": 50000,
                    "unitsHeld": 0.1,
                    "snapshotTimestamp": "2024-01-01T00:00:00Z",
                },
                "targetSnapshot": {
                    "initialPrice": 2800,
                    "unitsHeld": 2.0,
                    "snapshotTimestamp": "2024-01-01T00:00:00Z",
                },
            },
        },
        "timeSeriesData": {
            "BTC/ETH": [
                {"timestamp": "2024-01-02T10:00:00Z", "basePrice": 59000,
                 "targetPrice": 2950, "deviationPercent": 2.1},
                {"timestamp": "2024-01-02T11:00:00Z", "basePrice": 60000,
                 "targetPrice": 3000, "deviationPercent": 3.5},
            ],
        },
    }


@pytest.fixture
def multi_coin_payload():
    """Four coins, several pairs with mixed magnitudes."""
    return {
        "success": True,
        "coins": ["BTC", "ETH", "SOL", "USDT"],
        "latestDeviations": {
            "BTC": {
                "ETH": 1.5,
                "SOL": -12.0,
                "USDT": None,
                "prices": {
                    "ETH": {"basePrice": 60000, "targetPrice": 3000},
                    "SOL": {"basePrice": 60000, "targetPrice": 150},
                },
            },
            "ETH": {
                "BTC": -1.5,
                "SOL": 7.25,
                "prices": {"SOL": {"basePrice": 3000, "targetPrice": 150}},
            },
            "SOL": {"USDT": 0.4},
        },
        "timeSeriesData": {
            "BTC/ETH": [
                {"timestamp": "2024-01-02T10:00:00Z", "deviationPercent": 1.0},
                {"timestamp": "2024-01-02T11:00:00Z", "deviationPercent": 1.5},
            ],
            "ETH/SOL": [
                {"timestamp": "2024-01-02T11:00:00Z", "deviationPercent": 7.25},
                {"timestamp": "2024-01-02T12:00:00Z", "deviationPercent": 7.0},
            ],
        },
    }


@pytest.fixture
def mock_backend(deviation_payload):
    """Provide a mock backend returning deviation_payload."""
    from unittest.mock import MagicMock, AsyncMock

    backend = MagicMock()
    backend.label = "API"
    backend.fetch_deviations = AsyncMock(return_value=deviation_payload)
    backend.fetch_bot_coins = AsyncMock(return_value=["BTC", "ETH"])
    backend.fetch_price_history = AsyncMock(return_value=[])
    backend.close = AsyncMock()

    return backend
