# -*- coding: utf-8 -*-
"""
DeviationView Tests.

End-to-end through a mocked backend: fetch, normalize, paginate, project.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from analytics.models import RefreshStatus
from analytics.normalizer import NO_DATA_MESSAGE
from backend.client import FetchError
from core.refresh import RefreshPolicy
from core.view import DeviationView


class TestRefresh:
    """Fetch and apply."""

    @pytest.mark.asyncio
    async def test_refresh_populates(self, mock_backend):
        view = DeviationView(1, mock_backend)
        state = await view.refresh()

        assert state.status is RefreshStatus.IDLE
        assert [r.pair_key for r in view.data.records] == ["BTC/ETH"]
        mock_backend.fetch_deviations.assert_awaited_once_with(
            1, time_range="24h", base_coin=None, page=1, limit=10)

        snap = view.snapshot()
        assert snap["emptyMessage"] is None
        assert snap["table"]["rows"][0]["deviation"] == "+3.50%"
        assert snap["heatmap"]["cells"] == [{"pairKey": "BTC/ETH", "bucket": "2–5%"}]
        assert snap["chart"]["labels"] == ["10:00", "11:00"]
        assert snap["state"]["status"] == "idle"

    @pytest.mark.asyncio
    async def test_loaded_coins_filter_records(self, mock_backend):
        mock_backend.fetch_bot_coins = AsyncMock(return_value=["BTC", "SOL"])
        view = DeviationView(1, mock_backend)

        assert await view.load_coins() == ["BTC", "SOL"]
        await view.refresh()

        assert view.data.records == []
        assert view.empty_message() == NO_DATA_MESSAGE

    @pytest.mark.asyncio
    async def test_unsuccessful_is_empty_state_not_error(self, mock_backend, deviation_payload):
        deviation_payload["success"] = False
        view = DeviationView(1, mock_backend)

        state = await view.refresh()

        assert state.status is RefreshStatus.IDLE
        assert state.error_message is None
        assert view.empty_message() == NO_DATA_MESSAGE
        assert view.snapshot()["table"]["rows"] == []

    @pytest.mark.asyncio
    async def test_manual_failure_keeps_previous_data(self, mock_backend):
        view = DeviationView(1, mock_backend)
        await view.refresh()

        mock_backend.fetch_deviations.side_effect = FetchError("HTTP 503: maintenance", status=503)
        state = await view.refresh(RefreshPolicy.MANUAL)

        assert state.status is RefreshStatus.ERROR
        assert state.error_message == "Failed to load deviation data: HTTP 503: maintenance"
        assert len(view.data.records) == 1

    @pytest.mark.asyncio
    async def test_hard_reset_restores_defaults(self, mock_backend):
        view = DeviationView(1, mock_backend)
        view.set_time_range("7d")
        view.set_sort("pairKey")
        view.set_filter_coin("BTC")
        view.select_pair("BTC/ETH")
        view.set_page_size(25)

        await view.refresh(RefreshPolicy.HARD_RESET)

        assert view.time_range == "24h"
        assert view.selected_pair is None
        assert view.request.sort_column == "deviation_percent"
        assert view.request.filter_coin is None
        assert view.request.page_size == 10
        mock_backend.fetch_deviations.assert_awaited_with(
            1, time_range="24h", base_coin=None, page=1, limit=10)


class TestSetters:
    """Every change except paging returns to page 1."""

    def test_resets_to_first_page(self, mock_backend):
        view = DeviationView(1, mock_backend)
        for change in (
            lambda: view.set_sort("pairKey"),
            lambda: view.set_filter_coin("ETH"),
            lambda: view.select_pair("BTC/ETH"),
            lambda: view.set_time_range("30d"),
            lambda: view.set_page_size(5),
        ):
            view.set_page(3)
            change()
            assert view.request.page == 1

    def test_set_page_keeps_filters(self, mock_backend):
        view = DeviationView(1, mock_backend)
        view.set_filter_coin("ETH")
        view.set_page(2)
        assert view.request.page == 2
        assert view.request.filter_coin == "ETH"

    def test_invalid_time_range(self, mock_backend):
        view = DeviationView(1, mock_backend)
        with pytest.raises(ValueError):
            view.set_time_range("1y")
        with pytest.raises(ValueError):
            DeviationView(1, mock_backend, time_range="yesterday")

    @pytest.mark.asyncio
    async def test_time_range_change_refetches(self, mock_backend):
        view = DeviationView(1, mock_backend)
        fetched = await view.apply_changes({"timeRange": "7d"})

        assert fetched
        mock_backend.fetch_deviations.assert_awaited_once_with(
            1, time_range="7d", base_coin=None, page=1, limit=10)

    @pytest.mark.asyncio
    async def test_refresh_options_reach_backend(self, mock_backend):
        view = DeviationView(1, mock_backend)
        await view.refresh("manual", {"timeRange": "30d", "bogus": 1}, pair_filter="ETH/SOL")

        mock_backend.fetch_deviations.assert_awaited_once_with(
            1, time_range="30d", base_coin="ETH", page=1, limit=10)
        # one-off overrides do not stick
        assert view.time_range == "24h"

    @pytest.mark.asyncio
    async def test_explicit_base_coin_beats_pair(self, mock_backend):
        view = DeviationView(1, mock_backend)
        await view.refresh("manual", {"baseCoin": "BTC"}, pair_filter="ETH/SOL")

        mock_backend.fetch_deviations.assert_awaited_once_with(
            1, time_range="24h", base_coin="BTC", page=1, limit=10)

    @pytest.mark.asyncio
    async def test_client_side_paging_does_not_refetch(self, mock_backend):
        view = DeviationView(1, mock_backend)
        await view.refresh()
        mock_backend.fetch_deviations.reset_mock()

        fetched = await view.apply_changes({"page": 2, "sortColumn": "pairKey"})

        assert not fetched
        mock_backend.fetch_deviations.assert_not_awaited()
        assert view.request.page == 2
        assert view.request.sort_column == "pairKey"


class TestPagination:

    @pytest.mark.asyncio
    async def test_server_paged_history(self, mock_backend, deviation_payload):
        deviation_payload.update({"totalCount": 47, "page": 2, "limit": 10})
        view = DeviationView(1, mock_backend)
        await view.refresh()

        history = view.history_table()
        assert view.server_paged
        assert history["totalPages"] == 5
        assert history["totalItems"] == 47
        assert [r["time"] for r in history["rows"]] == ["10:00", "11:00"]

        fetched = await view.apply_changes({"page": 3})
        assert fetched
        mock_backend.fetch_deviations.assert_awaited_with(
            1, time_range="24h", base_coin=None, page=3, limit=10)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("changes", [
        {"sortColumn": "timestamp"},
        {"pair": "BTC/ETH"},
    ])
    async def test_server_paged_reset_refetches_first_page(self, mock_backend, deviation_payload, changes):
        deviation_payload.update({"totalCount": 47, "page": 3, "limit": 10})
        view = DeviationView(1, mock_backend)
        view.set_page(3)
        await view.refresh()
        mock_backend.fetch_deviations.reset_mock()

        fetched = await view.apply_changes(changes)

        assert fetched
        assert view.request.page == 1
        mock_backend.fetch_deviations.assert_awaited_once_with(
            1, time_range="24h", base_coin=None, page=1, limit=10)

    @pytest.mark.asyncio
    async def test_stale_page_shows_last_page(self, mock_backend, multi_coin_payload):
        mock_backend.fetch_deviations = AsyncMock(return_value=multi_coin_payload)
        view = DeviationView(1, mock_backend, page_size=2)
        await view.refresh()
        view.set_page(9)

        table = view.table()

        assert table["totalPages"] == 3
        assert table["page"] == 3
        assert len(table["rows"]) == 1
        assert view.request.page == 9

    @pytest.mark.asyncio
    async def test_filter_and_pair(self, mock_backend, multi_coin_payload):
        mock_backend.fetch_deviations = AsyncMock(return_value=multi_coin_payload)
        view = DeviationView(1, mock_backend)
        await view.refresh()

        view.set_filter_coin("ETH")
        assert {r["baseCoin"] for r in view.table()["rows"]} == {"ETH"}

        view.set_filter_coin(None)
        view.select_pair("ETH/SOL")
        assert [r["pair"] for r in view.table()["rows"]] == ["ETH/SOL"]
        assert [s["label"] for s in view.chart()["series"]] == ["ETH/SOL"]
        assert len(view.history_table()["rows"]) == 2


class TestPriceHistory:

    @pytest.mark.asyncio
    async def test_partial_failure(self, mock_backend):
        async def history(bot_id, start, end, coin):
            if coin == "ETH":
                raise FetchError("down")
            return [
                {"coin": coin, "price": 10, "timestamp": "2024-01-01T00:00:00Z", "source": "binance"},
                {"coin": coin, "price": "bad", "timestamp": "2024-01-01T01:00:00Z"},
            ]

        mock_backend.fetch_price_history = AsyncMock(side_effect=history)
        view = DeviationView(1, mock_backend, allowed_coins=["BTC", "ETH"])

        grouped = await view.price_history()
        assert list(grouped) == ["BTC"]
        assert grouped["BTC"][0].price == 10.0

        summary = await view.price_summary(["BTC", "SOL"], "7d")
        assert set(summary["coins"]) == {"BTC", "SOL"}
        assert summary["sources"] == {"binance": 2}

    @pytest.mark.asyncio
    async def test_all_range_has_no_start(self, mock_backend):
        view = DeviationView(1, mock_backend)
        await view.price_history(["BTC"], "all")

        args = mock_backend.fetch_price_history.await_args.args
        assert args[0] == 1
        assert args[1] is None
        assert args[3] == "BTC"


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_auto_refresh_and_close(self, mock_backend):
        async with DeviationView(1, mock_backend) as view:
            auto = view.start_auto_refresh(0.01)
            await asyncio.sleep(0.06)
            assert auto.running

        assert not auto.running
        assert mock_backend.fetch_deviations.await_count >= 2

    @pytest.mark.asyncio
    async def test_auto_refresh_paused_after_manual_error(self, mock_backend):
        mock_backend.fetch_deviations.side_effect = FetchError("down")
        view = DeviationView(1, mock_backend)
        await view.refresh()
        assert view.state.status is RefreshStatus.ERROR

        view.start_auto_refresh(0.01)
        await asyncio.sleep(0.05)
        await view.close()

        assert mock_backend.fetch_deviations.await_count == 1
