# -*- coding: utf-8 -*-
"""
Pagination/Sort Engine Tests.
"""
import pytest

from analytics.models import DeviationRecord
from analytics.pagination import (
    PageRequest,
    ServerPageMeta,
    clamp_page,
    paginate,
    sort_items,
    total_pages_for,
)


def _rec(base, target, pct, base_price=1.0):
    return DeviationRecord(
        pair_key=f"{base}/{target}",
        base_coin=base,
        target_coin=target,
        base_price=base_price,
        target_price=1.0,
        deviation_percent=pct,
    )


@pytest.fixture
def records():
    """23 BTC records plus 4 ETH records."""
    out = [_rec("BTC", f"C{i:02d}", float(i)) for i in range(23)]
    out += [_rec("ETH", f"C{i:02d}", float(-i)) for i in range(4)]
    return out


class TestServerPagination:
    """Server-sliced pages are used verbatim."""

    def test_total_pages_from_server_count(self):
        """totalCount 47, page 2, limit 10 -> 5 pages, items untouched."""
        items = [_rec("BTC", f"C{i}", float(i)) for i in range(10)]
        meta = ServerPageMeta.from_payload({"totalCount": 47, "page": 2, "limit": 10})
        page = paginate(items, PageRequest(page=2, page_size=10), meta)

        assert page.total_pages == 5
        assert page.total_items == 47
        assert page.items == items

    def test_server_items_not_resorted(self):
        items = [_rec("BTC", "A", 1.0), _rec("BTC", "B", 9.0)]
        meta = ServerPageMeta(total_count=2, page=1, limit=10)
        page = paginate(items, PageRequest(sort_column="deviationPercent", sort_direction="desc"), meta)

        assert [r.target_coin for r in page.items] == ["A", "B"]

    @pytest.mark.parametrize("raw", [
        {"totalCount": 47},
        {"totalCount": 47, "page": 2},
        {"page": 1, "limit": 10},
        {"totalCount": "x", "page": 1, "limit": 10},
        None,
    ])
    def test_meta_requires_all_fields(self, raw):
        assert ServerPageMeta.from_payload(raw) is None

    def test_zero_count_is_one_page(self):
        meta = ServerPageMeta.from_payload({"totalCount": 0, "page": 1, "limit": 10})
        page = paginate([], PageRequest(), meta)
        assert page.total_pages == 1


class TestClientPagination:
    """Filter, sort, slice."""

    def test_pages_of_23(self, records):
        """23 filtered records, page size 10 -> 10, 10, 3."""
        req = PageRequest(page_size=10, filter_coin="BTC")
        sizes = [len(paginate(records, req.with_page(p)).items) for p in (1, 2, 3)]

        assert sizes == [10, 10, 3]
        assert paginate(records, req).total_pages == 3
        assert paginate(records, req).total_items == 23

    @pytest.mark.parametrize("size", [1, 3, 5, 10, 25, 100])
    def test_pages_cover_everything(self, records, size):
        """Sum of page lengths is N; all but the last page are full."""
        req = PageRequest(page_size=size)
        first = paginate(records, req)
        lengths = [len(paginate(records, req.with_page(p)).items) for p in range(1, first.total_pages + 1)]

        assert sum(lengths) == len(records)
        assert all(n == size for n in lengths[:-1])
        assert 1 <= lengths[-1] <= size

    def test_out_of_range_page_is_empty(self, records):
        page = paginate(records, PageRequest(page=99, page_size=10))
        assert page.items == []
        assert page.total_pages == 3

    def test_empty_input(self):
        page = paginate([], PageRequest())
        assert page.items == []
        assert page.total_pages == 1
        assert page.total_items == 0

    def test_default_sort_is_deviation_desc(self, records):
        page = paginate(records, PageRequest(page_size=3))
        assert [r.deviation_percent for r in page.items] == [22.0, 21.0, 20.0]


class TestSorting:
    """Column sorting with missing values last."""

    def test_missing_values_last_both_directions(self):
        items = [
            {"coin": "A", "price": 2.0},
            {"coin": "B", "price": None},
            {"coin": "C", "price": 1.0},
            {"coin": "D", "price": float("nan")},
        ]
        asc = [i["coin"] for i in sort_items(items, "price", "asc")]
        desc = [i["coin"] for i in sort_items(items, "price", "desc")]

        assert asc == ["C", "A", "B", "D"]
        assert desc == ["A", "C", "B", "D"]

    def test_wire_and_attribute_names(self, records):
        by_wire = sort_items(records, "basePrice", "asc")
        by_attr = sort_items(records, "base_price", "asc")
        assert by_wire == by_attr

    def test_string_column(self):
        items = [_rec("ETH", "X", 1.0), _rec("BTC", "Y", 1.0), _rec("SOL", "Z", 1.0)]
        out = sort_items(items, "baseCoin", "asc")
        assert [r.base_coin for r in out] == ["BTC", "ETH", "SOL"]

    def test_stable_for_equal_keys(self):
        items = [_rec("BTC", "A", 1.0), _rec("BTC", "B", 1.0), _rec("BTC", "C", 1.0)]
        assert sort_items(items, "deviationPercent", "asc") == items

    def test_unknown_column_keeps_order(self, records):
        assert sort_items(records, "nope", "desc") == records


class TestPageRequest:
    """Request transitions reset to page 1, except page changes."""

    def test_same_column_toggles(self):
        req = PageRequest(page=3, sort_column="basePrice", sort_direction="asc")
        toggled = req.with_sort("basePrice")

        assert toggled.sort_direction == "desc"
        assert toggled.with_sort("basePrice").sort_direction == "asc"
        assert toggled.page == 1

    def test_new_column_starts_ascending(self):
        req = PageRequest(sort_column="deviation_percent", sort_direction="desc")
        assert req.with_sort("pairKey").sort_direction == "asc"

    def test_resets(self):
        req = PageRequest(page=4)
        assert req.with_page_size(25).page == 1
        assert req.with_filter_coin("BTC").page == 1
        assert req.with_filter_coin("").filter_coin is None
        assert req.with_page(2).page == 2

    @pytest.mark.parametrize("kwargs", [
        {"page": 0},
        {"page_size": 0},
        {"sort_direction": "up"},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            PageRequest(**kwargs)


class TestHelpers:

    @pytest.mark.parametrize("total,size,expected", [
        (0, 10, 1),
        (1, 10, 1),
        (10, 10, 1),
        (11, 10, 2),
        (47, 10, 5),
    ])
    def test_total_pages_for(self, total, size, expected):
        assert total_pages_for(total, size) == expected

    def test_clamp_page(self):
        assert clamp_page(0, 5) == 1
        assert clamp_page(9, 5) == 5
        assert clamp_page(3, 5) == 3
        assert clamp_page(3, 0) == 1
