# -*- coding: utf-8 -*-
"""
Deviation analytics pipeline.

- models: normalized records and the refresh state value object
- normalizer: nested /deviations payload -> flat records + time series
- pagination: server-driven or client-side paging, sorting and filtering
- projector: time series, table rows and heatmap cells
- price_history: /price-history parsing and grouping
"""
from analytics.models import (
    DeviationRecord,
    RefreshState,
    RefreshStatus,
    Snapshot,
    TimeSeriesPoint,
)
from analytics.normalizer import NormalizationFailure, NormalizedDeviations, normalize
from analytics.pagination import Page, PageRequest, ServerPageMeta, paginate
from analytics.projector import DeviationBucket, to_heatmap, to_table, to_time_series

__all__ = [
    "DeviationRecord",
    "RefreshState",
    "RefreshStatus",
    "Snapshot",
    "TimeSeriesPoint",
    "NormalizationFailure",
    "NormalizedDeviations",
    "normalize",
    "Page",
    "PageRequest",
    "ServerPageMeta",
    "paginate",
    "DeviationBucket",
    "to_heatmap",
    "to_table",
    "to_time_series",
]
