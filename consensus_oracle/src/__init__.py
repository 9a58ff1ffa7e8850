"""
Consensus Price Oracle - Multi-Source Aggregation Module

This module turns several independent, possibly unreliable price feeds into
one consensus price:
- Quote: A single source's price observation
- SourceHealth: Per-source rolling health statistics
- OutlierFilter: Median-relative outlier removal
- scoring: Weighted average and confidence score
- ResultCache: TTL-bounded cache for aggregates
- PriceAggregator: Concurrent fan-out, filtering, scoring and caching
- PriceOracle: Service facade wiring configured sources to the aggregator
- sources: Modular price source implementations
"""

from .OracleConfig import AggregatorConfig, SourceConfig
from .OutlierFilter import FilterResult, OutlierFilter
from .PriceAggregator import (
    AggregationResult,
    InsufficientSourcesError,
    PriceAggregator,
    SourcePriceDetail,
)
from .PriceOracle import PriceOracle
from .Quote import Quote
from .ResultCache import ResultCache
from .scoring import confidence_score, weighted_average
from .SourceHealth import SourceHealth, SourceHealthTracker

__all__ = [
    "AggregationResult",
    "AggregatorConfig",
    "FilterResult",
    "InsufficientSourcesError",
    "OutlierFilter",
    "PriceAggregator",
    "PriceOracle",
    "Quote",
    "ResultCache",
    "SourceConfig",
    "SourceHealth",
    "SourceHealthTracker",
    "SourcePriceDetail",
    "confidence_score",
    "weighted_average",
]
