"""PriceAggregator: Consensus price from concurrently polled sources.

Algorithm:
    1. Return the cached result (cache_hit=True) if it is still fresh
    2. Fetch from every source concurrently and wait for all of them
    3. Fail with InsufficientSourcesError if fewer than min_sources_required
       quotes succeeded (the cache is left untouched)
    4. Drop outliers relative to the median; if that leaves fewer than
       min_sources_required quotes, fall back to the unfiltered set and mark
       the result as degraded
    5. Compute the weighted average and the confidence score
    6. Cache and return the result (cache_hit=False)

A failing source never fails the cycle: it simply abstains until the next
request.

.. code-block:: python

    >>> aggregator = PriceAggregator(sources, ResultCache(ttl_seconds=30))
    >>> result = await aggregator.get_aggregated_price()
    >>> result.to_response()["aggregation_method"]
    'weighted_average'
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import ClassVar, Sequence, TypedDict

from .OutlierFilter import OutlierFilter
from .Quote import Quote, utc_now
from .ResultCache import ResultCache
from .scoring import confidence_score, weighted_average
from .SourceHealth import SourceHealth
from .sources.base import QuoteSource, SourceFetchError

logger = logging.getLogger(__name__)


class InsufficientSourcesError(Exception):
    """Raised when too few sources produced a quote this cycle.

    :ivar available: Number of successful quotes.
    :ivar required: Configured minimum.
    """

    def __init__(self, available: int, required: int):
        """Initialize the error.

        :param available: Number of successful quotes.
        :param required: Configured minimum.
        """
        self.available = available
        self.required = required
        super().__init__(
            f"Insufficient data sources ({available}/{required} required)"
        )


class SourcePriceResponse(TypedDict):
    """Serialized per-source detail."""

    price: float
    weight: float
    timestamp: str


class AggregationResponse(TypedDict):
    """Serialized aggregate returned to API consumers."""

    symbol: str
    price_usd: float
    timestamp: str
    sources_used: int
    total_sources: int
    aggregation_method: str
    source_prices: dict[str, SourcePriceResponse]
    confidence_score: float
    cache_hit: bool
    degraded: bool
    dropped: dict[str, float]


@dataclass(frozen=True)
class SourcePriceDetail:
    """Contribution of a single source to an aggregate.

    :ivar price: Quoted price.
    :ivar weight: Weight applied to the price.
    :ivar observed_at: When the source observed the price.
    """

    price: float
    weight: float
    observed_at: datetime

    def to_dict(self) -> SourcePriceResponse:
        return {
            "price": self.price,
            "weight": self.weight,
            "timestamp": self.observed_at.isoformat(),
        }


@dataclass(frozen=True)
class AggregationResult:
    """Consensus price for one aggregation cycle.

    :ivar symbol: Asset symbol the price is for.
    :ivar price: Weighted average price in USD.
    :ivar computed_at: When the aggregate was computed.
    :ivar sources_used: Number of quotes that went into the price.
    :ivar total_sources: Number of registered sources.
    :ivar confidence_score: Trustworthiness score in [0, 1].
    :ivar per_source_detail: Source name -> detail for every quote used.
    :ivar cache_hit: True when served from the cache.
    :ivar degraded: True when outlier filtering left too few quotes and the
        unfiltered set was used instead.
    :ivar dropped: Source name -> price of quotes removed as outliers.
    """

    AGGREGATION_METHOD: ClassVar[str] = "weighted_average"

    symbol: str
    price: float
    computed_at: datetime
    sources_used: int
    total_sources: int
    confidence_score: float
    per_source_detail: dict[str, SourcePriceDetail]
    cache_hit: bool = False
    degraded: bool = False
    dropped: dict[str, float] = field(default_factory=dict)

    def to_response(self) -> AggregationResponse:
        """Serialize to the public response field contract."""
        return {
            "symbol": self.symbol,
            "price_usd": self.price,
            "timestamp": self.computed_at.isoformat(),
            "sources_used": self.sources_used,
            "total_sources": self.total_sources,
            "aggregation_method": self.AGGREGATION_METHOD,
            "source_prices": {
                name: detail.to_dict()
                for name, detail in self.per_source_detail.items()
            },
            "confidence_score": self.confidence_score,
            "cache_hit": self.cache_hit,
            "degraded": self.degraded,
            "dropped": dict(self.dropped),
        }


class PriceAggregator:
    """Orchestrates fetch, outlier filtering, averaging, scoring and caching.

    Configuration is fixed at construction time.

    :ivar sources: Registered sources, in registration order.
    :ivar cache: Result cache shared across requests.
    :ivar symbol: Asset symbol, also used as the cache key.
    :ivar min_sources_required: Minimum quotes needed for a result.
    :ivar outlier_filter: Median-relative outlier filter.
    """

    def __init__(
        self,
        sources: Sequence[QuoteSource],
        cache: ResultCache[AggregationResult] | None = None,
        *,
        symbol: str = "PI",
        min_sources_required: int = 1,
        outlier_threshold_percent: float = 10.0,
    ) -> None:
        """Initialize the aggregator.

        :param sources: Sources to poll; names must be unique.
        :param cache: Result cache (default: a new cache with a 30s TTL).
        :param symbol: Asset symbol used in results and as the cache key.
        :param min_sources_required: Minimum number of quotes required.
        :param outlier_threshold_percent: Max deviation from the median, in
            percent, before a quote is treated as an outlier.
        :raises ValueError: If parameters are invalid.
        """
        if not sources:
            raise ValueError("At least one source must be registered")
        names = [source.name for source in sources]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate source names: {duplicates}")
        if min_sources_required < 1:
            raise ValueError("min_sources_required must be at least 1")
        if min_sources_required > len(sources):
            raise ValueError(
                f"min_sources_required ({min_sources_required}) exceeds "
                f"the number of sources ({len(sources)})"
            )
        if not symbol:
            raise ValueError("symbol must not be empty")

        self.sources = list(sources)
        self.cache: ResultCache[AggregationResult] = (
            cache if cache is not None else ResultCache()
        )
        self.symbol = symbol
        self.min_sources_required = min_sources_required
        self.outlier_filter = OutlierFilter(outlier_threshold_percent)

    @property
    def total_sources(self) -> int:
        """Number of registered sources."""
        return len(self.sources)

    async def get_aggregated_price(self) -> AggregationResult:
        """Return the consensus price, from cache when fresh.

        :returns: AggregationResult with cache_hit set accordingly.
        :raises InsufficientSourcesError: If fewer than min_sources_required
            sources produced a quote.
        """
        cached = self.cache.get(self.symbol)
        if cached is not None:
            return replace(cached, cache_hit=True)

        quotes = await self._fetch_all()
        if len(quotes) < self.min_sources_required:
            logger.warning(
                f"{self.symbol}: Only {len(quotes)}/{self.total_sources} sources "
                f"returned a price ({self.min_sources_required} required)"
            )
            raise InsufficientSourcesError(len(quotes), self.min_sources_required)

        filtered = self.outlier_filter.filter(quotes)
        used = filtered.kept
        dropped = {q.source_name: q.price for q in filtered.dropped}
        degraded = False

        if len(used) < self.min_sources_required:
            logger.warning(
                f"{self.symbol}: Too many outliers ({len(filtered.dropped)} of "
                f"{len(quotes)} dropped), degraded mode: using all prices"
            )
            used = quotes
            dropped = {}
            degraded = True

        result = self._build_result(used, dropped=dropped, degraded=degraded)
        self.cache.set(self.symbol, result)
        return result

    def get_all_source_statuses(self) -> list[SourceHealth]:
        """Return a health snapshot per source, in registration order."""
        return [source.health_snapshot() for source in self.sources]

    async def _fetch_all(self) -> list[Quote]:
        """Fetch from every source concurrently and keep the successes.

        All fetches settle before any result is inspected. Quotes are returned
        in source registration order.
        """
        results = await asyncio.gather(
            *(source.fetch_quote() for source in self.sources),
            return_exceptions=True,
        )

        quotes: list[Quote] = []
        for source, result in zip(self.sources, results, strict=True):
            if isinstance(result, Quote):
                if result.source_name != source.name:
                    logger.warning(
                        f"[{source.name}] Ignoring quote labelled {result.source_name!r}"
                    )
                    continue
                quotes.append(result)
            elif isinstance(result, SourceFetchError):
                logger.warning(f"[{source.name}] Abstained this cycle: {result.cause}")
            elif isinstance(result, Exception):
                logger.warning(f"[{source.name}] Unexpected fetch error: {result!r}")
            elif isinstance(result, BaseException):
                raise result
            else:
                logger.warning(f"[{source.name}] Returned no quote: {result!r}")
        return quotes

    def _build_result(
        self,
        quotes: list[Quote],
        *,
        dropped: dict[str, float],
        degraded: bool,
    ) -> AggregationResult:
        """Combine quotes into an AggregationResult."""
        price = weighted_average(quotes)
        confidence = confidence_score(quotes, self.total_sources)
        detail = {
            q.source_name: SourcePriceDetail(
                price=q.price, weight=q.weight, observed_at=q.observed_at
            )
            for q in quotes
        }

        breakdown = ", ".join(f"{q.source_name}=${q.price:.6f}" for q in quotes)
        log_msg = f"{self.symbol}: ${price:.6f} (weighted average of [{breakdown}]"
        if dropped:
            dropped_strs = [f"{s}=${p:.6f}" for s, p in dropped.items()]
            log_msg += f", dropped: [{', '.join(dropped_strs)}]"
        if degraded:
            log_msg += ", degraded"
        log_msg += f") confidence={confidence:.3f}"
        logger.info(log_msg)

        return AggregationResult(
            symbol=self.symbol,
            price=price,
            computed_at=utc_now(),
            sources_used=len(quotes),
            total_sources=self.total_sources,
            confidence_score=confidence,
            per_source_detail=detail,
            cache_hit=False,
            degraded=degraded,
            dropped=dropped,
        )
