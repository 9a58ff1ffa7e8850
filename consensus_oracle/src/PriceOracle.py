"""PriceOracle: Service facade for the consensus price.

This module wires configured sources, the result cache and the aggregator
together and exposes the two operations the surrounding service layer needs.

Architecture:
    - Sources are instantiated by name from the source registry
    - A single ResultCache is created at startup and injected into the
      PriceAggregator; it lives until the process exits
    - get_price() returns the serialized aggregate (the response contract)
    - get_source_statuses() returns per-source health in registration order
    - close() releases the shared HTTP client
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Sequence

from .OracleConfig import AggregatorConfig, SourceConfig
from .PriceAggregator import AggregationResponse, AggregationResult, PriceAggregator
from .ResultCache import ResultCache
from .sources import HttpQuoteSource, get_available_sources, get_source

if TYPE_CHECKING:
    import httpx

logger = logging.getLogger(__name__)


class PriceOracle:
    """Main entry point for consensus price requests.

    :ivar config: Aggregation settings.
    :ivar sources: Instantiated sources, in configuration order.
    :ivar cache: Process-wide result cache.
    :ivar aggregator: The aggregation engine.
    """

    def __init__(
        self,
        config: AggregatorConfig,
        source_configs: Sequence[SourceConfig],
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the price oracle.

        :param config: Aggregation settings.
        :param source_configs: Per-source settings; disabled entries are skipped.
        :param client: Optional HTTP client for all sources. When omitted the
            shared client is used and closed by close().
        :raises ValueError: If sources are unknown, none are enabled, or any
            setting is invalid.
        """
        available = get_available_sources()
        invalid = [c.name for c in source_configs if c.name not in available]
        if invalid:
            raise ValueError(f"Unknown sources: {invalid}. Available: {available}")

        self.config = config
        self._client = client

        self.sources: list[HttpQuoteSource] = []
        for source_config in source_configs:
            if not source_config.enabled:
                logger.info(f"Source {source_config.name} disabled, skipping")
                continue
            self.sources.append(
                get_source(
                    source_config.name,
                    symbol=source_config.symbol,
                    weight=source_config.weight,
                    api_key=source_config.api_key,
                    timeout=source_config.timeout,
                    client=client,
                )
            )

        self.cache: ResultCache[AggregationResult] = ResultCache(config.cache_ttl_seconds)
        self.aggregator = PriceAggregator(
            self.sources,
            self.cache,
            symbol=config.symbol,
            min_sources_required=config.min_sources_required,
            outlier_threshold_percent=config.outlier_threshold_percent,
        )

        logger.info(
            f"PriceOracle initialized: symbol={config.symbol}, "
            f"sources={[repr(s) for s in self.sources]}, "
            f"min_sources={config.min_sources_required}, "
            f"outlier_threshold={config.outlier_threshold_percent}%, "
            f"cache_ttl={config.cache_ttl_seconds}s"
        )

    async def __aenter__(self) -> PriceOracle:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def get_price(self) -> AggregationResponse:
        """Return the serialized consensus price.

        :returns: Response dict (price_usd, timestamp, sources_used, ...).
        :raises InsufficientSourcesError: If too few sources returned a price.
        """
        result = await self.aggregator.get_aggregated_price()
        return result.to_response()

    def get_source_statuses(self) -> list[dict[str, Any]]:
        """Return serialized health for every source, in registration order."""
        return [status.to_dict() for status in self.aggregator.get_all_source_statuses()]

    async def close(self) -> None:
        """Close the shared HTTP client if this oracle relies on it."""
        if self._client is None:
            await HttpQuoteSource.close_shared_client()
