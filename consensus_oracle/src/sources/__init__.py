"""
Price sources for the consensus oracle.

Every source offers one capability, fetch_quote(), and owns its own health
statistics exposed via health_snapshot().

Usage:
    from consensus_oracle.src.sources import get_source, get_available_sources

    # Get list of available sources
    available = get_available_sources()
    # ['bitget', 'coinbase', 'coingecko', 'kraken', 'okx']

    # Create a source instance with its default symbol and weight
    source = get_source("okx")
    quote = await source.fetch_quote()

    # Override the upstream symbol, weight or API key
    source = get_source("coinbase", symbol="BTC-USD", weight=1.0)
"""

# Import base classes and utilities
from .base import (
    SOURCE_REGISTRY,
    HttpQuoteSource,
    QuoteSource,
    SourceConfigError,
    SourceError,
    SourceFetchError,
    SourceHTTPError,
    SourceRequestError,
    get_available_sources,
    get_source,
    register_source,
)

# Import all source implementations to trigger registration
from .bitget import BitgetSource
from .coinbase import CoinbaseSource
from .coingecko import CoinGeckoSource
from .kraken import KrakenSource
from .okx import OKXSource

__all__ = [
    # Base classes
    "HttpQuoteSource",
    "QuoteSource",
    "SourceError",
    "SourceConfigError",
    "SourceFetchError",
    "SourceHTTPError",
    "SourceRequestError",
    # Registry functions
    "register_source",
    "get_source",
    "get_available_sources",
    "SOURCE_REGISTRY",
    # Source implementations
    "BitgetSource",
    "CoinbaseSource",
    "CoinGeckoSource",
    "KrakenSource",
    "OKXSource",
]
