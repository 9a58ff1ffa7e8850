"""Source capability contract and shared HTTP connector behaviour.

A price source offers one capability, fetching the current quote, plus a
read-only view of its health. Anything satisfying QuoteSource can be handed to
the PriceAggregator.

HTTP connectors subclass HttpQuoteSource and implement only the
endpoint-specific _fetch_price() step. The base handles the per-call timeout,
health bookkeeping, payload-error wrapping and price validation. Each instance
owns its own SourceHealthTracker. A shared httpx.AsyncClient is used across
connectors unless a client is injected.

.. code-block:: python

    @register_source
    class MySource(HttpQuoteSource):
        name = "mysource"
        DEFAULT_SYMBOL = "PI-USD"

        async def _fetch_price(self) -> tuple[float, datetime | None]:
            response = await self._get(f"https://api.example.com/{self.symbol}")
            return float(response.json()["price"]), None
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import ClassVar, Protocol

import httpx

from ..Quote import Quote, utc_now
from ..SourceHealth import SourceHealth, SourceHealthTracker

logger = logging.getLogger(__name__)


class SourceError(Exception):
    """Base exception for source errors."""

    pass


class SourceConfigError(SourceError, ValueError):
    """Raised when source configuration is invalid (e.g., missing symbol)."""

    pass


class SourceRequestError(SourceError):
    """Raised when an HTTP request fails at the transport level."""

    pass


class SourceHTTPError(SourceRequestError):
    """Raised when an HTTP request returns a non-2xx status.

    :ivar status_code: HTTP status code from the failed request.
    """

    def __init__(self, status_code: int, message: str):
        """Initialize the HTTP error.

        :param status_code: HTTP status code.
        :param message: Error message from response.
        """
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}")


class SourceFetchError(SourceError):
    """Raised by fetch_quote() when a source cannot produce a valid quote.

    The aggregator treats this as the source abstaining for one cycle.

    :ivar source_name: Name of the failing source.
    :ivar cause: Description of what went wrong.
    """

    def __init__(self, source_name: str, cause: str):
        """Initialize the fetch error.

        :param source_name: Name of the failing source.
        :param cause: Description of what went wrong.
        """
        self.source_name = source_name
        self.cause = cause
        super().__init__(f"[{source_name}] {cause}")


class QuoteSource(Protocol):
    """Capability interface consumed by the PriceAggregator."""

    name: str

    async def fetch_quote(self) -> Quote:
        """Fetch the current quote or raise SourceFetchError."""
        ...

    def health_snapshot(self) -> SourceHealth:
        """Return a read-only snapshot of this source's health."""
        ...


class HttpQuoteSource(ABC):
    """Base for connectors that read a price from an HTTP API.

    Subclasses must define:
        - name: Class variable identifying the source (e.g., "okx")
        - _fetch_price(): Async method returning (price, observed_at or None)

    :cvar name: Unique identifier for this source.
    :cvar DEFAULT_SYMBOL: Upstream symbol used when none is configured.
    :cvar DEFAULT_WEIGHT: Weight used when none is configured.
    :cvar DEFAULT_TIMEOUT: Per-call timeout in seconds.
    :ivar symbol: Upstream instrument identifier.
    :ivar weight: Weight of this source's quotes.
    :ivar api_key: Optional API key for authenticated endpoints.
    :ivar timeout: Per-call timeout in seconds.
    """

    # Class-level shared HTTP client
    _shared_client: ClassVar[httpx.AsyncClient | None] = None

    name: ClassVar[str] = ""

    DEFAULT_SYMBOL: ClassVar[str | None] = None
    DEFAULT_WEIGHT: ClassVar[float] = 1.0
    DEFAULT_TIMEOUT: ClassVar[float] = 5.0

    def __init__(
        self,
        symbol: str | None = None,
        weight: float | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the source.

        :param symbol: Upstream symbol (default: DEFAULT_SYMBOL).
        :param weight: Quote weight (default: DEFAULT_WEIGHT).
        :param api_key: Optional API key for authenticated endpoints.
        :param timeout: Per-call timeout in seconds (default: DEFAULT_TIMEOUT).
        :param client: Optional HTTP client; the shared client is used otherwise.
        :raises SourceConfigError: If no symbol is available or weight/timeout
            is not a positive finite number.
        """
        self.symbol = symbol or self.DEFAULT_SYMBOL
        if not self.symbol:
            raise SourceConfigError(f"Source '{self.name}' requires a symbol")

        self.weight = self.DEFAULT_WEIGHT if weight is None else weight
        if not math.isfinite(self.weight) or self.weight <= 0:
            raise SourceConfigError(
                f"Source '{self.name}' weight must be positive, got {self.weight}"
            )

        self.timeout = self.DEFAULT_TIMEOUT if timeout is None else timeout
        if not math.isfinite(self.timeout) or self.timeout <= 0:
            raise SourceConfigError(
                f"Source '{self.name}' timeout must be positive, got {self.timeout}"
            )

        self.api_key = api_key
        self._client = client
        self._health = SourceHealthTracker(self.name)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(symbol={self.symbol!r}, weight={self.weight})"

    @property
    def has_api_key(self) -> bool:
        """Check if this source has an API key configured."""
        return self.api_key is not None and len(self.api_key) > 0

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Get or create the shared HTTP client.

        The client is shared across all source instances to reuse connections.

        :returns: Shared httpx.AsyncClient instance.
        """
        if cls._shared_client is None or cls._shared_client.is_closed:
            HttpQuoteSource._shared_client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, connect=10.0),
                limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
                follow_redirects=True,
                headers={"Accept": "application/json"},
            )
        return HttpQuoteSource._shared_client

    @classmethod
    async def close_shared_client(cls) -> None:
        """Close the shared HTTP client."""
        client = HttpQuoteSource._shared_client
        if client is not None and not client.is_closed:
            await client.aclose()
        HttpQuoteSource._shared_client = None

    def health_snapshot(self) -> SourceHealth:
        """Return a read-only snapshot of this source's health."""
        return self._health.snapshot()

    async def fetch_quote(self) -> Quote:
        """Fetch the current price and wrap it in a Quote.

        Records the outcome in this source's health before returning or raising.

        :returns: Quote carrying this source's name and weight.
        :raises SourceFetchError: On network error, timeout, malformed payload,
            or a non-positive/NaN price.
        """
        started = time.perf_counter()
        try:
            price, observed_at = await asyncio.wait_for(
                self._fetch_price(), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise self._fail(f"Timeout after {self.timeout}s") from e
        except SourceFetchError as e:
            raise self._fail(e.cause) from e
        except SourceRequestError as e:
            raise self._fail(str(e)) from e
        except (KeyError, ValueError, TypeError, IndexError, AttributeError) as e:
            raise self._fail(f"Malformed payload: {e!r}") from e

        if not isinstance(price, (int, float)) or not math.isfinite(price) or price <= 0:
            raise self._fail(f"Invalid price: {price!r}")

        latency_ms = (time.perf_counter() - started) * 1000
        self._health.record_success(latency_ms)
        logger.debug(
            f"[{self.name}] {self.symbol} = {price:.6f} ({latency_ms:.0f}ms)"
        )
        return Quote(
            price=float(price),
            source_name=self.name,
            observed_at=observed_at or utc_now(),
            weight=self.weight,
        )

    @abstractmethod
    async def _fetch_price(self) -> tuple[float, datetime | None]:
        """Fetch the raw price for self.symbol.

        :returns: Tuple of (price, observed_at). observed_at may be None, in
            which case the fetch time is used.
        :raises SourceRequestError: On HTTP failure.
        :raises SourceFetchError: When the payload reports an upstream error.
        :raises KeyError|ValueError|TypeError|IndexError|AttributeError: On malformed payload.
        """
        pass

    def _fail(self, cause: str) -> SourceFetchError:
        """Record a failure in health and build the error to raise."""
        self._health.record_failure(cause)
        logger.warning(f"[{self.name}] Failed to fetch {self.symbol}: {cause}")
        return SourceFetchError(self.name, cause)

    async def _get(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> httpx.Response:
        """Make an HTTP GET request.

        :param url: Request URL.
        :param params: Optional query parameters.
        :param headers: Optional request headers.
        :returns: httpx.Response object.
        :raises SourceHTTPError: On non-2xx response.
        :raises SourceRequestError: On network/timeout errors.
        """
        client = self._client or self.get_shared_client()
        try:
            response = await client.get(
                url,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise SourceRequestError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise SourceRequestError(f"Request failed: {e}") from e

        if not response.is_success:
            logger.debug(
                "HTTP GET %s failed with status %s: %s",
                url,
                response.status_code,
                response.text[:200],
            )
            raise SourceHTTPError(response.status_code, response.text[:200])
        return response


# Registry of available sources (populated by subclass imports)
SOURCE_REGISTRY: dict[str, type[HttpQuoteSource]] = {}


def register_source(cls: type[HttpQuoteSource]) -> type[HttpQuoteSource]:
    """Decorator to register a source class in the global registry.

    :param cls: Source class to register.
    :returns: The registered class (unchanged).
    :raises ValueError: If the source has no name defined.
    """
    if not cls.name:
        raise ValueError(f"Source {cls.__name__} must define a 'name' class variable")
    SOURCE_REGISTRY[cls.name] = cls
    return cls


def get_source(
    name: str,
    *,
    symbol: str | None = None,
    weight: float | None = None,
    api_key: str | None = None,
    timeout: float | None = None,
    client: httpx.AsyncClient | None = None,
) -> HttpQuoteSource:
    """Get a source instance by name.

    :param name: Source name (e.g., "okx", "coingecko").
    :param symbol: Optional upstream symbol override.
    :param weight: Optional weight override.
    :param api_key: Optional API key.
    :param timeout: Optional per-call timeout.
    :param client: Optional HTTP client.
    :returns: Source instance.
    :raises ValueError: If the source name is unknown.
    """
    if name not in SOURCE_REGISTRY:
        available = ", ".join(sorted(SOURCE_REGISTRY.keys()))
        raise ValueError(f"Unknown source '{name}'. Available: {available}")
    return SOURCE_REGISTRY[name](
        symbol=symbol,
        weight=weight,
        api_key=api_key,
        timeout=timeout,
        client=client,
    )


def get_available_sources() -> list[str]:
    """Get list of available source names.

    :returns: Sorted list of registered source names.
    """
    return sorted(SOURCE_REGISTRY.keys())
