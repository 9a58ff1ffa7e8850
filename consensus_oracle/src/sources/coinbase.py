"""Coinbase Exchange source.

Endpoint: https://api.exchange.coinbase.com/products/{BASE}-{QUOTE}/ticker
Rate Limit: High (no key required)
Symbol: Coinbase product id, e.g. "BTC-USD" (no default)
"""

from datetime import datetime

from .base import HttpQuoteSource, SourceFetchError, register_source


@register_source
class CoinbaseSource(HttpQuoteSource):
    """Source for the Coinbase Exchange public ticker.

    No API key required. The ticker's "time" field is used as the
    observation time when present.
    """

    name = "coinbase"
    BASE_URL = "https://api.exchange.coinbase.com"

    async def _fetch_price(self) -> tuple[float, datetime | None]:
        """Fetch the last trade price for the configured product."""
        response = await self._get(f"{self.BASE_URL}/products/{self.symbol}/ticker")
        data = response.json()

        if "price" not in data:
            raise SourceFetchError(self.name, f"No price in response: {data}")

        observed_at = None
        if data.get("time"):
            observed_at = datetime.fromisoformat(data["time"].replace("Z", "+00:00"))
        return float(data["price"]), observed_at
