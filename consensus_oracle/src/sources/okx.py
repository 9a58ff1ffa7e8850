"""OKX source.

Endpoint: https://www.okx.com/api/v5/market/ticker?instId={SYMBOL}
Rate Limit: 20 requests/2s (no key required)
Symbol: OKX instrument id (default: "PI-USDT")
"""

from datetime import datetime, timezone

from .base import HttpQuoteSource, SourceFetchError, register_source


@register_source
class OKXSource(HttpQuoteSource):
    """Source for the OKX public market ticker.

    The ticker's "ts" field (unix milliseconds) is used as the observation time.
    """

    name = "okx"
    DEFAULT_SYMBOL = "PI-USDT"
    DEFAULT_WEIGHT = 2.0
    BASE_URL = "https://www.okx.com/api/v5"

    async def _fetch_price(self) -> tuple[float, datetime | None]:
        """Fetch the last trade price for the configured instrument."""
        response = await self._get(
            f"{self.BASE_URL}/market/ticker", params={"instId": self.symbol}
        )
        payload = response.json()

        if payload.get("code") not in (None, "0"):
            raise SourceFetchError(
                self.name, f"API error {payload.get('code')}: {payload.get('msg')}"
            )

        tickers = payload.get("data") or []
        if not tickers:
            raise SourceFetchError(self.name, f"No ticker for {self.symbol}")

        ticker = tickers[0]
        observed_at = None
        if ticker.get("ts"):
            observed_at = datetime.fromtimestamp(int(ticker["ts"]) / 1000, tz=timezone.utc)
        return float(ticker["last"]), observed_at
