"""Kraken source.

Endpoint: https://api.kraken.com/0/public/Ticker?pair={PAIR}
Rate Limit: High (no key required)
Symbol: Kraken pair name, e.g. "XBTUSD" (no default)
"""

from datetime import datetime

from .base import HttpQuoteSource, SourceFetchError, register_source


@register_source
class KrakenSource(HttpQuoteSource):
    """Source for the Kraken public ticker.

    Kraken uses non-standard asset codes (XBT for BTC) and may return the
    result under a normalized pair key, so the first result entry is used.
    """

    name = "kraken"
    BASE_URL = "https://api.kraken.com/0/public"

    async def _fetch_price(self) -> tuple[float, datetime | None]:
        """Fetch the last closed trade price for the configured pair."""
        response = await self._get(f"{self.BASE_URL}/Ticker", params={"pair": self.symbol})
        data = response.json()

        if data.get("error"):
            raise SourceFetchError(self.name, f"API error: {data['error']}")

        result = data.get("result", {})
        if not result:
            raise SourceFetchError(self.name, f"No result for {self.symbol}")

        # 'c' is the last trade closed array: [price, lot volume]
        pair_data = result.get(self.symbol) or next(iter(result.values()))
        return float(pair_data["c"][0]), None
