"""Bitget source.

Endpoint: https://api.bitget.com/api/spot/v1/market/ticker?symbol={SYMBOL}
Rate Limit: 20 requests/s (no key required)
Symbol: Bitget spot symbol (default: "PIUSDT_SPBL")
"""

from datetime import datetime

from .base import HttpQuoteSource, SourceFetchError, register_source


@register_source
class BitgetSource(HttpQuoteSource):
    """Source for the Bitget spot ticker.

    Bitget wraps every response in {"code": "00000", "msg": ..., "data": ...};
    any other code is an upstream error.
    """

    name = "bitget"
    DEFAULT_SYMBOL = "PIUSDT_SPBL"
    DEFAULT_WEIGHT = 2.0
    BASE_URL = "https://api.bitget.com/api/spot/v1"
    SUCCESS_CODE = "00000"

    async def _fetch_price(self) -> tuple[float, datetime | None]:
        """Fetch the close price for the configured symbol."""
        response = await self._get(
            f"{self.BASE_URL}/market/ticker", params={"symbol": self.symbol}
        )
        payload = response.json()

        if payload.get("code") != self.SUCCESS_CODE or not payload.get("data"):
            raise SourceFetchError(
                self.name, f"Invalid response: {payload.get('msg') or payload}"
            )

        return float(payload["data"]["close"]), None
