"""CoinGecko source.

Endpoint: https://api.coingecko.com/api/v3/simple/price?ids={id}&vs_currencies=usd
Rate Limit: 30-50 calls/min (free), higher with API key
Symbol: CoinGecko coin id (default: "pi-network")
"""

from datetime import datetime, timezone

from .base import HttpQuoteSource, SourceFetchError, register_source


@register_source
class CoinGeckoSource(HttpQuoteSource):
    """Source for the CoinGecko simple price API.

    API tiers:
        - Free: api.coingecko.com (no key)
        - Demo: api.coingecko.com + x-cg-demo-api-key header
        - Pro: pro-api.coingecko.com + x-cg-pro-api-key header

    To use a demo key, prefix with "demo:": API_KEY_COINGECKO=demo:CG-xxxxx
    Pro keys need no prefix: API_KEY_COINGECKO=xxxxx
    """

    name = "coingecko"
    DEFAULT_SYMBOL = "pi-network"
    DEFAULT_WEIGHT = 1.5
    BASE_URL_FREE = "https://api.coingecko.com/api/v3"
    BASE_URL_PRO = "https://pro-api.coingecko.com/api/v3"

    def __init__(self, *args, api_key: str | None = None, **kwargs):
        """Initialize with optional demo: prefix handling."""
        self._is_demo = False
        if api_key and api_key.lower().startswith("demo:"):
            self._is_demo = True
            api_key = api_key[5:]
        super().__init__(*args, api_key=api_key, **kwargs)

    @property
    def base_url(self) -> str:
        """Return appropriate base URL based on API key type."""
        if not self.has_api_key:
            return self.BASE_URL_FREE
        return self.BASE_URL_FREE if self._is_demo else self.BASE_URL_PRO

    @property
    def api_header(self) -> tuple[str, str] | None:
        """Return appropriate header name and value for API key."""
        if not self.api_key:
            return None
        header_name = "x-cg-demo-api-key" if self._is_demo else "x-cg-pro-api-key"
        return (header_name, self.api_key)

    async def _fetch_price(self) -> tuple[float, datetime | None]:
        """Fetch the USD price and last update time for the configured coin id."""
        headers = {}
        if self.api_header:
            header_name, header_value = self.api_header
            headers[header_name] = header_value

        response = await self._get(
            f"{self.base_url}/simple/price",
            params={
                "ids": self.symbol,
                "vs_currencies": "usd",
                "include_last_updated_at": "true",
            },
            headers=headers or None,
        )
        data = response.json().get(self.symbol)
        if not data or "usd" not in data:
            raise SourceFetchError(self.name, f"Coin {self.symbol} not in response")

        observed_at = None
        if data.get("last_updated_at"):
            observed_at = datetime.fromtimestamp(
                int(data["last_updated_at"]), tz=timezone.utc
            )
        return float(data["usd"]), observed_at
