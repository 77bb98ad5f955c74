from typing import Any, Dict

from hypescreener.core.config import get_settings
from hypescreener.core.errors import AssetNotFoundError, ConfigurationError
from hypescreener.core.logging_config import get_logger
from hypescreener.ingestion.sources.base import UpstreamClient
from hypescreener.schemas.market import ExternalAssetQuote
from hypescreener.utils.numbers import round_half_up, to_float

logger = get_logger("source_coinmarketcap")


def parse_quote(payload: Dict[str, Any], symbol: str) -> ExternalAssetQuote:
    """
    Pulls the USD quote for `symbol` out of a quotes/latest response.
    Optional numbers default to 0; dollar amounts are rounded to whole dollars.
    """
    entry = (payload.get("data") or {}).get(symbol)
    if isinstance(entry, list):
        entry = entry[0] if entry else None
    if not entry:
        raise AssetNotFoundError("coinmarketcap", f"{symbol} data not found")

    usd = (entry.get("quote") or {}).get("USD") or {}

    def number(key: str) -> float:
        value = to_float(usd.get(key))
        return value if value is not None else 0.0

    return ExternalAssetQuote(
        symbol=symbol,
        price=number("price"),
        market_cap=round_half_up(number("market_cap")),
        percent_change_24h=number("percent_change_24h"),
        fully_diluted_market_cap=round_half_up(number("fully_diluted_market_cap")),
        volume_24h=round_half_up(number("volume_24h")),
        volume_change_24h=number("volume_change_24h"),
    )


class CoinMarketCapClient(UpstreamClient):
    source_name = "coinmarketcap"

    async def fetch_quote(self, symbol: str) -> ExternalAssetQuote:
        settings = get_settings()
        if not settings.CMC_PRO_API_KEY:
            raise ConfigurationError("CMC_PRO_API_KEY is not configured")

        payload = await self.request_json(
            "GET",
            f"{settings.CMC_BASE_URL}/v1/cryptocurrency/quotes/latest",
            headers={"X-CMC_PRO_API_KEY": settings.CMC_PRO_API_KEY, "Accept": "application/json"},
            params={"symbol": symbol},
        )
        quote = parse_quote(payload, symbol)
        logger.info("fetched_quote", source=self.source_name, symbol=symbol, price=quote.price)
        return quote
