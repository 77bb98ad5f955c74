from typing import Any, Dict, List, Sequence

from hypescreener.core.config import get_settings
from hypescreener.core.logging_config import get_logger
from hypescreener.ingestion.sources.base import UpstreamClient
from hypescreener.schemas.market import DexPair
from hypescreener.services.drift_detection import detect_drift
from hypescreener.utils.numbers import to_float

logger = get_logger("source_dexscreener")

PAIR_KEYS = {"baseToken", "priceUsd", "liquidity", "volume"}


def _websites(info: Dict[str, Any]) -> List[Dict[str, str]]:
    sites = []
    for site in info.get("websites") or []:
        if isinstance(site, dict) and site.get("url"):
            sites.append({"label": site.get("label") or "Website", "url": site["url"]})
    return sites


def _socials(info: Dict[str, Any]) -> List[Dict[str, str]]:
    socials = []
    for social in info.get("socials") or []:
        if isinstance(social, dict) and social.get("url"):
            socials.append({"platform": social.get("type") or "unknown", "url": social["url"]})
    return socials


def parse_pair(raw: Dict[str, Any]) -> DexPair:
    base = raw.get("baseToken") or {}
    info = raw.get("info") or {}
    price_change = raw.get("priceChange") or {}

    return DexPair(
        token_address=base["address"],
        pair_address=raw.get("pairAddress"),
        symbol=base.get("symbol"),
        name=base.get("name"),
        price_usd=to_float(raw.get("priceUsd")),
        liquidity_usd=to_float((raw.get("liquidity") or {}).get("usd")),
        volume_24h=to_float((raw.get("volume") or {}).get("h24")),
        market_cap=to_float(raw.get("marketCap")),
        fdv=to_float(raw.get("fdv")),
        price_change_1h=to_float(price_change.get("h1")),
        price_change_24h=to_float(price_change.get("h24")),
        websites=_websites(info),
        socials=_socials(info),
        image_url=info.get("imageUrl"),
    )


class DexScreenerClient(UpstreamClient):
    """Pair data for a batch of token addresses on one chain."""

    source_name = "dexscreener"

    async def fetch_pairs(self, addresses: Sequence[str]) -> List[DexPair]:
        if not addresses:
            return []

        settings = get_settings()
        url = f"{settings.DEXSCREENER_BASE_URL}/tokens/v1/{settings.DEXSCREENER_CHAIN}/{','.join(addresses)}"
        payload = await self.request_json("GET", url)

        # Older API versions wrapped the list as {"pairs": [...]}
        if isinstance(payload, dict):
            payload = payload.get("pairs") or []

        pairs = []
        for index, raw in enumerate(payload):
            if index == 0:
                detect_drift(raw, PAIR_KEYS, self.source_name)
            try:
                pairs.append(parse_pair(raw))
            except Exception as e:
                logger.warning("pair_parse_error", source=self.source_name, pair=raw.get("pairAddress") if isinstance(raw, dict) else None, error=str(e))
                continue

        logger.info("fetched_pairs", source=self.source_name, requested=len(addresses), pairs=len(pairs))
        return pairs
