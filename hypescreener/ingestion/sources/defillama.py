from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from hypescreener.core.config import get_settings
from hypescreener.core.logging_config import get_logger
from hypescreener.ingestion.sources.base import UpstreamClient
from hypescreener.services.drift_detection import detect_drift
from hypescreener.utils.numbers import to_float

logger = get_logger("source_defillama")


@dataclass
class ProtocolTvlPoint:
    protocol_name: str
    day: date
    tvl: float


def _day_from_ts(ts: Any) -> date:
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).date()


def parse_revenue_breakdown(payload: Dict[str, Any], key: str, label: str) -> List[Tuple[date, float]]:
    """
    Turns totalDataChartBreakdown ([ts, {key: {label: value}}] entries) into
    (day, revenue) pairs. A missing key or label counts as 0 for that day.
    """
    series = []
    for entry in payload.get("totalDataChartBreakdown") or []:
        try:
            ts, breakdown = entry[0], entry[1] or {}
            value = to_float((breakdown.get(key) or {}).get(label))
            series.append((_day_from_ts(ts), value if value is not None else 0.0))
        except (TypeError, ValueError, IndexError, AttributeError) as e:
            logger.warning("revenue_entry_skipped", entry=str(entry)[:200], error=str(e))
            continue
    return series


def parse_latest_tvl(payload: Dict[str, Any], slug: str, chains: Sequence[str]) -> Optional[ProtocolTvlPoint]:
    chain_tvls = payload.get("chainTvls") or {}
    for chain in chains:
        points = (chain_tvls.get(chain) or {}).get("tvl") or []
        if not points:
            continue
        last = points[-1]
        tvl = to_float(last.get("totalLiquidityUSD"))
        return ProtocolTvlPoint(
            protocol_name=payload.get("name") or slug,
            day=_day_from_ts(last["date"]),
            tvl=tvl if tvl is not None else 0.0,
        )
    return None


class DefiLlamaClient(UpstreamClient):
    source_name = "defillama"

    async def fetch_daily_revenue(self, protocol: str, key: str, label: str) -> List[Tuple[date, float]]:
        settings = get_settings()
        payload = await self.request_json("GET", f"{settings.LLAMA_BASE_URL}/summary/fees/{protocol}")
        detect_drift(payload, {"totalDataChartBreakdown"}, self.source_name)
        series = parse_revenue_breakdown(payload, key, label)
        logger.info("fetched_revenue", protocol=protocol, days=len(series))
        return series

    async def fetch_protocol_tvl(self, slug: str, chains: Sequence[str]) -> Optional[ProtocolTvlPoint]:
        settings = get_settings()
        payload = await self.request_json("GET", f"{settings.LLAMA_BASE_URL}/updatedProtocol/{slug}")
        return parse_latest_tvl(payload, slug, chains)
