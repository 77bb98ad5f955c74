"""
Registry of analytics-engine queries this service knows how to store.
Each registered query id maps to a row handler that upserts the result rows
into its table inside the caller's session (the caller owns the commit).
"""
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from hypescreener.core.logging_config import get_logger
from hypescreener.db.models import ProtocolTvlSnapshot, RevenueSnapshot
from hypescreener.db.upsert import upsert_rows
from hypescreener.utils.numbers import to_float
from hypescreener.utils.time import utcnow

logger = get_logger("queries")

QUERY_PROTOCOL_TVL = 5184111
QUERY_REVENUE = 5184711
QUERY_CHAIN_STATS = 5184581

# Not a real query: marks rows written by the DeFiLlama revenue sync
DEFILLAMA_REVENUE_SOURCE = 999999

DEPRECATED_QUERIES = {
    QUERY_CHAIN_STATS: "Chain stats query is deprecated; chain stats are delivered by webhook",
}

RowHandler = Callable[[AsyncSession, List[Dict[str, Any]], str, int], Awaitable[int]]


def parse_day(value: Any) -> Optional[date]:
    # Engine dates look like "2024-05-01 00:00:00.000 UTC"
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


async def store_revenue_rows(session: AsyncSession, rows: List[Dict[str, Any]], execution_id: str, query_id: int) -> int:
    now = utcnow()
    records = {}
    for row in rows:
        day = parse_day(row.get("day"))
        if day is None:
            logger.warning("revenue_row_skipped", execution_id=execution_id, reason="missing day")
            continue
        records[day] = {
            "day": day,
            "revenue": to_float(row.get("revenue")) or 0.0,
            "annualized_revenue": to_float(row.get("annualized_revenue")),
            "query_id": query_id,
            "execution_id": execution_id,
            "created_at": now,
            "updated_at": now,
        }
    return await upsert_rows(
        session, RevenueSnapshot, list(records.values()),
        conflict_columns=["day"],
        update_columns=["revenue", "annualized_revenue", "query_id", "execution_id", "updated_at"],
    )


async def store_protocol_tvl_rows(session: AsyncSession, rows: List[Dict[str, Any]], execution_id: str, query_id: int) -> int:
    now = utcnow()
    records = {}
    for row in rows:
        day = parse_day(row.get("day"))
        name = row.get("protocol_name")
        if day is None or not name:
            logger.warning("protocol_row_skipped", execution_id=execution_id, reason="missing day or protocol_name")
            continue
        records[(day, name)] = {
            "day": day,
            "protocol_name": name,
            "daily_tvl": to_float(row.get("daily_tvl")) or 0.0,
            "total_daily_tvl": to_float(row.get("total_daily_tvl")),
            "query_id": query_id,
            "execution_id": execution_id,
            "created_at": now,
            "updated_at": now,
        }
    return await upsert_rows(
        session, ProtocolTvlSnapshot, list(records.values()),
        conflict_columns=["day", "protocol_name"],
        update_columns=["daily_tvl", "total_daily_tvl", "query_id", "execution_id", "updated_at"],
    )


ROW_HANDLERS: Dict[int, RowHandler] = {
    QUERY_REVENUE: store_revenue_rows,
    QUERY_PROTOCOL_TVL: store_protocol_tvl_rows,
}


def get_row_handler(query_id: int) -> Optional[RowHandler]:
    return ROW_HANDLERS.get(query_id)


def source_label(query_id: Optional[int]) -> Optional[str]:
    if query_id is None:
        return None
    if query_id == DEFILLAMA_REVENUE_SOURCE:
        return "defillama"
    return f"dune:{query_id}"
