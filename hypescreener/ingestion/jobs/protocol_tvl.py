import asyncio
from typing import List

from hypescreener.core.config import get_settings
from hypescreener.core.database import AsyncSessionLocal
from hypescreener.core.errors import PersistenceError, UpstreamFetchError
from hypescreener.core.logging_config import get_logger
from hypescreener.db.models import ProtocolTvlSnapshot
from hypescreener.db.upsert import upsert_rows
from hypescreener.ingestion.sources.defillama import DefiLlamaClient, ProtocolTvlPoint
from hypescreener.services.job_runner import JobResult
from hypescreener.utils.time import utcnow

logger = get_logger("job_protocol_tvl")

JOB_TYPE = "protocol_tvl_sync"


async def sync_protocol_tvl(execution_id: str, llama: DefiLlamaClient) -> JobResult:
    """
    Fetches the latest TVL point of every configured protocol and stores one
    row per protocol for the most recent day seen, with that day's total.
    """
    settings = get_settings()
    slugs = settings.TVL_PROTOCOL_SLUGS
    semaphore = asyncio.Semaphore(max(1, settings.FETCH_CONCURRENCY))

    async def fetch(slug: str):
        async with semaphore:
            try:
                return slug, await llama.fetch_protocol_tvl(slug, settings.TVL_CHAINS), None
            except UpstreamFetchError as e:
                return slug, None, str(e)

    results = await asyncio.gather(*(fetch(slug) for slug in slugs))

    points: List[ProtocolTvlPoint] = []
    failures = {}
    for slug, point, error in results:
        if error is not None:
            failures[slug] = error
        elif point is None:
            failures[slug] = "No TVL on configured chains"
        else:
            points.append(point)

    for slug, error in failures.items():
        logger.warning("protocol_tvl_failed", slug=slug, error=error)

    if not points:
        return JobResult(error_count=len(failures), error_message="No protocol TVL data fetched", details={"failed": failures})

    latest_day = max(p.day for p in points)
    total = sum(p.tvl for p in points)
    now = utcnow()
    rows = [
        {
            "day": latest_day,
            "protocol_name": p.protocol_name,
            "daily_tvl": p.tvl,
            "total_daily_tvl": total,
            "query_id": None,
            "execution_id": execution_id,
            "created_at": now,
            "updated_at": now,
        }
        for p in points
    ]

    async with AsyncSessionLocal() as session:
        try:
            written = await upsert_rows(
                session, ProtocolTvlSnapshot, rows,
                conflict_columns=["day", "protocol_name"],
                update_columns=["daily_tvl", "total_daily_tvl", "execution_id", "updated_at"],
            )
            await session.commit()
        except Exception as e:
            await session.rollback()
            raise PersistenceError(f"Failed to upsert protocol TVL: {e}") from e

    logger.info("protocol_tvl_synced", day=latest_day.isoformat(), protocols=written, total_tvl=total)
    return JobResult(
        success_count=written,
        error_count=len(failures),
        error_message=f"{len(failures)} protocol(s) failed" if failures else None,
        details={"day": latest_day.isoformat(), "total_tvl": total, "protocols": written, "failed": failures},
    )
