from hypescreener.core.config import get_settings
from hypescreener.core.database import AsyncSessionLocal
from hypescreener.core.errors import PersistenceError
from hypescreener.core.logging_config import get_logger
from hypescreener.db.models import RevenueSnapshot
from hypescreener.db.upsert import upsert_rows
from hypescreener.ingestion.queries import DEFILLAMA_REVENUE_SOURCE
from hypescreener.ingestion.revenue import annualize
from hypescreener.ingestion.sources.defillama import DefiLlamaClient
from hypescreener.services.job_runner import JobResult
from hypescreener.utils.time import utcnow

logger = get_logger("job_revenue_sync")

JOB_TYPE = "revenue_sync"


async def sync_revenue(execution_id: str, llama: DefiLlamaClient) -> JobResult:
    """Pulls the full daily revenue history and upserts every day with its 7-day annualized figure."""
    settings = get_settings()
    series = await llama.fetch_daily_revenue(
        settings.REVENUE_PROTOCOL, settings.REVENUE_BREAKDOWN_KEY, settings.REVENUE_BREAKDOWN_LABEL
    )
    if not series:
        return JobResult(fatal=True, error_message="No revenue data returned")

    # One row per UTC day, last value wins
    series = list(dict(series).items())

    now = utcnow()
    rows = [
        {
            "day": day,
            "revenue": revenue,
            "annualized_revenue": annualized,
            "query_id": DEFILLAMA_REVENUE_SOURCE,
            "execution_id": execution_id,
            "created_at": now,
            "updated_at": now,
        }
        for day, revenue, annualized in annualize(series)
    ]

    async with AsyncSessionLocal() as session:
        try:
            written = await upsert_rows(
                session, RevenueSnapshot, rows,
                conflict_columns=["day"],
                update_columns=["revenue", "annualized_revenue", "query_id", "execution_id", "updated_at"],
            )
            await session.commit()
        except Exception as e:
            await session.rollback()
            raise PersistenceError(f"Failed to upsert revenue: {e}") from e

    latest = rows[-1]
    logger.info("revenue_synced", days=written, latest_day=latest["day"].isoformat(), latest_revenue=latest["revenue"])
    return JobResult(
        success_count=written,
        details={
            "days": written,
            "latest_day": latest["day"].isoformat(),
            "latest_revenue": latest["revenue"],
            "annualized_revenue": latest["annualized_revenue"],
        },
    )
