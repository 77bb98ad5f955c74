from hypescreener.core.config import get_settings
from hypescreener.core.database import AsyncSessionLocal
from hypescreener.core.errors import PersistenceError
from hypescreener.core.logging_config import get_logger
from hypescreener.db.models import ExternalAssetSnapshot
from hypescreener.ingestion.sources.coinmarketcap import CoinMarketCapClient
from hypescreener.services.job_runner import JobResult
from hypescreener.utils.time import utcnow

logger = get_logger("job_external_asset")

JOB_TYPE = "external_asset_sync"


async def sync_external_asset(execution_id: str, cmc: CoinMarketCapClient) -> JobResult:
    """
    Stores one price snapshot of the designated asset.
    A missing asset or API key is fatal: there is nothing to partially succeed at.
    """
    symbol = get_settings().EXTERNAL_ASSET_SYMBOL
    quote = await cmc.fetch_quote(symbol)

    async with AsyncSessionLocal() as session:
        try:
            session.add(ExternalAssetSnapshot(execution_id=execution_id, synced_at=utcnow(), **quote.model_dump()))
            await session.commit()
        except Exception as e:
            await session.rollback()
            raise PersistenceError(f"Failed to store {symbol} snapshot: {e}") from e

    logger.info("external_asset_synced", symbol=symbol, price=quote.price, market_cap=quote.market_cap)
    return JobResult(success_count=1, details={"symbol": symbol, "quote": quote.model_dump()})
