from sqlalchemy.future import select

from hypescreener.core.config import get_settings
from hypescreener.core.database import AsyncSessionLocal
from hypescreener.core.errors import PersistenceError
from hypescreener.core.logging_config import get_logger
from hypescreener.db.models import Token
from hypescreener.ingestion.jobs.token_refresh import fetch_all_pairs
from hypescreener.ingestion.sources.dexscreener import DexScreenerClient
from hypescreener.services.job_runner import JobResult
from hypescreener.utils.time import utcnow

logger = get_logger("job_token_social")

JOB_TYPE = "token_social_sync"


async def sync_token_socials(execution_id: str, dex: DexScreenerClient) -> JobResult:
    """
    Overwrites websites, socials and image_url for every enabled token.
    Price and liquidity fields are left alone; tokens with a manually set
    image keep it.
    """
    settings = get_settings()

    async with AsyncSessionLocal() as session:
        result = await session.execute(select(Token).where(Token.enabled.is_(True)).order_by(Token.id))
        tokens = result.scalars().all()

        if not tokens:
            return JobResult(details={"processed": 0, "changed": 0, "failed": 0})

        found, failures = await fetch_all_pairs(
            dex, [t.contract_address for t in tokens], settings.SOCIAL_BATCH_SIZE, settings.FETCH_CONCURRENCY
        )

        changed = 0
        now = utcnow()
        try:
            for token in tokens:
                pair = found.get(token.contract_address)
                if pair is None:
                    continue

                new_image = token.image_url if token.manual_image else (pair.image_url or token.image_url)
                if (token.websites or []) != pair.websites or (token.socials or []) != pair.socials or token.image_url != new_image:
                    changed += 1

                token.websites = pair.websites
                token.socials = pair.socials
                token.image_url = new_image
                token.updated_at = now

            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error("social_sync_persist_failed", error=str(e))
            raise PersistenceError(f"Failed to store token socials: {e}") from e

    for address, error in failures.items():
        logger.warning("social_sync_token_failed", contract_address=address, error=error)

    processed = len(tokens) - len(failures)
    logger.info("social_sync_done", processed=processed, changed=changed, failed=len(failures))
    return JobResult(
        success_count=processed,
        error_count=len(failures),
        error_message=f"{len(failures)} token(s) failed social sync" if failures else None,
        details={
            "processed": processed,
            "changed": changed,
            "failed": len(failures),
            "failed_tokens": sorted(failures),
        },
    )
