"""
Refreshes price/liquidity for every enabled token and records an ecosystem
aggregate for the cycle.

All DexScreener batches are fetched first (concurrently, bounded by
FETCH_CONCURRENCY); only then are metric rows, liquidity flags and the
ecosystem snapshot written, in a single transaction. A failed batch or a
token missing from the response is a per-token failure; the rest of the
cycle still lands.
"""
import asyncio
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import update
from sqlalchemy.future import select

from hypescreener.core.config import get_settings
from hypescreener.core.database import AsyncSessionLocal
from hypescreener.core.errors import PersistenceError, UpstreamFetchError
from hypescreener.core.logging_config import get_logger
from hypescreener.db.models import EcosystemMetricSnapshot, Token, TokenMetricSnapshot
from hypescreener.ingestion.liquidity import is_low_liquidity
from hypescreener.ingestion.sources.dexscreener import DexScreenerClient
from hypescreener.schemas.market import DexPair
from hypescreener.services.aggregations import compute_ecosystem_aggregate
from hypescreener.services.job_runner import JobResult
from hypescreener.utils.time import utcnow

logger = get_logger("job_token_refresh")

JOB_TYPE = "token_refresh"


def chunked(items: Sequence[str], size: int) -> List[List[str]]:
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def pick_best_pairs(pairs: Sequence[DexPair], wanted: Sequence[str]) -> Dict[str, DexPair]:
    """One pair per token: the one with the deepest USD liquidity."""
    wanted_set = set(wanted)
    best: Dict[str, DexPair] = {}
    for pair in pairs:
        if pair.token_address not in wanted_set:
            continue
        current = best.get(pair.token_address)
        if current is None or (pair.liquidity_usd or 0) > (current.liquidity_usd or 0):
            best[pair.token_address] = pair
    return best


async def fetch_all_pairs(
    dex: DexScreenerClient,
    addresses: Sequence[str],
    batch_size: int,
    concurrency: int,
) -> Tuple[Dict[str, DexPair], Dict[str, str]]:
    """Returns (best pair per address, error message per failed address)."""
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def fetch_batch(batch: List[str]) -> Tuple[List[str], List[DexPair], Optional[str]]:
        async with semaphore:
            try:
                return batch, await dex.fetch_pairs(batch), None
            except UpstreamFetchError as e:
                logger.warning("batch_fetch_failed", batch_size=len(batch), error=str(e))
                return batch, [], str(e)

    results = await asyncio.gather(*(fetch_batch(b) for b in chunked(addresses, batch_size)))

    found: Dict[str, DexPair] = {}
    failures: Dict[str, str] = {}
    for batch, pairs, error in results:
        if error is not None:
            failures.update({address: error for address in batch})
            continue
        best = pick_best_pairs(pairs, batch)
        found.update(best)
        for address in batch:
            if address not in best:
                failures[address] = "No pair data returned"
    return found, failures


async def refresh_tokens(execution_id: str, dex: DexScreenerClient) -> JobResult:
    settings = get_settings()

    async with AsyncSessionLocal() as session:
        result = await session.execute(select(Token).where(Token.enabled.is_(True)).order_by(Token.id))
        tokens = result.scalars().all()

    if not tokens:
        logger.info("no_enabled_tokens")
        return JobResult(details={"tokens": 0, "message": "No enabled tokens"})

    addresses = [t.contract_address for t in tokens]
    found, failures = await fetch_all_pairs(dex, addresses, settings.TOKEN_BATCH_SIZE, settings.FETCH_CONCURRENCY)

    now = utcnow()
    entries = []
    async with AsyncSessionLocal() as session:
        try:
            for token in tokens:
                pair = found.get(token.contract_address)
                if pair is None:
                    continue

                low = is_low_liquidity(pair.liquidity_usd, settings.LIQUIDITY_THRESHOLD_USD)
                session.add(TokenMetricSnapshot(
                    contract_address=token.contract_address,
                    price_usd=pair.price_usd,
                    liquidity_usd=pair.liquidity_usd,
                    volume_24h=pair.volume_24h,
                    market_cap=pair.market_cap,
                    fdv=pair.fdv,
                    price_change_1h=pair.price_change_1h,
                    price_change_24h=pair.price_change_24h,
                    execution_id=execution_id,
                    recorded_at=now,
                ))
                await session.execute(
                    update(Token)
                    .where(Token.contract_address == token.contract_address)
                    .values(low_liquidity=low, pair_address=pair.pair_address or token.pair_address, updated_at=now)
                )
                entries.append({
                    "market_cap": pair.market_cap,
                    "volume_24h": pair.volume_24h,
                    "liquidity_usd": pair.liquidity_usd,
                    "price_change_1h": pair.price_change_1h,
                    "price_change_24h": pair.price_change_24h,
                    "visible": not token.is_hidden and not low,
                })

            aggregate = None
            if entries:
                aggregate = compute_ecosystem_aggregate(entries)
                session.add(EcosystemMetricSnapshot(execution_id=execution_id, recorded_at=now, updated_at=now, **aggregate))

            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error("token_refresh_persist_failed", error=str(e))
            raise PersistenceError(f"Failed to store token metrics: {e}") from e

    for address, error in failures.items():
        logger.warning("token_refresh_failed", contract_address=address, error=error)

    return JobResult(
        success_count=len(entries),
        error_count=len(failures),
        error_message=f"{len(failures)} token(s) failed to refresh" if failures else None,
        details={
            "tokens": len(tokens),
            "failed_tokens": [{"contract_address": a, "error": e} for a, e in failures.items()],
            "ecosystem": aggregate,
        },
    )
