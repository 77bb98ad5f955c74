from fastapi import Request

from hypescreener.core.errors import ApiError
from hypescreener.core.rate_limit import FixedWindowRateLimiter
from hypescreener.ingestion.sources.coinmarketcap import CoinMarketCapClient
from hypescreener.ingestion.sources.defillama import DefiLlamaClient
from hypescreener.ingestion.sources.dexscreener import DexScreenerClient
from hypescreener.ingestion.sources.dune import DuneClient
from hypescreener.services.job_runner import JobGuard


async def get_dex_client():
    client = DexScreenerClient()
    try:
        yield client
    finally:
        await client.aclose()


async def get_cmc_client():
    client = CoinMarketCapClient()
    try:
        yield client
    finally:
        await client.aclose()


async def get_dune_client():
    client = DuneClient()
    try:
        yield client
    finally:
        await client.aclose()


async def get_llama_client():
    client = DefiLlamaClient()
    try:
        yield client
    finally:
        await client.aclose()


def get_job_guard(request: Request) -> JobGuard:
    return request.app.state.job_guard


async def enforce_rate_limit(request: Request):
    limiter: FixedWindowRateLimiter = request.app.state.rate_limiter
    caller = request.client.host if request.client else "unknown"
    if not limiter.check(f"{caller}:{request.url.path}"):
        raise ApiError(429, "Too many requests, try again later")
