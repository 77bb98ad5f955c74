import os

# Settings are read once and cached, so the environment must be in place before any app import
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_hypescreener.db")
os.environ.setdefault("ADMIN_SECRET", "test-admin-secret")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("CMC_PRO_API_KEY", "test-cmc-key")
os.environ.setdefault("DUNE_API_KEY", "test-dune-key")
os.environ.setdefault("AUTH_FAILURE_DELAY_SECONDS", "0")
os.environ.setdefault("LOG_JSON", "false")

import httpx
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, patch
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from tenacity import wait_none

from hypescreener.core import database
# Explicit import to ensure metadata is populated
from hypescreener.db.models import Base
from hypescreener.ingestion.sources.base import UpstreamClient
from hypescreener.ingestion.sources.coinmarketcap import CoinMarketCapClient
from hypescreener.ingestion.sources.defillama import DefiLlamaClient
from hypescreener.ingestion.sources.dexscreener import DexScreenerClient
from hypescreener.ingestion.sources.dune import DuneClient

ADMIN_SECRET = os.environ["ADMIN_SECRET"]
CRON_SECRET = os.environ["CRON_SECRET"]


@pytest.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(database.settings.DATABASE_URL, echo=False)
    yield engine
    await engine.dispose()


# Keep the real init_db out of the app startup during tests
@pytest.fixture(scope="function", autouse=True)
async def mock_startup_handlers():
    with patch("hypescreener.main.init_db", new_callable=AsyncMock) as mock_init:
        yield mock_init


@pytest.fixture(scope="function", autouse=True)
async def setup_test_db(db_engine):
    original_engine = database.db_manager._engine
    original_maker = database.db_manager._session_maker

    database.db_manager._engine = db_engine
    database.db_manager._session_maker = sessionmaker(
        bind=db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    database.db_manager._engine = original_engine
    database.db_manager._session_maker = original_maker


# Upstream retries keep their attempt count but skip the backoff sleeps
@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(UpstreamClient._send.retry, "wait", wait_none())


@pytest.fixture
def settings():
    return database.settings


def mock_http(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def make_dex():
    return lambda handler: DexScreenerClient(mock_http(handler))


@pytest.fixture
def make_cmc():
    return lambda handler: CoinMarketCapClient(mock_http(handler))


@pytest.fixture
def make_dune():
    return lambda handler: DuneClient(mock_http(handler))


@pytest.fixture
def make_llama():
    return lambda handler: DefiLlamaClient(mock_http(handler))


@pytest_asyncio.fixture
async def async_client():
    from hypescreener.main import app

    app.state.rate_limiter.reset()
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def dex_pair(address, liquidity=50000.0, price="1.25", market_cap=1_000_000.0, volume=20000.0, **info):
    return {
        "chainId": "hyperevm",
        "pairAddress": f"pair-{address[-6:]}",
        "baseToken": {"address": address, "symbol": "TKN", "name": "Token"},
        "priceUsd": price,
        "liquidity": {"usd": liquidity},
        "volume": {"h24": volume},
        "marketCap": market_cap,
        "fdv": market_cap,
        "priceChange": {"h1": 1.0, "h24": 5.0},
        "info": info,
    }


def token_address(i: int) -> str:
    return f"0x{i:040x}"


def requested_addresses(request: httpx.Request):
    return request.url.path.rsplit("/", 1)[-1].split(",")
