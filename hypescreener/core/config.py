from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import List


class Settings(BaseSettings):
    PROJECT_NAME: str = "hypescreener"
    DATABASE_URL: str
    DEBUG: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Shared secrets
    ADMIN_SECRET: str = ""
    CRON_SECRET: str = ""
    AUTH_FAILURE_DELAY_SECONDS: float = 1.0

    # Upstream APIs
    DEXSCREENER_BASE_URL: str = "https://api.dexscreener.com"
    DEXSCREENER_CHAIN: str = "hyperevm"
    CMC_BASE_URL: str = "https://pro-api.coinmarketcap.com"
    CMC_PRO_API_KEY: str = ""
    DUNE_BASE_URL: str = "https://api.dune.com/api/v1"
    DUNE_API_KEY: str = ""
    DUNE_PERFORMANCE: str = "medium"
    LLAMA_BASE_URL: str = "https://api.llama.fi"
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Token refresh
    LIQUIDITY_THRESHOLD_USD: float = 10000.0
    TOKEN_BATCH_SIZE: int = 30
    SOCIAL_BATCH_SIZE: int = 10
    FETCH_CONCURRENCY: int = 5

    # Sync trigger rate limiting
    SYNC_RATE_LIMIT: int = 10
    SYNC_RATE_WINDOW_SECONDS: float = 60.0

    # External asset
    EXTERNAL_ASSET_SYMBOL: str = "HYPE"

    # Query executions
    STALE_EXECUTION_HOURS: int = 6
    EXECUTION_LOOKBACK_HOURS: int = 48
    RECONCILE_BATCH_LIMIT: int = 10

    # DeFiLlama
    REVENUE_PROTOCOL: str = "Hyperliquid"
    REVENUE_BREAKDOWN_KEY: str = "hyperliquid"
    REVENUE_BREAKDOWN_LABEL: str = "Hyperliquid Spot Orderbook"
    TVL_CHAINS: List[str] = ["Hyperliquid L1", "Hyperliquid"]
    TVL_PROTOCOL_SLUGS: List[str] = [
        "hypurrfi",
        "hyperyield",
        "looped-hype",
        "kittenswap-finance",
        "growihf",
        "sentiment",
        "hyperpie",
        "hyperlend",
        "keiko-finance",
        "felix",
        "valantis",
        "laminar",
        "upshift",
        "morpho",
        "hyperswap",
    ]

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        extra="ignore"
    )


@lru_cache()
def get_settings():
    return Settings()
