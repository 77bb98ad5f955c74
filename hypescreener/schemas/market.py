"""
Normalized shapes of the upstream market payloads.
Every source client converts its raw JSON into one of these before a job
touches it, so jobs never index into third-party dicts directly.
"""
from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict


class DexPair(BaseModel):
    token_address: str = Field(..., description="Base token contract address (lowercase)")
    pair_address: Optional[str] = None
    symbol: Optional[str] = None
    name: Optional[str] = None
    price_usd: Optional[float] = None
    liquidity_usd: Optional[float] = None
    volume_24h: Optional[float] = None
    market_cap: Optional[float] = None
    fdv: Optional[float] = None
    price_change_1h: Optional[float] = None
    price_change_24h: Optional[float] = None
    websites: List[Dict[str, str]] = Field(default_factory=list)
    socials: List[Dict[str, str]] = Field(default_factory=list)
    image_url: Optional[str] = None

    @validator('token_address')
    def lowercase_address(cls, v):
        return v.lower()


class ExternalAssetQuote(BaseModel):
    symbol: str
    price: float = 0
    market_cap: float = 0
    percent_change_24h: float = 0
    fully_diluted_market_cap: float = 0
    volume_24h: float = 0
    volume_change_24h: float = 0
