"""
Request/response contracts for the admin token-curation endpoints.
Contract addresses are normalized to lowercase before they reach the DB.
"""
from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any
from datetime import datetime


class AdminRequest(BaseModel):
    admin_secret: Optional[str] = Field(None, description="Shared admin secret (or send x-debug-password)")


class TokenAddressRequest(AdminRequest):
    contract_address: str = Field(..., min_length=1)

    @validator('contract_address')
    def lowercase_address(cls, v):
        return v.strip().lower()


class TokenCreate(TokenAddressRequest):
    symbol: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    image_url: Optional[str] = None

    @validator('symbol')
    def strip_symbol(cls, v):
        return v.strip()


class ToggleTokenRequest(TokenAddressRequest):
    enabled: bool


class ToggleVisibilityRequest(TokenAddressRequest):
    is_hidden: bool


class LiquidityActionRequest(AdminRequest):
    """`restore` needs a contract_address; `recheck` without one re-evaluates every token."""
    action: str
    contract_address: Optional[str] = None

    @validator('contract_address')
    def lowercase_address(cls, v):
        return v.strip().lower() if v else None


class TokenResponse(BaseModel):
    id: int
    contract_address: str
    symbol: str
    name: str
    enabled: bool
    is_hidden: bool
    low_liquidity: bool
    image_url: Optional[str] = None
    websites: Optional[List[Dict[str, Any]]] = None
    socials: Optional[List[Dict[str, Any]]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
