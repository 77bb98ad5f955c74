"""
Admin endpoints for curating the tracked token list.
POST bodies carry `admin_secret` (the x-debug-password header works too);
GET endpoints take the header or an `admin_secret` query parameter.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from hypescreener.core.config import get_settings
from hypescreener.core.database import get_db
from hypescreener.core.errors import ApiError
from hypescreener.core.logging_config import get_logger
from hypescreener.core.security import AdminPrincipal, authenticate_admin, require_admin
from hypescreener.db.models import Token, TokenMetricSnapshot
from hypescreener.ingestion.liquidity import is_low_liquidity
from hypescreener.schemas.token import (
    AdminRequest,
    LiquidityActionRequest,
    ToggleTokenRequest,
    ToggleVisibilityRequest,
    TokenAddressRequest,
    TokenCreate,
    TokenResponse,
)
from hypescreener.utils.time import utcnow

logger = get_logger("api_admin")

router = APIRouter(prefix="/api")


async def _authorize(payload: AdminRequest, header_secret: Optional[str]) -> AdminPrincipal:
    return await authenticate_admin(payload.admin_secret or header_secret)


async def _get_token(db: AsyncSession, contract_address: str) -> Token:
    result = await db.execute(select(Token).where(Token.contract_address == contract_address))
    token = result.scalars().first()
    if token is None:
        raise ApiError(404, f"Token {contract_address} not found")
    return token


def _token_json(token: Token):
    return TokenResponse.model_validate(token).model_dump(mode="json")


@router.post("/admin/add-token", status_code=201)
async def add_token(
    payload: TokenCreate,
    x_debug_password: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    await _authorize(payload, x_debug_password)

    existing = await db.execute(select(Token.id).where(Token.contract_address == payload.contract_address))
    if existing.scalar() is not None:
        raise ApiError(409, f"Token {payload.contract_address} already exists")

    now = utcnow()
    token = Token(
        contract_address=payload.contract_address,
        symbol=payload.symbol,
        name=payload.name,
        image_url=payload.image_url,
        manual_image=bool(payload.image_url),
        websites=[],
        socials=[],
        created_at=now,
        updated_at=now,
    )
    db.add(token)
    await db.commit()
    await db.refresh(token)

    logger.info("token_added", contract_address=token.contract_address, symbol=token.symbol)
    return {
        "success": True,
        "message": f"Token {token.symbol} added. Price and liquidity will appear after the next refresh cycle.",
        "token": _token_json(token),
    }


@router.post("/admin/delete-token")
async def delete_token(
    payload: TokenAddressRequest,
    x_debug_password: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    await _authorize(payload, x_debug_password)
    token = await _get_token(db, payload.contract_address)

    metrics_deleted = True
    try:
        await db.execute(delete(TokenMetricSnapshot).where(TokenMetricSnapshot.contract_address == token.contract_address))
    except Exception as e:
        # The token row still goes; its metric history cascades at the DB level
        metrics_deleted = False
        logger.error("token_metrics_delete_failed", contract_address=token.contract_address, error=str(e))
        await db.rollback()
        token = await _get_token(db, payload.contract_address)

    await db.delete(token)
    await db.commit()

    logger.info("token_deleted", contract_address=payload.contract_address)
    return {
        "success": True,
        "message": f"Token {payload.contract_address} deleted",
        "metrics_deleted": metrics_deleted,
    }


@router.post("/admin/toggle-token")
async def toggle_token(
    payload: ToggleTokenRequest,
    x_debug_password: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    await _authorize(payload, x_debug_password)
    token = await _get_token(db, payload.contract_address)

    token.enabled = payload.enabled
    token.updated_at = utcnow()
    await db.commit()

    logger.info("token_toggled", contract_address=token.contract_address, enabled=token.enabled)
    return {
        "success": True,
        "message": f"Token {token.symbol} {'enabled' if token.enabled else 'disabled'}",
        "token": _token_json(token),
    }


@router.post("/admin/toggle-token-visibility")
async def toggle_token_visibility(
    payload: ToggleVisibilityRequest,
    x_debug_password: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    await _authorize(payload, x_debug_password)
    token = await _get_token(db, payload.contract_address)

    token.is_hidden = payload.is_hidden
    token.updated_at = utcnow()
    await db.commit()

    logger.info("token_visibility_changed", contract_address=token.contract_address, is_hidden=token.is_hidden)
    return {
        "success": True,
        "message": f"Token {token.symbol} is now {'hidden' if token.is_hidden else 'visible'}",
        "token": _token_json(token),
    }


async def _latest_liquidity(db: AsyncSession, contract_address: str) -> Optional[float]:
    result = await db.execute(
        select(TokenMetricSnapshot.liquidity_usd)
        .where(TokenMetricSnapshot.contract_address == contract_address)
        .order_by(TokenMetricSnapshot.recorded_at.desc(), TokenMetricSnapshot.id.desc())
        .limit(1)
    )
    return result.scalar()


async def _recheck_liquidity(db: AsyncSession, contract_address: Optional[str]):
    """Re-runs the low-liquidity classification against each token's latest stored metric."""
    if contract_address:
        tokens = [await _get_token(db, contract_address)]
    else:
        result = await db.execute(select(Token).order_by(Token.symbol))
        tokens = result.scalars().all()

    threshold = get_settings().LIQUIDITY_THRESHOLD_USD
    now = utcnow()
    changed = 0
    for token in tokens:
        # No metric yet counts as zero liquidity
        low = is_low_liquidity(await _latest_liquidity(db, token.contract_address), threshold)
        if token.low_liquidity != low:
            token.low_liquidity = low
            token.updated_at = now
            changed += 1
    await db.commit()

    low_count = sum(1 for t in tokens if t.low_liquidity)
    logger.info("token_liquidity_rechecked", processed=len(tokens), changed=changed, low_liquidity=low_count)
    return {
        "success": True,
        "message": "Liquidity check completed",
        "threshold_usd": threshold,
        "processed": len(tokens),
        "changed": changed,
        "low_liquidity": low_count,
        "sufficient_liquidity": len(tokens) - low_count,
    }


@router.post("/admin/liquidity")
async def liquidity_action(
    payload: LiquidityActionRequest,
    x_debug_password: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    """
    `restore` clears one token's low-liquidity flag until the next refresh re-evaluates it.
    `recheck` re-evaluates the flag now, for one token or all of them.
    """
    await _authorize(payload, x_debug_password)
    if payload.action == "recheck":
        return await _recheck_liquidity(db, payload.contract_address)
    if payload.action != "restore":
        raise ApiError(400, f"Unknown action '{payload.action}'")
    if not payload.contract_address:
        raise ApiError(400, "contract_address is required for restore")

    token = await _get_token(db, payload.contract_address)
    token.low_liquidity = False
    token.updated_at = utcnow()
    await db.commit()

    logger.info("token_liquidity_restored", contract_address=token.contract_address)
    return {"success": True, "message": f"Token {token.symbol} restored", "token": _token_json(token)}


@router.get("/admin/list-tokens")
async def list_tokens(
    principal: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(Token).order_by(Token.created_at.desc(), Token.id.desc()))
    tokens = result.scalars().all()
    return {"success": True, "count": len(tokens), "tokens": [_token_json(t) for t in tokens]}


@router.get("/admin/liquidity-stats")
async def liquidity_stats(
    principal: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Token.enabled, Token.low_liquidity, Token.is_hidden, func.count(Token.id))
        .group_by(Token.enabled, Token.low_liquidity, Token.is_hidden)
    )
    stats = {"total": 0, "active": 0, "low_liquidity": 0, "hidden": 0, "disabled": 0}
    for enabled, low, hidden, count in result.all():
        stats["total"] += count
        if not enabled:
            stats["disabled"] += count
            continue
        if low:
            stats["low_liquidity"] += count
        else:
            stats["active"] += count
        if hidden:
            stats["hidden"] += count

    return {"success": True, "threshold_usd": get_settings().LIQUIDITY_THRESHOLD_USD, **stats}


@router.post("/debug-auth")
async def debug_auth(payload: AdminRequest, x_debug_password: Optional[str] = Header(None)):
    principal = await _authorize(payload, x_debug_password)
    return {"success": True, "authenticated": True, "method": principal.method}
