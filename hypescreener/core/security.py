"""
Shared-secret authentication for admin and sync-trigger endpoints.
Secrets are compared in constant time and every failed attempt is delayed by
AUTH_FAILURE_DELAY_SECONDS before the 401 goes out.
"""
import asyncio
import hmac
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, Query

from hypescreener.core.config import get_settings
from hypescreener.core.errors import ApiError
from hypescreener.core.logging_config import get_logger

logger = get_logger("security")


@dataclass(frozen=True)
class AdminPrincipal:
    method: str  # "cron", "debug" or "admin"


def _secret_matches(candidate: Optional[str], expected: str) -> bool:
    if not candidate or not expected:
        return False
    return hmac.compare_digest(candidate.encode(), expected.encode())


async def _reject(reason: str):
    settings = get_settings()
    logger.warning("auth_rejected", reason=reason)
    if settings.AUTH_FAILURE_DELAY_SECONDS > 0:
        await asyncio.sleep(settings.AUTH_FAILURE_DELAY_SECONDS)
    raise ApiError(401, "Unauthorized")


async def authenticate_admin(secret: Optional[str]) -> AdminPrincipal:
    """Resolves a principal from an admin secret taken from a body, header or query."""
    if _secret_matches(secret, get_settings().ADMIN_SECRET):
        return AdminPrincipal(method="admin")
    await _reject("invalid_admin_secret")


async def require_admin(
    x_debug_password: Optional[str] = Header(None),
    admin_secret: Optional[str] = Query(None),
) -> AdminPrincipal:
    return await authenticate_admin(x_debug_password or admin_secret)


async def require_cron(
    authorization: Optional[str] = Header(None),
    x_debug_password: Optional[str] = Header(None),
) -> AdminPrincipal:
    """Accepts the scheduler's bearer token or the manual debug header."""
    settings = get_settings()

    if authorization and authorization.startswith("Bearer "):
        if _secret_matches(authorization[len("Bearer "):], settings.CRON_SECRET):
            return AdminPrincipal(method="cron")

    if _secret_matches(x_debug_password, settings.ADMIN_SECRET):
        return AdminPrincipal(method="debug")

    await _reject("invalid_cron_credentials")
