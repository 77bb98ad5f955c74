"""
Shared HTTP plumbing for the upstream API clients.
Transport errors, 429s and 5xx responses are retried with exponential backoff;
anything else fails fast. Callers only ever see UpstreamFetchError.
"""
from typing import Any, Dict, Optional

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from hypescreener.core.config import get_settings
from hypescreener.core.errors import UpstreamFetchError
from hypescreener.core.logging_config import get_logger

logger = get_logger("upstream")


def _should_retry(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


class UpstreamClient:
    source_name = "upstream"

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=get_settings().HTTP_TIMEOUT_SECONDS)

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    @retry(
        retry=retry_if_exception(_should_retry),
        stop=stop_after_attempt(4),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        response = await self._client.request(method, url, **kwargs)
        response.raise_for_status()
        return response

    async def request_json(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
    ) -> Any:
        try:
            response = await self._send(method, url, headers=headers, params=params, json=json)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("upstream_http_error", source=self.source_name, url=url, status=status)
            raise UpstreamFetchError(self.source_name, f"HTTP {status} from {url}", status_code=status) from e
        except httpx.HTTPError as e:
            logger.error("upstream_network_error", source=self.source_name, url=url, error=str(e))
            raise UpstreamFetchError(self.source_name, f"Request to {url} failed: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamFetchError(self.source_name, f"Invalid JSON from {url}", status_code=response.status_code) from e
