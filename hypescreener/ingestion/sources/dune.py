from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from hypescreener.core.config import get_settings
from hypescreener.core.errors import ConfigurationError, UpstreamFetchError
from hypescreener.core.logging_config import get_logger
from hypescreener.ingestion.sources.base import UpstreamClient

logger = get_logger("source_dune")

STATE_COMPLETED = "QUERY_STATE_COMPLETED"
STATE_FAILED = "QUERY_STATE_FAILED"
STATE_CANCELLED = "QUERY_STATE_CANCELLED"


@dataclass
class QueryResult:
    state: str
    rows: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.state == STATE_COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.state in (STATE_FAILED, STATE_CANCELLED)


class DuneClient(UpstreamClient):
    """Submits queries to the analytics engine and fetches their results later."""

    source_name = "dune"

    def _headers(self) -> Dict[str, str]:
        settings = get_settings()
        if not settings.DUNE_API_KEY:
            raise ConfigurationError("DUNE_API_KEY is not configured")
        return {"X-Dune-Api-Key": settings.DUNE_API_KEY}

    async def execute_query(self, query_id: int) -> str:
        settings = get_settings()
        payload = await self.request_json(
            "POST",
            f"{settings.DUNE_BASE_URL}/query/{query_id}/execute",
            headers=self._headers(),
            json={"performance": settings.DUNE_PERFORMANCE},
        )
        execution_id = payload.get("execution_id") if isinstance(payload, dict) else None
        if not execution_id:
            raise UpstreamFetchError(self.source_name, f"No execution_id returned for query {query_id}")

        logger.info("query_submitted", query_id=query_id, execution_id=execution_id, state=payload.get("state"))
        return execution_id

    async def get_results(self, execution_id: str) -> QueryResult:
        settings = get_settings()
        payload = await self.request_json(
            "GET",
            f"{settings.DUNE_BASE_URL}/execution/{execution_id}/results",
            headers=self._headers(),
        )
        error = payload.get("error")
        if isinstance(error, dict):
            error = error.get("message")

        return QueryResult(
            state=payload.get("state", "UNKNOWN"),
            rows=(payload.get("result") or {}).get("rows") or [],
            error=error,
        )
