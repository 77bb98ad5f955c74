from hypescreener.core.errors import UpstreamFetchError
from hypescreener.core.logging_config import get_logger
from hypescreener.ingestion.executions import submit_query
from hypescreener.ingestion.queries import ROW_HANDLERS
from hypescreener.ingestion.sources.dune import DuneClient
from hypescreener.services.job_runner import JobResult

logger = get_logger("job_query_submit")

JOB_TYPE = "query_submit"


async def submit_registered_queries(execution_id: str, dune: DuneClient) -> JobResult:
    """Daily kick-off: submits every query with a row handler. Results land via reconciliation."""
    submitted, failed = {}, {}
    for query_id in sorted(ROW_HANDLERS):
        try:
            record = await submit_query(dune, query_id, trigger_id=execution_id)
            submitted[str(query_id)] = record.execution_id
        except UpstreamFetchError as e:
            logger.warning("query_submit_failed", query_id=query_id, error=str(e))
            failed[str(query_id)] = str(e)

    return JobResult(
        success_count=len(submitted),
        error_count=len(failed),
        error_message=f"{len(failed)} query submission(s) failed" if failed else None,
        details={"submitted": submitted, "failed": failed},
    )
