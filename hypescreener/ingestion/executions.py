"""
Tracks asynchronous analytics-engine executions.

submit_query() fires a query and records it as PENDING. reconcile_pending()
is run later by its own trigger: it polls every recent PENDING record once
and moves it to a terminal state when the engine has an answer. Every
transition is a conditional UPDATE guarded by status == PENDING, so a record
that already reached a terminal state is never touched again, even when two
reconcilers race.
"""
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.future import select

from hypescreener.core.config import get_settings
from hypescreener.core.database import AsyncSessionLocal
from hypescreener.core.errors import PersistenceError, UpstreamFetchError
from hypescreener.core.logging_config import get_logger
from hypescreener.db.models import ExecutionRecord
from hypescreener.ingestion.queries import get_row_handler
from hypescreener.ingestion.sources.dune import DuneClient
from hypescreener.services.job_runner import JobResult
from hypescreener.utils.time import as_utc, utcnow

logger = get_logger("executions")

JOB_TYPE = "poll_query_results"

STATUS_PENDING = "PENDING"
STATUS_COMPLETED = "COMPLETED"
STATUS_FAILED = "FAILED"
STATUS_API_ERROR = "API_ERROR"
STATUS_UNMAPPED = "UNMAPPED_QUERY"


async def submit_query(dune: DuneClient, query_id: int, trigger_id: Optional[str] = None) -> ExecutionRecord:
    """
    Asks the engine to run `query_id` and records the execution as PENDING.
    If the engine call fails nothing is recorded and the error propagates.
    """
    execution_id = await dune.execute_query(query_id)

    now = utcnow()
    record = ExecutionRecord(
        execution_id=execution_id,
        query_id=query_id,
        status=STATUS_PENDING,
        trigger_id=trigger_id,
        created_at=now,
        updated_at=now,
    )
    async with AsyncSessionLocal() as session:
        try:
            session.add(record)
            await session.commit()
        except Exception as e:
            await session.rollback()
            raise PersistenceError(f"Failed to record execution {execution_id}: {e}") from e

    logger.info("execution_recorded", query_id=query_id, execution_id=execution_id, trigger_id=trigger_id)
    return record


async def _transition(session, record_id: int, values: Dict[str, Any]) -> bool:
    """Applies `values` only if the record is still PENDING. Returns whether it did."""
    values = dict(values, updated_at=utcnow())
    result = await session.execute(
        update(ExecutionRecord)
        .where(ExecutionRecord.id == record_id, ExecutionRecord.status == STATUS_PENDING)
        .values(**values)
    )
    return result.rowcount == 1


async def _finish(record: ExecutionRecord, status: str, **values) -> bool:
    async with AsyncSessionLocal() as session:
        changed = await _transition(session, record.id, dict(values, status=status, completed_at=utcnow()))
        await session.commit()
    return changed


async def _reconcile_one(dune: DuneClient, record: ExecutionRecord, stale_after: timedelta) -> str:
    """Returns the record's status after this pass."""
    age = utcnow() - as_utc(record.created_at)
    if age > stale_after:
        await _finish(record, STATUS_FAILED, error_message=f"Timed out after {int(age.total_seconds() // 3600)}h without a result")
        return STATUS_FAILED

    try:
        result = await dune.get_results(record.execution_id)
    except UpstreamFetchError as e:
        if e.status_code is None:
            # Network trouble: leave it PENDING for the next pass
            logger.warning("execution_poll_unreachable", execution_id=record.execution_id, error=str(e))
            return STATUS_PENDING
        await _finish(record, STATUS_API_ERROR, error_message=str(e))
        return STATUS_API_ERROR

    if result.is_failed:
        await _finish(record, STATUS_FAILED, engine_state=result.state, error_message=result.error or result.state)
        return STATUS_FAILED

    if not result.is_completed:
        async with AsyncSessionLocal() as session:
            await _transition(session, record.id, {"engine_state": result.state})
            await session.commit()
        return STATUS_PENDING

    handler = get_row_handler(record.query_id)
    if handler is None:
        await _finish(record, STATUS_UNMAPPED, engine_state=result.state, error_message=f"No handler registered for query {record.query_id}")
        return STATUS_UNMAPPED

    # Rows and the COMPLETED transition commit together or not at all
    async with AsyncSessionLocal() as session:
        try:
            claimed = await _transition(session, record.id, {
                "status": STATUS_COMPLETED,
                "engine_state": result.state,
                "completed_at": utcnow(),
            })
            if not claimed:
                await session.rollback()
                return STATUS_COMPLETED
            written = await handler(session, result.rows, record.execution_id, record.query_id)
            await session.execute(
                update(ExecutionRecord).where(ExecutionRecord.id == record.id).values(row_count=written)
            )
            await session.commit()
        except Exception as e:
            await session.rollback()
            raise PersistenceError(f"Failed to store rows for {record.execution_id}: {e}") from e

    logger.info("execution_completed", execution_id=record.execution_id, query_id=record.query_id, rows=written)
    return STATUS_COMPLETED


async def reconcile_pending(execution_id: str, dune: DuneClient) -> JobResult:
    settings = get_settings()
    now = utcnow()

    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(ExecutionRecord)
            .where(
                ExecutionRecord.status == STATUS_PENDING,
                ExecutionRecord.created_at >= now - timedelta(hours=settings.EXECUTION_LOOKBACK_HOURS),
            )
            .order_by(ExecutionRecord.created_at)
            .limit(settings.RECONCILE_BATCH_LIMIT)
        )
        records = result.scalars().all()

    if not records:
        return JobResult(details={"checked": 0, "message": "No pending executions"})

    stale_after = timedelta(hours=settings.STALE_EXECUTION_HOURS)
    statuses: Dict[str, str] = {}
    errors = 0
    for record in records:
        try:
            statuses[record.execution_id] = await _reconcile_one(dune, record, stale_after)
        except Exception as e:
            errors += 1
            statuses[record.execution_id] = "ERROR"
            logger.error("execution_reconcile_failed", execution_id=record.execution_id, error=str(e))

    counts: Dict[str, int] = {}
    for status in statuses.values():
        counts[status] = counts.get(status, 0) + 1

    return JobResult(
        success_count=len(records) - errors,
        error_count=errors,
        error_message=f"{errors} execution(s) could not be reconciled" if errors else None,
        details={"checked": len(records), "counts": counts, "executions": statuses},
    )
