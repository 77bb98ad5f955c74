"""
Runs a sync job as one tracked execution.
Each run gets an execution id bound into the logging context, a JobRunLog row
written at completion, and Prometheus metrics keyed by job type.
"""
import time
import traceback
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import structlog
from prometheus_client import Counter, Gauge, Histogram

from hypescreener.core.config import get_settings
from hypescreener.core.database import AsyncSessionLocal
from hypescreener.core.errors import JobAlreadyRunningError
from hypescreener.core.logging_config import get_logger
from hypescreener.db.models import JobRunLog
from hypescreener.utils.time import utcnow

logger = get_logger("job_runner")

STATUS_COMPLETED = "COMPLETED"
STATUS_FAILED = "FAILED"
STATUS_PARTIAL_FAILURE = "PARTIAL_FAILURE"

JOB_RUNS = Counter('sync_job_runs_total', 'Sync job runs by final status', ['job_type', 'status'])
JOB_ITEMS = Counter('sync_job_items_total', 'Items processed by sync jobs', ['job_type', 'outcome'])
JOB_DURATION = Histogram('sync_job_duration_seconds', 'Sync job duration', ['job_type'])
JOB_LAST_STATUS = Gauge('sync_job_last_status', 'Last sync job status (1=Completed, 0.5=Partial, 0=Failed)', ['job_type'])


@dataclass
class JobResult:
    """What a job body reports back to the runner."""
    success_count: int = 0
    error_count: int = 0
    fatal: bool = False
    error_message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class JobOutcome:
    execution_id: str
    job_type: str
    status: str
    success_count: int
    error_count: int
    duration_ms: int
    error_message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status != STATUS_FAILED

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "execution_id": self.execution_id,
            "job_type": self.job_type,
            "status": self.status,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "duration_ms": self.duration_ms,
            "error": self.error_message,
            "details": self.details,
        }


def resolve_status(result: JobResult) -> str:
    if result.fatal:
        return STATUS_FAILED
    if result.error_count and not result.success_count:
        return STATUS_FAILED
    if result.error_count:
        return STATUS_PARTIAL_FAILURE
    return STATUS_COMPLETED


def new_execution_id(job_type: str) -> str:
    return f"{job_type}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


class JobGuard:
    """Process-local registry of job types currently running."""

    def __init__(self):
        self._running: Set[str] = set()

    def acquire(self, job_type: str):
        if job_type in self._running:
            raise JobAlreadyRunningError(job_type)
        self._running.add(job_type)

    def release(self, job_type: str):
        self._running.discard(job_type)

    def is_running(self, job_type: str) -> bool:
        return job_type in self._running


async def _write_run_log(outcome: JobOutcome, started_at, completed_at):
    async with AsyncSessionLocal() as session:
        try:
            session.add(JobRunLog(
                execution_id=outcome.execution_id,
                job_type=outcome.job_type,
                status=outcome.status,
                started_at=started_at,
                completed_at=completed_at,
                duration_ms=outcome.duration_ms,
                success_count=outcome.success_count,
                error_count=outcome.error_count,
                error_message=outcome.error_message,
                details=outcome.details,
            ))
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error("job_run_log_failed", error=str(e))


async def run_job(
    job_type: str,
    job_fn: Callable[[str], Awaitable[JobResult]],
    guard: Optional[JobGuard] = None,
) -> JobOutcome:
    """
    Executes `job_fn(execution_id)` and records the outcome.
    Raises JobAlreadyRunningError (before doing anything) if `guard` says the
    job type is already in flight. Exceptions from the job body never escape:
    they become a FAILED outcome.
    """
    if guard is not None:
        guard.acquire(job_type)

    execution_id = new_execution_id(job_type)
    structlog.contextvars.bind_contextvars(execution_id=execution_id, job_type=job_type)
    started_at = utcnow()
    start_time = time.time()
    logger.info("job_start")

    try:
        try:
            result = await job_fn(execution_id)
        except Exception as e:
            logger.error("job_failure", error=str(e), exc_info=True)
            details = {"traceback": traceback.format_exc()} if get_settings().DEBUG else {}
            result = JobResult(fatal=True, error_message=str(e), details=details)

        status = resolve_status(result)
        duration_ms = int((time.time() - start_time) * 1000)
        outcome = JobOutcome(
            execution_id=execution_id,
            job_type=job_type,
            status=status,
            success_count=result.success_count,
            error_count=result.error_count,
            duration_ms=duration_ms,
            error_message=result.error_message,
            details=result.details,
        )

        await _write_run_log(outcome, started_at, utcnow())

        JOB_RUNS.labels(job_type=job_type, status=status).inc()
        JOB_ITEMS.labels(job_type=job_type, outcome="success").inc(result.success_count)
        JOB_ITEMS.labels(job_type=job_type, outcome="error").inc(result.error_count)
        JOB_DURATION.labels(job_type=job_type).observe(duration_ms / 1000.0)
        JOB_LAST_STATUS.labels(job_type=job_type).set(
            {STATUS_COMPLETED: 1, STATUS_PARTIAL_FAILURE: 0.5}.get(status, 0)
        )

        log = logger.info if status == STATUS_COMPLETED else logger.warning
        log("job_finish", status=status, success_count=result.success_count, error_count=result.error_count, duration_ms=duration_ms)
        return outcome
    finally:
        structlog.contextvars.unbind_contextvars("execution_id", "job_type")
        if guard is not None:
            guard.release(job_type)
