"""
Trigger endpoints for the sync jobs.
POST runs the job (scheduler bearer token or debug header required); GET on
the same path describes it. Each POST is one tracked execution recorded in
job_runs, except rejected calls (401, 409, 429) which never start a run.
"""
import traceback
import uuid

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from hypescreener.api.deps import (
    enforce_rate_limit,
    get_cmc_client,
    get_dex_client,
    get_dune_client,
    get_job_guard,
    get_llama_client,
)
from hypescreener.core.config import get_settings
from hypescreener.core.errors import ApiError, ConfigurationError, JobAlreadyRunningError, UpstreamFetchError
from hypescreener.core.logging_config import get_logger
from hypescreener.core.security import require_cron
from hypescreener.ingestion import executions
from hypescreener.ingestion.jobs import external_asset, protocol_tvl, query_submit, revenue_sync, token_refresh, token_social
from hypescreener.ingestion.queries import DEPRECATED_QUERIES, ROW_HANDLERS
from hypescreener.services.job_runner import JobGuard, run_job

logger = get_logger("api_sync")

router = APIRouter(dependencies=[Depends(require_cron), Depends(enforce_rate_limit)])
info_router = APIRouter()

JOB_DESCRIPTIONS = {
    "/api/cron/token-refresh": "Refreshes price and liquidity for enabled tokens and records the ecosystem aggregate",
    "/api/cron/token-social-sync": "Refreshes websites, socials and images for enabled tokens",
    "/api/cron/external-asset-sync": "Stores a price snapshot of the external reference asset",
    "/api/cron/revenue-sync": "Upserts daily revenue with its 7-day annualized figure",
    "/api/cron/protocol-tvl-sync": "Upserts the latest TVL of every tracked protocol",
    "/api/cron/query-submit": "Submits every registered analytics query for asynchronous execution",
    "/api/cron/poll-query-results": "Reconciles pending analytics executions with the engine",
}


class QueryTriggerRequest(BaseModel):
    query_id: int


async def _execute(job_type: str, job_fn, guard: JobGuard, message: str) -> JSONResponse:
    try:
        outcome = await run_job(job_type, job_fn, guard)
    except JobAlreadyRunningError as e:
        raise ApiError(409, str(e), status="ALREADY_RUNNING")

    body = outcome.to_response()
    body["message"] = message if outcome.success else f"{job_type} failed"
    return JSONResponse(status_code=200 if outcome.success else 500, content=jsonable_encoder(body))


@router.post("/api/cron/token-refresh")
async def trigger_token_refresh(guard: JobGuard = Depends(get_job_guard), dex=Depends(get_dex_client)):
    return await _execute(
        token_refresh.JOB_TYPE,
        lambda execution_id: token_refresh.refresh_tokens(execution_id, dex),
        guard,
        "Token metrics refreshed",
    )


@router.post("/api/cron/token-social-sync")
async def trigger_token_social_sync(guard: JobGuard = Depends(get_job_guard), dex=Depends(get_dex_client)):
    return await _execute(
        token_social.JOB_TYPE,
        lambda execution_id: token_social.sync_token_socials(execution_id, dex),
        guard,
        "Token socials synced",
    )


@router.post("/api/cron/external-asset-sync")
async def trigger_external_asset_sync(guard: JobGuard = Depends(get_job_guard), cmc=Depends(get_cmc_client)):
    return await _execute(
        external_asset.JOB_TYPE,
        lambda execution_id: external_asset.sync_external_asset(execution_id, cmc),
        guard,
        "External asset price synced",
    )


@router.post("/api/cron/revenue-sync")
async def trigger_revenue_sync(guard: JobGuard = Depends(get_job_guard), llama=Depends(get_llama_client)):
    return await _execute(
        revenue_sync.JOB_TYPE,
        lambda execution_id: revenue_sync.sync_revenue(execution_id, llama),
        guard,
        "Revenue synced",
    )


@router.post("/api/cron/protocol-tvl-sync")
async def trigger_protocol_tvl_sync(guard: JobGuard = Depends(get_job_guard), llama=Depends(get_llama_client)):
    return await _execute(
        protocol_tvl.JOB_TYPE,
        lambda execution_id: protocol_tvl.sync_protocol_tvl(execution_id, llama),
        guard,
        "Protocol TVL synced",
    )


@router.post("/api/cron/query-submit")
async def trigger_query_submit(guard: JobGuard = Depends(get_job_guard), dune=Depends(get_dune_client)):
    return await _execute(
        query_submit.JOB_TYPE,
        lambda execution_id: query_submit.submit_registered_queries(execution_id, dune),
        guard,
        "Queries submitted",
    )


@router.post("/api/cron/poll-query-results")
async def trigger_poll_query_results(guard: JobGuard = Depends(get_job_guard), dune=Depends(get_dune_client)):
    return await _execute(
        executions.JOB_TYPE,
        lambda execution_id: executions.reconcile_pending(execution_id, dune),
        guard,
        "Pending executions reconciled",
    )


@router.post("/api/query/trigger")
async def trigger_query(payload: QueryTriggerRequest, dune=Depends(get_dune_client)):
    """Manually submits one registered query; its rows arrive on a later reconciliation pass."""
    if payload.query_id in DEPRECATED_QUERIES:
        raise ApiError(400, DEPRECATED_QUERIES[payload.query_id], status="DEPRECATED_WEBHOOK_ACTIVE")
    if payload.query_id not in ROW_HANDLERS:
        raise ApiError(400, f"Unknown query id {payload.query_id}", status="UNKNOWN_QUERY")

    trigger_id = str(uuid.uuid4())
    try:
        record = await executions.submit_query(dune, payload.query_id, trigger_id=trigger_id)
    except ConfigurationError as e:
        raise ApiError(500, str(e))
    except UpstreamFetchError as e:
        logger.error("query_trigger_failed", query_id=payload.query_id, error=str(e))
        extra = {"traceback": traceback.format_exc()} if get_settings().DEBUG else {}
        raise ApiError(502, str(e), **extra)

    return {
        "success": True,
        "execution_id": record.execution_id,
        "query_id": record.query_id,
        "trigger_id": trigger_id,
        "status": record.status,
        "message": "Query submitted; results will be stored on the next poll",
    }


@info_router.get("/api/cron/{job_name}")
async def describe_job(job_name: str):
    path = f"/api/cron/{job_name}"
    if path not in JOB_DESCRIPTIONS:
        raise ApiError(404, f"Unknown job '{job_name}'")
    return {"path": path, "method": "POST", "description": JOB_DESCRIPTIONS[path], "auth": "Bearer CRON_SECRET or x-debug-password"}
