"""
Read endpoints behind the dashboard.
Every handler answers with well-formed JSON: empty tables yield defaulted
fields plus an `error` string, and unexpected failures are logged and turned
into a 500 carrying the same defaulted shape.
"""
import time
import uuid
from datetime import date, timedelta

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from hypescreener.core.database import get_db
from hypescreener.core.logging_config import get_logger
from hypescreener.db.models import (
    EcosystemMetricSnapshot,
    ExecutionRecord,
    ExternalAssetSnapshot,
    JobRunLog,
    ProtocolTvlSnapshot,
    RevenueSnapshot,
    Token,
    TokenMetricSnapshot,
)
from hypescreener.services.aggregations import (
    DELTA_FIELDS,
    ecosystem_deltas,
    find_comparison_snapshot,
    summarize_protocol_tvl,
    summarize_revenue,
)
from hypescreener.utils.time import as_utc, utcnow

logger = get_logger("api_read")

router = APIRouter(prefix="/api")

ECOSYSTEM_FIELDS = DELTA_FIELDS + (
    "total_liquidity",
    "token_count",
    "visible_token_count",
    "avg_price_change_1h",
    "avg_price_change_24h",
)
METRIC_FIELDS = (
    "price_usd",
    "liquidity_usd",
    "volume_24h",
    "market_cap",
    "fdv",
    "price_change_1h",
    "price_change_24h",
)
EXTERNAL_ASSET_FIELDS = (
    "price",
    "market_cap",
    "percent_change_24h",
    "fully_diluted_market_cap",
    "volume_24h",
    "volume_change_24h",
)


def _meta(start_time: float):
    return {"request_id": str(uuid.uuid4()), "latency_ms": round((time.time() - start_time) * 1000, 2)}


def _degraded(endpoint: str, defaults: dict, error: Exception, start_time: float) -> JSONResponse:
    logger.error("read_failed", endpoint=endpoint, error=str(error), exc_info=True)
    body = dict(defaults, success=False, error=str(error), meta=_meta(start_time))
    return JSONResponse(status_code=500, content=jsonable_encoder(body))


@router.get("/ecosystem-metrics")
async def get_ecosystem_metrics(days: int = 30, db: AsyncSession = Depends(get_db)):
    """Latest ecosystem snapshot, its 24h deltas, and the snapshot series for the last `days` days."""
    start_time = time.time()
    defaults = {
        **{name: 0 for name in ECOSYSTEM_FIELDS},
        **{f"{name}_change": None for name in DELTA_FIELDS},
        "recorded_at": None,
        "comparison_recorded_at": None,
        "historical_data": [],
    }
    try:
        result = await db.execute(
            select(EcosystemMetricSnapshot)
            .order_by(EcosystemMetricSnapshot.recorded_at.desc(), EcosystemMetricSnapshot.id.desc())
            .limit(1)
        )
        latest = result.scalars().first()
        if latest is None:
            return dict(defaults, success=True, error="No ecosystem metrics recorded yet", meta=_meta(start_time))

        # Anything older than latest - 48h is farther from the 24h target than latest itself
        latest_at = as_utc(latest.recorded_at)
        comparison_since = latest_at - timedelta(hours=48)
        history_since = latest_at - timedelta(days=max(days, 0))
        result = await db.execute(
            select(EcosystemMetricSnapshot)
            .where(EcosystemMetricSnapshot.recorded_at >= min(comparison_since, history_since))
            .order_by(EcosystemMetricSnapshot.recorded_at, EcosystemMetricSnapshot.id)
        )
        snapshots = result.scalars().all()
        comparison = find_comparison_snapshot(
            [s for s in snapshots if as_utc(s.recorded_at) >= comparison_since], latest
        )

        body = {name: getattr(latest, name) for name in ECOSYSTEM_FIELDS}
        body.update(ecosystem_deltas(latest, comparison))
        body["recorded_at"] = latest_at
        body["comparison_recorded_at"] = as_utc(comparison.recorded_at) if comparison is not None and comparison.id != latest.id else None
        body["historical_data"] = [
            dict({name: getattr(s, name) for name in ECOSYSTEM_FIELDS}, recorded_at=as_utc(s.recorded_at))
            for s in snapshots
            if as_utc(s.recorded_at) >= history_since
        ]
        return jsonable_encoder(dict(body, success=True, meta=_meta(start_time)))
    except Exception as e:
        return _degraded("ecosystem-metrics", defaults, e, start_time)


@router.get("/protocol-tvl")
async def get_protocol_tvl(days: int = 90, db: AsyncSession = Depends(get_db)):
    """Current/previous totals come from every stored day; `days` only trims historical_data."""
    start_time = time.time()
    defaults = summarize_protocol_tvl([])
    try:
        result = await db.execute(select(ProtocolTvlSnapshot))
        summary = summarize_protocol_tvl(result.scalars().all())
        if summary["latest_day"] is None:
            summary["error"] = "No protocol TVL data available"
        else:
            since = (date.fromisoformat(summary["latest_day"]) - timedelta(days=days)).isoformat()
            summary["historical_data"] = [p for p in summary["historical_data"] if p["day"] >= since]
        return dict(summary, success=True, meta=_meta(start_time))
    except Exception as e:
        return _degraded("protocol-tvl", defaults, e, start_time)


@router.get("/revenue")
async def get_revenue(db: AsyncSession = Depends(get_db)):
    start_time = time.time()
    defaults = summarize_revenue([])
    try:
        result = await db.execute(select(RevenueSnapshot).order_by(RevenueSnapshot.day))
        summary = summarize_revenue(result.scalars().all())
        if summary["latest_day"] is None:
            summary["error"] = "No revenue data available"
        return dict(summary, success=True, meta=_meta(start_time))
    except Exception as e:
        return _degraded("revenue", defaults, e, start_time)


@router.get("/tokens")
async def get_tokens(db: AsyncSession = Depends(get_db)):
    """Enabled, visible, sufficiently liquid tokens with their latest metrics, biggest first."""
    start_time = time.time()
    try:
        result = await db.execute(
            select(Token).where(
                Token.enabled.is_(True),
                Token.is_hidden.is_(False),
                Token.low_liquidity.is_(False),
            )
        )
        tokens = result.scalars().all()

        latest_ts = (
            select(TokenMetricSnapshot.contract_address, func.max(TokenMetricSnapshot.recorded_at).label("recorded_at"))
            .group_by(TokenMetricSnapshot.contract_address)
            .subquery()
        )
        result = await db.execute(
            select(TokenMetricSnapshot).join(
                latest_ts,
                (TokenMetricSnapshot.contract_address == latest_ts.c.contract_address)
                & (TokenMetricSnapshot.recorded_at == latest_ts.c.recorded_at),
            )
        )
        metrics = {m.contract_address: m for m in result.scalars().all()}

        items = []
        for token in tokens:
            metric = metrics.get(token.contract_address)
            item = {
                "contract_address": token.contract_address,
                "symbol": token.symbol,
                "name": token.name,
                "image_url": token.image_url,
                "websites": token.websites or [],
                "socials": token.socials or [],
                "last_updated": as_utc(metric.recorded_at) if metric else None,
            }
            item.update({name: getattr(metric, name) if metric else None for name in METRIC_FIELDS})
            items.append(item)

        items.sort(key=lambda i: i["market_cap"] if i["market_cap"] is not None else -1, reverse=True)
        return jsonable_encoder({"success": True, "count": len(items), "tokens": items, "meta": _meta(start_time)})
    except Exception as e:
        return _degraded("tokens", {"count": 0, "tokens": []}, e, start_time)


@router.get("/external-asset")
async def get_external_asset(db: AsyncSession = Depends(get_db)):
    start_time = time.time()
    defaults = {**{name: 0 for name in EXTERNAL_ASSET_FIELDS}, "symbol": None, "synced_at": None}
    try:
        result = await db.execute(
            select(ExternalAssetSnapshot).order_by(ExternalAssetSnapshot.synced_at.desc(), ExternalAssetSnapshot.id.desc()).limit(1)
        )
        snapshot = result.scalars().first()
        if snapshot is None:
            return dict(defaults, success=True, error="No external asset data available", meta=_meta(start_time))

        body = {name: getattr(snapshot, name) for name in EXTERNAL_ASSET_FIELDS}
        body.update(symbol=snapshot.symbol, synced_at=as_utc(snapshot.synced_at))
        return jsonable_encoder(dict(body, success=True, meta=_meta(start_time)))
    except Exception as e:
        return _degraded("external-asset", defaults, e, start_time)


@router.get("/job-runs")
async def get_job_runs(limit: int = 50, db: AsyncSession = Depends(get_db)):
    start_time = time.time()
    try:
        since = utcnow() - timedelta(days=30)
        result = await db.execute(
            select(JobRunLog)
            .where(JobRunLog.started_at >= since)
            .order_by(JobRunLog.started_at.desc(), JobRunLog.id.desc())
            .limit(min(max(limit, 1), 50))
        )
        runs = result.scalars().all()

        summary = {"total": len(runs), "COMPLETED": 0, "FAILED": 0, "PARTIAL_FAILURE": 0}
        for run in runs:
            summary[run.status] = summary.get(run.status, 0) + 1

        return jsonable_encoder({
            "success": True,
            "summary": summary,
            "runs": [
                {
                    "execution_id": r.execution_id,
                    "job_type": r.job_type,
                    "status": r.status,
                    "started_at": as_utc(r.started_at),
                    "completed_at": as_utc(r.completed_at),
                    "duration_ms": r.duration_ms,
                    "success_count": r.success_count,
                    "error_count": r.error_count,
                    "error_message": r.error_message,
                    "details": r.details,
                }
                for r in runs
            ],
            "meta": _meta(start_time),
        })
    except Exception as e:
        return _degraded("job-runs", {"summary": {"total": 0}, "runs": []}, e, start_time)


@router.get("/executions")
async def get_executions(limit: int = 50, db: AsyncSession = Depends(get_db)):
    start_time = time.time()
    try:
        result = await db.execute(
            select(ExecutionRecord).order_by(ExecutionRecord.created_at.desc(), ExecutionRecord.id.desc()).limit(min(max(limit, 1), 200))
        )
        records = result.scalars().all()
        return jsonable_encoder({
            "success": True,
            "executions": [
                {
                    "execution_id": r.execution_id,
                    "query_id": r.query_id,
                    "status": r.status,
                    "engine_state": r.engine_state,
                    "row_count": r.row_count,
                    "error_message": r.error_message,
                    "created_at": as_utc(r.created_at),
                    "completed_at": as_utc(r.completed_at),
                }
                for r in records
            ],
            "meta": _meta(start_time),
        })
    except Exception as e:
        return _degraded("executions", {"executions": []}, e, start_time)
