import datetime

import httpx
import pytest
from sqlalchemy.future import select

from hypescreener.core import database
from hypescreener.core.errors import UpstreamFetchError
from hypescreener.db.models import ExecutionRecord, ProtocolTvlSnapshot, RevenueSnapshot
from hypescreener.ingestion.executions import reconcile_pending, submit_query
from hypescreener.ingestion.queries import QUERY_PROTOCOL_TVL, QUERY_REVENUE
from hypescreener.utils.time import utcnow

REVENUE_ROWS = [
    {"day": "2025-03-08 00:00:00.000 UTC", "revenue": "1000.5", "annualized_revenue": "365000"},
    {"day": "2025-03-09 00:00:00.000 UTC", "revenue": "1200"},
]


def results_payload(state, rows=None, error=None):
    payload = {"execution_id": "ignored", "state": state}
    if rows is not None:
        payload["result"] = {"rows": rows}
    if error is not None:
        payload["error"] = {"message": error}
    return payload


async def add_pending(execution_id, query_id=QUERY_REVENUE, age=datetime.timedelta(minutes=5)):
    created = utcnow() - age
    async with database.AsyncSessionLocal() as session:
        session.add(ExecutionRecord(execution_id=execution_id, query_id=query_id, status="PENDING",
                                    created_at=created, updated_at=created))
        await session.commit()


async def get_record(execution_id):
    async with database.AsyncSessionLocal() as session:
        result = await session.execute(select(ExecutionRecord).where(ExecutionRecord.execution_id == execution_id))
        return result.scalars().first()


async def all_rows(model):
    async with database.AsyncSessionLocal() as session:
        return (await session.execute(select(model))).scalars().all()


def results_handler(states):
    """Routes GET /execution/{id}/results to the payload registered for that id."""
    def handler(request: httpx.Request):
        execution_id = request.url.path.split("/")[-2]
        status, payload = states[execution_id]
        return httpx.Response(status, json=payload)
    return handler


class UnreachableDune:
    async def get_results(self, execution_id):
        raise UpstreamFetchError("dune", "connection reset")


@pytest.mark.asyncio
async def test_submit_records_pending(make_dune):
    def handler(request: httpx.Request):
        assert request.method == "POST"
        assert request.url.path == f"/api/v1/query/{QUERY_REVENUE}/execute"
        assert request.headers["X-Dune-Api-Key"] == database.settings.DUNE_API_KEY
        return httpx.Response(200, json={"execution_id": "01HEXEC", "state": "QUERY_STATE_PENDING"})

    record = await submit_query(make_dune(handler), QUERY_REVENUE, trigger_id="trigger-1")

    stored = await get_record("01HEXEC")
    assert record.status == "PENDING"
    assert stored.status == "PENDING"
    assert stored.trigger_id == "trigger-1"


@pytest.mark.asyncio
async def test_failed_submit_records_nothing(make_dune):
    dune = make_dune(lambda request: httpx.Response(403, json={"error": "forbidden"}))

    with pytest.raises(UpstreamFetchError):
        await submit_query(dune, QUERY_REVENUE)

    assert await all_rows(ExecutionRecord) == []


@pytest.mark.asyncio
async def test_completed_execution_writes_rows(make_dune):
    await add_pending("exec-done")
    dune = make_dune(results_handler({"exec-done": (200, results_payload("QUERY_STATE_COMPLETED", REVENUE_ROWS))}))

    result = await reconcile_pending("poll-1", dune)

    record = await get_record("exec-done")
    assert record.status == "COMPLETED"
    assert record.row_count == 2
    assert record.completed_at is not None
    assert result.details["counts"] == {"COMPLETED": 1}

    revenue = sorted(await all_rows(RevenueSnapshot), key=lambda r: r.day)
    assert [(r.day.isoformat(), r.revenue) for r in revenue] == [("2025-03-08", 1000.5), ("2025-03-09", 1200.0)]
    assert revenue[0].annualized_revenue == 365000.0
    assert revenue[0].query_id == QUERY_REVENUE


@pytest.mark.asyncio
async def test_protocol_rows_are_routed_by_query_id(make_dune):
    await add_pending("exec-tvl", query_id=QUERY_PROTOCOL_TVL)
    rows = [
        {"day": "2025-03-09", "protocol_name": "felix", "daily_tvl": 100.0, "total_daily_tvl": 300.0},
        {"day": "2025-03-09", "protocol_name": "hyperlend", "daily_tvl": 200.0, "total_daily_tvl": 300.0},
    ]
    dune = make_dune(results_handler({"exec-tvl": (200, results_payload("QUERY_STATE_COMPLETED", rows))}))

    await reconcile_pending("poll-1", dune)

    stored = await all_rows(ProtocolTvlSnapshot)
    assert sorted(r.protocol_name for r in stored) == ["felix", "hyperlend"]
    assert await all_rows(RevenueSnapshot) == []


@pytest.mark.asyncio
async def test_failed_execution_writes_nothing(make_dune):
    await add_pending("exec-failed")
    dune = make_dune(results_handler({"exec-failed": (200, results_payload("QUERY_STATE_FAILED", error="syntax error"))}))

    await reconcile_pending("poll-1", dune)

    record = await get_record("exec-failed")
    assert record.status == "FAILED"
    assert record.error_message == "syntax error"
    assert await all_rows(RevenueSnapshot) == []


@pytest.mark.asyncio
async def test_running_execution_stays_pending(make_dune):
    await add_pending("exec-running")
    dune = make_dune(results_handler({"exec-running": (200, results_payload("QUERY_STATE_EXECUTING"))}))

    await reconcile_pending("poll-1", dune)

    record = await get_record("exec-running")
    assert record.status == "PENDING"
    assert record.engine_state == "QUERY_STATE_EXECUTING"


@pytest.mark.asyncio
async def test_stale_execution_times_out(make_dune):
    await add_pending("exec-stale", age=datetime.timedelta(hours=7))
    dune = make_dune(results_handler({}))

    await reconcile_pending("poll-1", dune)

    record = await get_record("exec-stale")
    assert record.status == "FAILED"
    assert "Timed out" in record.error_message


@pytest.mark.asyncio
async def test_executions_outside_lookback_are_ignored(make_dune):
    await add_pending("exec-ancient", age=datetime.timedelta(hours=72))
    result = await reconcile_pending("poll-1", make_dune(results_handler({})))

    assert result.details["checked"] == 0
    assert (await get_record("exec-ancient")).status == "PENDING"


@pytest.mark.asyncio
async def test_result_api_error_is_terminal(make_dune):
    await add_pending("exec-gone")
    dune = make_dune(results_handler({"exec-gone": (404, {"error": "not found"})}))

    await reconcile_pending("poll-1", dune)

    assert (await get_record("exec-gone")).status == "API_ERROR"


@pytest.mark.asyncio
async def test_network_error_leaves_pending():
    await add_pending("exec-net")

    await reconcile_pending("poll-1", UnreachableDune())

    assert (await get_record("exec-net")).status == "PENDING"


@pytest.mark.asyncio
async def test_unmapped_query_is_marked(make_dune):
    await add_pending("exec-unknown", query_id=1234)
    dune = make_dune(results_handler({"exec-unknown": (200, results_payload("QUERY_STATE_COMPLETED", REVENUE_ROWS))}))

    await reconcile_pending("poll-1", dune)

    assert (await get_record("exec-unknown")).status == "UNMAPPED_QUERY"
    assert await all_rows(RevenueSnapshot) == []


@pytest.mark.asyncio
async def test_terminal_records_never_revert(make_dune):
    await add_pending("exec-once")
    states = {"exec-once": (200, results_payload("QUERY_STATE_COMPLETED", REVENUE_ROWS))}
    dune = make_dune(results_handler(states))

    await reconcile_pending("poll-1", dune)
    states["exec-once"] = (200, results_payload("QUERY_STATE_FAILED", error="late failure"))
    second = await reconcile_pending("poll-2", dune)

    assert second.details["checked"] == 0
    record = await get_record("exec-once")
    assert record.status == "COMPLETED"
    assert record.error_message is None
