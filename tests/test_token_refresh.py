import httpx
import pytest
from sqlalchemy.future import select

from hypescreener.core import database
from hypescreener.db.models import EcosystemMetricSnapshot, JobRunLog, Token, TokenMetricSnapshot
from hypescreener.ingestion.jobs import token_refresh
from hypescreener.ingestion.jobs.token_refresh import chunked, pick_best_pairs, refresh_tokens
from hypescreener.ingestion.sources.dexscreener import parse_pair
from hypescreener.services.job_runner import run_job

from conftest import ADMIN_SECRET, dex_pair, requested_addresses, token_address


async def seed_tokens(count, overrides=None):
    overrides = overrides or {}
    async with database.AsyncSessionLocal() as session:
        for i in range(count):
            fields = {"symbol": f"T{i}", "name": f"Token {i}"}
            fields.update(overrides.get(i, {}))
            session.add(Token(contract_address=token_address(i), **fields))
        await session.commit()


async def fetch_all(model):
    async with database.AsyncSessionLocal() as session:
        result = await session.execute(select(model))
        return result.scalars().all()


def test_chunked():
    assert chunked(["a", "b", "c", "d", "e"], 2) == [["a", "b"], ["c", "d"], ["e"]]


def test_pick_best_pair_uses_highest_liquidity():
    address = token_address(1)
    pairs = [
        parse_pair(dex_pair(address, liquidity=100.0, price="1.0")),
        parse_pair(dex_pair(address, liquidity=90000.0, price="2.0")),
        parse_pair(dex_pair(token_address(2), liquidity=1e9)),
    ]
    best = pick_best_pairs(pairs, [address])
    assert list(best) == [address]
    assert best[address].price_usd == 2.0


@pytest.mark.asyncio
async def test_partial_failure_records_successes(make_dex):
    await seed_tokens(5)
    missing = {token_address(1), token_address(3)}

    def handler(request: httpx.Request):
        return httpx.Response(200, json=[dex_pair(a) for a in requested_addresses(request) if a not in missing])

    dex = make_dex(handler)
    outcome = await run_job(token_refresh.JOB_TYPE, lambda execution_id: refresh_tokens(execution_id, dex))

    assert outcome.status == "PARTIAL_FAILURE"
    assert outcome.success_count == 3
    assert outcome.error_count == 2

    metrics = await fetch_all(TokenMetricSnapshot)
    assert len(metrics) == 3
    assert {m.contract_address for m in metrics}.isdisjoint(missing)
    assert all(m.execution_id == outcome.execution_id for m in metrics)

    ecosystem = await fetch_all(EcosystemMetricSnapshot)
    assert len(ecosystem) == 1
    assert ecosystem[0].token_count == 3
    assert ecosystem[0].total_market_cap == 3_000_000.0

    runs = await fetch_all(JobRunLog)
    assert len(runs) == 1
    assert runs[0].status == "PARTIAL_FAILURE"
    assert runs[0].job_type == "token_refresh"


@pytest.mark.asyncio
async def test_liquidity_flag_and_visible_aggregate(make_dex, settings, monkeypatch):
    monkeypatch.setattr(settings, "TOKEN_BATCH_SIZE", 2)
    await seed_tokens(3, {2: {"is_hidden": True}})
    liquidity = {token_address(0): 50000.0, token_address(1): 500.0, token_address(2): 80000.0}
    seen_batches = []

    def handler(request: httpx.Request):
        batch = requested_addresses(request)
        seen_batches.append(batch)
        return httpx.Response(200, json=[dex_pair(a, liquidity=liquidity[a]) for a in batch])

    result = await refresh_tokens("exec-1", make_dex(handler))
    assert result.error_count == 0
    assert sorted(len(b) for b in seen_batches) == [1, 2]

    tokens = {t.contract_address: t for t in await fetch_all(Token)}
    assert tokens[token_address(0)].low_liquidity is False
    assert tokens[token_address(1)].low_liquidity is True

    ecosystem = (await fetch_all(EcosystemMetricSnapshot))[0]
    assert ecosystem.token_count == 3
    assert ecosystem.visible_token_count == 1
    assert ecosystem.total_market_cap == 3_000_000.0
    assert ecosystem.visible_market_cap == 1_000_000.0


@pytest.mark.asyncio
async def test_restored_token_is_reevaluated(async_client, make_dex):
    await seed_tokens(1, {0: {"low_liquidity": True}})

    restored = await async_client.post("/api/admin/liquidity", json={
        "admin_secret": ADMIN_SECRET, "contract_address": token_address(0), "action": "restore",
    })
    assert restored.status_code == 200
    assert (await fetch_all(Token))[0].low_liquidity is False

    dex = make_dex(lambda request: httpx.Response(200, json=[dex_pair(token_address(0), liquidity=10.0)]))
    await refresh_tokens("exec-1", dex)

    token = (await fetch_all(Token))[0]
    assert token.low_liquidity is True


@pytest.mark.asyncio
async def test_disabled_tokens_are_skipped(make_dex):
    await seed_tokens(2, {1: {"enabled": False}})
    requested = []

    def handler(request: httpx.Request):
        requested.extend(requested_addresses(request))
        return httpx.Response(200, json=[dex_pair(a) for a in requested_addresses(request)])

    await refresh_tokens("exec-1", make_dex(handler))
    assert requested == [token_address(0)]


@pytest.mark.asyncio
async def test_no_enabled_tokens_completes_without_snapshots(make_dex):
    dex = make_dex(lambda request: httpx.Response(500))
    outcome = await run_job(token_refresh.JOB_TYPE, lambda execution_id: refresh_tokens(execution_id, dex))

    assert outcome.status == "COMPLETED"
    assert await fetch_all(TokenMetricSnapshot) == []
    assert await fetch_all(EcosystemMetricSnapshot) == []


@pytest.mark.asyncio
async def test_all_tokens_failing_is_failed(make_dex):
    await seed_tokens(2)
    dex = make_dex(lambda request: httpx.Response(404, json={"error": "not found"}))

    outcome = await run_job(token_refresh.JOB_TYPE, lambda execution_id: refresh_tokens(execution_id, dex))

    assert outcome.status == "FAILED"
    assert outcome.error_count == 2
    assert await fetch_all(EcosystemMetricSnapshot) == []
