import httpx
import pytest
from sqlalchemy.future import select

from hypescreener.core import database
from hypescreener.db.models import Token, TokenMetricSnapshot
from hypescreener.ingestion.jobs.token_social import sync_token_socials

from conftest import dex_pair, requested_addresses, token_address

INFO = {
    "imageUrl": "https://cdn.example/new.png",
    "websites": [{"label": "Website", "url": "https://token.example"}],
    "socials": [{"type": "twitter", "url": "https://x.com/token"}, {"type": "telegram", "url": "https://t.me/token"}],
}


@pytest.mark.asyncio
async def test_social_sync_overwrites_links_and_respects_manual_image(make_dex):
    async with database.AsyncSessionLocal() as session:
        session.add(Token(contract_address=token_address(0), symbol="AUTO", name="Auto", image_url="https://old/auto.png",
                          websites=[{"label": "Old", "url": "https://old.example"}]))
        session.add(Token(contract_address=token_address(1), symbol="MAN", name="Manual", image_url="https://mine/manual.png",
                          manual_image=True))
        await session.commit()

    def handler(request: httpx.Request):
        return httpx.Response(200, json=[dex_pair(a, **INFO) for a in requested_addresses(request)])

    result = await sync_token_socials("exec-1", make_dex(handler))

    assert result.success_count == 2
    assert result.details["changed"] == 2

    async with database.AsyncSessionLocal() as session:
        tokens = {t.symbol: t for t in (await session.execute(select(Token))).scalars().all()}
        metrics = (await session.execute(select(TokenMetricSnapshot))).scalars().all()

    auto, manual = tokens["AUTO"], tokens["MAN"]
    assert auto.image_url == "https://cdn.example/new.png"
    assert auto.websites == [{"label": "Website", "url": "https://token.example"}]
    assert auto.socials == [
        {"platform": "twitter", "url": "https://x.com/token"},
        {"platform": "telegram", "url": "https://t.me/token"},
    ]
    assert manual.image_url == "https://mine/manual.png"
    assert manual.socials[0]["platform"] == "twitter"
    # Social sync never produces price rows
    assert metrics == []


@pytest.mark.asyncio
async def test_social_sync_is_idempotent(make_dex):
    async with database.AsyncSessionLocal() as session:
        session.add(Token(contract_address=token_address(0), symbol="AUTO", name="Auto"))
        await session.commit()

    dex = make_dex(lambda request: httpx.Response(200, json=[dex_pair(a, **INFO) for a in requested_addresses(request)]))

    first = await sync_token_socials("exec-1", dex)
    second = await sync_token_socials("exec-2", dex)

    assert first.details["changed"] == 1
    assert second.details["changed"] == 0


@pytest.mark.asyncio
async def test_social_sync_counts_missing_tokens_as_failed(make_dex):
    async with database.AsyncSessionLocal() as session:
        session.add(Token(contract_address=token_address(0), symbol="A", name="A"))
        session.add(Token(contract_address=token_address(1), symbol="B", name="B"))
        await session.commit()

    dex = make_dex(lambda request: httpx.Response(200, json=[dex_pair(token_address(0), **INFO)]))
    result = await sync_token_socials("exec-1", dex)

    assert result.success_count == 1
    assert result.error_count == 1
    assert result.details["failed_tokens"] == [token_address(1)]
