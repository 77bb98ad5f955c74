import datetime
from types import SimpleNamespace

from hypescreener.services.aggregations import (
    compute_ecosystem_aggregate,
    ecosystem_deltas,
    find_comparison_snapshot,
    summarize_protocol_tvl,
    summarize_revenue,
)

NOW = datetime.datetime(2025, 3, 10, 12, 0, tzinfo=datetime.timezone.utc)


def snapshot(id, hours_ago, market_cap=100.0):
    return SimpleNamespace(
        id=id,
        recorded_at=NOW - datetime.timedelta(hours=hours_ago),
        total_market_cap=market_cap,
        total_volume_24h=market_cap / 10,
        visible_market_cap=market_cap / 2,
        visible_volume_24h=market_cap / 20,
    )


def tvl_row(day, name, tvl):
    return SimpleNamespace(day=day, protocol_name=name, daily_tvl=tvl)


def test_comparison_prefers_nearest_to_24h():
    snapshots = [snapshot(1, 48), snapshot(2, 25), snapshot(3, 23), snapshot(4, 0)]
    chosen = find_comparison_snapshot(snapshots, snapshots[-1])
    assert chosen.id == 3


def test_comparison_picks_closest_when_unbalanced():
    snapshots = [snapshot(1, 30), snapshot(2, 20), snapshot(3, 0)]
    assert find_comparison_snapshot(snapshots, snapshots[-1]).id == 2


def test_deltas_null_with_single_snapshot():
    latest = snapshot(1, 0)
    comparison = find_comparison_snapshot([latest], latest)
    deltas = ecosystem_deltas(latest, comparison)
    assert set(deltas.values()) == {None}
    assert "total_market_cap_change" in deltas


def test_deltas_against_comparison():
    latest, older = snapshot(2, 0, market_cap=150.0), snapshot(1, 24, market_cap=100.0)
    deltas = ecosystem_deltas(latest, older)
    assert deltas["total_market_cap_change"] == 50.0
    assert deltas["visible_market_cap_change"] == 25.0


def test_ecosystem_aggregate_visible_subset():
    entries = [
        {"market_cap": 100.0, "volume_24h": 10.0, "liquidity_usd": 50000.0, "price_change_24h": 2.0, "visible": True},
        {"market_cap": 50.0, "volume_24h": 5.0, "liquidity_usd": 500.0, "price_change_24h": 4.0, "visible": False},
        {"market_cap": None, "volume_24h": None, "liquidity_usd": None, "visible": True},
    ]
    aggregate = compute_ecosystem_aggregate(entries)
    assert aggregate["total_market_cap"] == 150.0
    assert aggregate["visible_market_cap"] == 100.0
    assert aggregate["total_volume_24h"] == 15.0
    assert aggregate["visible_volume_24h"] == 10.0
    assert aggregate["token_count"] == 3
    assert aggregate["visible_token_count"] == 2
    assert aggregate["avg_price_change_24h"] == 3.0
    assert aggregate["avg_price_change_1h"] is None


def test_protocol_tvl_single_day():
    day = datetime.date(2025, 3, 10)
    summary = summarize_protocol_tvl([tvl_row(day, "felix", 100.0), tvl_row(day, "hyperlend", 250.0)])
    assert summary["current_tvl"] == 350.0
    assert summary["daily_change"] == 0.0
    assert summary["previous_day_tvl"] == 0.0
    assert [p["protocol_name"] for p in summary["protocols"]] == ["hyperlend", "felix"]


def test_protocol_tvl_two_days():
    d1, d2 = datetime.date(2025, 3, 9), datetime.date(2025, 3, 10)
    rows = [tvl_row(d2, "felix", 120.0), tvl_row(d1, "felix", 100.0), tvl_row(d1, "hyperlend", 50.0), tvl_row(d2, "hyperlend", 80.0)]
    summary = summarize_protocol_tvl(rows)
    assert summary["current_tvl"] == 200.0
    assert summary["previous_day_tvl"] == 150.0
    assert summary["daily_change"] == 50.0
    assert summary["latest_day"] == "2025-03-10"
    assert [h["day"] for h in summary["historical_data"]] == ["2025-03-09", "2025-03-10"]


def test_revenue_summary():
    rows = [
        SimpleNamespace(day=datetime.date(2025, 3, 10), revenue=120.0, annualized_revenue=40000, query_id=999999),
        SimpleNamespace(day=datetime.date(2025, 3, 9), revenue=100.0, annualized_revenue=None, query_id=999999),
    ]
    summary = summarize_revenue(rows)
    assert summary["current_revenue"] == 120.0
    assert summary["previous_day_revenue"] == 100.0
    assert summary["daily_change"] == 20.0
    assert summary["annualized_revenue"] == 40000
    assert summary["data_source"] == "defillama"
    assert summary["previous_day"] == "2025-03-09"


def test_revenue_summary_empty():
    summary = summarize_revenue([])
    assert summary["current_revenue"] == 0.0
    assert summary["historical_data"] == []
