"""
Pure shaping functions behind the read endpoints and the ecosystem snapshot.
They take ORM rows (or anything with the same attributes) and return plain
dicts, so they can be tested without a database.
"""
from collections import OrderedDict
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from hypescreener.ingestion.queries import source_label
from hypescreener.utils.time import as_utc

DELTA_FIELDS = (
    "total_market_cap",
    "total_volume_24h",
    "visible_market_cap",
    "visible_volume_24h",
)


def _num(value: Optional[float]) -> float:
    return value if value is not None else 0.0


def _average(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def compute_ecosystem_aggregate(entries: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """
    `entries` are per-token dicts with market_cap, volume_24h, liquidity_usd,
    price_change_1h, price_change_24h and a `visible` flag.
    """
    totals = {
        "total_market_cap": 0.0,
        "total_volume_24h": 0.0,
        "visible_market_cap": 0.0,
        "visible_volume_24h": 0.0,
        "total_liquidity": 0.0,
        "token_count": 0,
        "visible_token_count": 0,
    }
    changes_1h, changes_24h = [], []

    for entry in entries:
        totals["total_market_cap"] += _num(entry.get("market_cap"))
        totals["total_volume_24h"] += _num(entry.get("volume_24h"))
        totals["total_liquidity"] += _num(entry.get("liquidity_usd"))
        totals["token_count"] += 1
        if entry.get("visible"):
            totals["visible_market_cap"] += _num(entry.get("market_cap"))
            totals["visible_volume_24h"] += _num(entry.get("volume_24h"))
            totals["visible_token_count"] += 1
        if entry.get("price_change_1h") is not None:
            changes_1h.append(entry["price_change_1h"])
        if entry.get("price_change_24h") is not None:
            changes_24h.append(entry["price_change_24h"])

    totals["avg_price_change_1h"] = _average(changes_1h)
    totals["avg_price_change_24h"] = _average(changes_24h)
    return totals


def find_comparison_snapshot(snapshots: Sequence[Any], latest: Any, period: timedelta = timedelta(hours=24)) -> Any:
    """
    Picks the snapshot whose recorded_at is closest to latest - period.
    Ties go to the more recent snapshot.
    """
    target = as_utc(latest.recorded_at) - period
    best, best_distance = None, None
    for snapshot in sorted(snapshots, key=lambda s: as_utc(s.recorded_at)):
        distance = abs(as_utc(snapshot.recorded_at) - target)
        if best_distance is None or distance <= best_distance:
            best, best_distance = snapshot, distance
    return best


def ecosystem_deltas(latest: Any, comparison: Any) -> Dict[str, Optional[float]]:
    # No earlier point to compare against: report unknown, not zero
    if comparison is None or comparison is latest or comparison.id == latest.id:
        return {f"{name}_change": None for name in DELTA_FIELDS}
    return {
        f"{name}_change": _num(getattr(latest, name)) - _num(getattr(comparison, name))
        for name in DELTA_FIELDS
    }


def summarize_protocol_tvl(rows: Iterable[Any]) -> Dict[str, Any]:
    by_day: "OrderedDict[Any, List[Any]]" = OrderedDict()
    for row in sorted(rows, key=lambda r: r.day):
        by_day.setdefault(row.day, []).append(row)

    if not by_day:
        return {
            "current_tvl": 0.0,
            "previous_day_tvl": 0.0,
            "daily_change": 0.0,
            "latest_day": None,
            "previous_day": None,
            "protocols": [],
            "historical_data": [],
        }

    historical = [
        {"day": day.isoformat(), "total_tvl": sum(_num(r.daily_tvl) for r in day_rows)}
        for day, day_rows in by_day.items()
    ]
    latest_day = next(reversed(by_day))
    current_tvl = historical[-1]["total_tvl"]
    previous_tvl = historical[-2]["total_tvl"] if len(historical) > 1 else 0.0
    previous_day = historical[-2]["day"] if len(historical) > 1 else None

    protocols = sorted(
        ({"protocol_name": r.protocol_name, "tvl": _num(r.daily_tvl)} for r in by_day[latest_day]),
        key=lambda p: p["tvl"],
        reverse=True,
    )

    return {
        "current_tvl": current_tvl,
        "previous_day_tvl": previous_tvl,
        "daily_change": current_tvl - previous_tvl if len(historical) > 1 else 0.0,
        "latest_day": latest_day.isoformat(),
        "previous_day": previous_day,
        "protocols": protocols,
        "historical_data": historical,
    }


def summarize_revenue(rows: Iterable[Any]) -> Dict[str, Any]:
    ordered = sorted(rows, key=lambda r: r.day)
    if not ordered:
        return {
            "current_revenue": 0.0,
            "previous_day_revenue": 0.0,
            "daily_change": 0.0,
            "annualized_revenue": None,
            "latest_day": None,
            "previous_day": None,
            "data_source": None,
            "historical_data": [],
        }

    latest = ordered[-1]
    previous = ordered[-2] if len(ordered) > 1 else None
    return {
        "current_revenue": _num(latest.revenue),
        "previous_day_revenue": _num(previous.revenue) if previous else 0.0,
        "daily_change": _num(latest.revenue) - _num(previous.revenue) if previous else 0.0,
        "annualized_revenue": latest.annualized_revenue,
        "latest_day": latest.day.isoformat(),
        "previous_day": previous.day.isoformat() if previous else None,
        "data_source": source_label(latest.query_id),
        "historical_data": [
            {"day": r.day.isoformat(), "revenue": _num(r.revenue), "annualized_revenue": r.annualized_revenue}
            for r in ordered
        ],
    }
