import math
from typing import Any, Optional


def to_float(value: Any) -> Optional[float]:
    """Parses upstream numbers that may arrive as strings, null or garbage."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; dashboards expect 0.5 -> 1
    return math.floor(value + 0.5)
