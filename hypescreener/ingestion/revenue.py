from datetime import date
from typing import Iterable, List, Optional, Tuple

from hypescreener.utils.numbers import round_half_up

WINDOW_DAYS = 7
DAYS_PER_YEAR = 365


def annualize(series: Iterable[Tuple[date, float]], window: int = WINDOW_DAYS) -> List[Tuple[date, float, Optional[int]]]:
    """
    Returns (day, revenue, annualized) sorted by day.
    annualized is the trailing `window`-day average times 365, rounded half up,
    and stays None until a full window is available.
    """
    ordered = sorted(series, key=lambda item: item[0])
    result = []
    for index, (day, revenue) in enumerate(ordered):
        annualized = None
        if index + 1 >= window:
            values = [value for _, value in ordered[index + 1 - window:index + 1]]
            annualized = round_half_up(sum(values) / window * DAYS_PER_YEAR)
        result.append((day, revenue, annualized))
    return result
