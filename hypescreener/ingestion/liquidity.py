from typing import Optional

DEFAULT_THRESHOLD_USD = 10000.0


def is_low_liquidity(liquidity_usd: Optional[float], threshold: float = DEFAULT_THRESHOLD_USD) -> bool:
    """Missing liquidity counts as low; the threshold itself is sufficient."""
    if liquidity_usd is None:
        return True
    return liquidity_usd < threshold
