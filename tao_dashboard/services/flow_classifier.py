"""Flow vs. organic-yield heuristic for alpha balance changes.

Staking rewards grow a position by a small fraction per snapshot interval. A
jump well beyond that is almost always a deposit, purchase or rebalance
("flow") and is filtered out of staking-yield estimates. Pure functions only.
"""

import math

DEFAULT_ALPHA_PCT_THRESHOLD = 0.05
DEFAULT_VALUE_PCT_THRESHOLD = 0.10
DEFAULT_SERIES_PCT_THRESHOLD = 0.10


def is_flow_likely(
    alpha_start: float,
    alpha_end: float,
    value_tao_start: float,
    value_tao_end: float,
    alpha_pct_threshold: float = DEFAULT_ALPHA_PCT_THRESHOLD,
    value_pct_threshold: float = DEFAULT_VALUE_PCT_THRESHOLD,
) -> bool:
    """Return True when one interval's alpha increase looks like a deposit.

    Decreases and zero change are never flow: unstakes stay in the staking
    estimate as a negative signal.
    """
    alpha_delta = alpha_end - alpha_start
    value_delta = value_tao_end - value_tao_start

    if not alpha_delta > 0:
        return False

    # Balance appearing from nothing is a deposit, not yield
    if not alpha_start > 0:
        return True

    alpha_pct = abs(alpha_delta) / alpha_start
    if math.isfinite(alpha_pct) and alpha_pct > alpha_pct_threshold:
        return True

    # Small token-count change with a large TAO-denominated impact
    if value_tao_start > 0:
        value_pct = abs(value_delta) / value_tao_start
        if math.isfinite(value_pct) and value_pct > value_pct_threshold:
            return True

    return False


def is_series_flow_likely(
    alpha_first: float | None,
    alpha_last: float | None,
    threshold: float = DEFAULT_SERIES_PCT_THRESHOLD,
) -> bool:
    """Coarse whole-range check: did alpha move more than `threshold` end to end?"""
    if alpha_first is None or alpha_last is None or alpha_first <= 0:
        return False
    pct = abs(alpha_last - alpha_first) / alpha_first
    return math.isfinite(pct) and pct > threshold
