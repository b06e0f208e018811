"""
Fee Accrual from Global Fee-Growth Accumulators

Per-interval LP fee income is derived from the pool's cumulative
feeGrowthGlobal{0,1}X128 counters:

    fees_token = (growth_now - growth_prev) / 2^128 / 10^decimals * L * active%

Deltas are taken on Python ints; only the scaled result is a float.
"""

import logging
import math
from typing import Any, Optional, Tuple

from .uniswap_v3_math import Q128, price_to_tick

logger = logging.getLogger(__name__)


def active_liquidity_percent(
    low: Optional[float],
    high: Optional[float],
    tick_lower: int,
    tick_upper: int,
    token0_decimals: int,
    token1_decimals: int,
    full_range: bool = False,
    spot_price: Optional[float] = None
) -> float:
    """
    Estimate the share of a period the price spent inside a tick range

    Converts the period's low/high prices to ticks and measures how much of
    that band overlaps [tick_lower, tick_upper]. Only the period's extremes
    are known, so this is an approximation of the true time in range.

    Args:
        low: Period low price (quote per base), falls back to spot_price
        high: Period high price (quote per base), falls back to spot_price
        tick_lower: Position lower tick
        tick_upper: Position upper tick
        token0_decimals: Decimals of token0
        token1_decimals: Decimals of token1
        full_range: Full-range positions are always 100% active
        spot_price: Price used when low or high is missing

    Returns:
        Active percentage in [0, 100]
    """
    if full_range:
        return 100.0

    low = spot_price if low is None else low
    high = spot_price if high is None else high
    if low is None or high is None:
        return 0.0
    if not (math.isfinite(low) and math.isfinite(high)) or low <= 0 or high <= 0:
        return 0.0

    try:
        tick_a = price_to_tick(low, token0_decimals, token1_decimals)
        tick_b = price_to_tick(high, token0_decimals, token1_decimals)
    except ValueError:
        logger.warning("Unusable period band low=%r high=%r, treating as inactive", low, high)
        return 0.0
    band_lower = min(tick_a, tick_b)
    band_upper = max(tick_a, tick_b)

    overlap_lower = max(band_lower, tick_lower)
    overlap_upper = min(band_upper, tick_upper)
    if overlap_upper < overlap_lower:
        return 0.0

    band_width = band_upper - band_lower
    if band_width == 0:
        # price never left a single tick, and that tick is in range
        return 100.0

    overlap = overlap_upper - overlap_lower
    if overlap <= 0:
        return 0.0

    return min(100.0, max(0.0, overlap / band_width * 100))


class FeeAccrualEngine:
    """
    Incremental fee calculator holding the previous pair of accumulators

    Attributes:
        token0_decimals: Decimals of token0 (USD leg)
        token1_decimals: Decimals of token1 (priced leg)
    """

    def __init__(self, token0_decimals: int, token1_decimals: int):
        self.token0_decimals = token0_decimals
        self.token1_decimals = token1_decimals
        self._previous_fee_growth: Optional[Tuple[int, int]] = None

    @property
    def previous_fee_growth(self) -> Optional[Tuple[int, int]]:
        return self._previous_fee_growth

    @property
    def is_seeded(self) -> bool:
        return self._previous_fee_growth is not None

    def accrue(
        self,
        snapshot: Any,
        liquidity: float,
        active_liquidity_pct: float,
        skip: bool = False
    ) -> float:
        """
        USD fee income for the interval ending at `snapshot`

        The first snapshot only seeds the baseline. With skip=True (out of
        range, or the first interval after a rebalance) no fees are earned but
        the baseline still moves to the new accumulators.

        Args:
            snapshot: Object exposing fee_growth_global0_x128,
                fee_growth_global1_x128, token0_price and timestamp
            liquidity: Position liquidity units
            active_liquidity_pct: Active share of the period (0-100)
            skip: Earn nothing for this interval

        Returns:
            Fee income in USD, 0.0 when nothing can be computed
        """
        timestamp = getattr(snapshot, 'timestamp', None)
        try:
            current = (
                _as_int(snapshot.fee_growth_global0_x128),
                _as_int(snapshot.fee_growth_global1_x128),
            )
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning("Unreadable fee growth at %s, fees set to 0: %s", timestamp, e)
            return 0.0

        previous = self._previous_fee_growth
        self._previous_fee_growth = current

        if previous is None:
            return 0.0
        if skip:
            logger.debug("Fee accrual skipped at %s", timestamp)
            return 0.0

        try:
            fees = self._fees_between(previous, current, snapshot.token0_price, liquidity, active_liquidity_pct)
        except Exception as e:
            logger.warning("Fee computation failed at %s, fees set to 0: %s", timestamp, e)
            return 0.0

        if not math.isfinite(fees):
            logger.warning("Non-finite fee income at %s, fees set to 0", timestamp)
            return 0.0
        return fees

    def _fees_between(
        self,
        previous: Tuple[int, int],
        current: Tuple[int, int],
        token0_price: float,
        liquidity: float,
        active_liquidity_pct: float
    ) -> float:
        delta0 = current[0] - previous[0]
        delta1 = current[1] - previous[1]

        if delta0 < 0 or delta1 < 0:
            logger.warning("Fee growth decreased (pool reset?), negative legs ignored")
        delta0 = max(delta0, 0)
        delta1 = max(delta1, 0)

        active_fraction = active_liquidity_pct / 100
        fees_token0 = delta0 / Q128 / 10 ** self.token0_decimals * liquidity * active_fraction
        fees_token1 = delta1 / Q128 / 10 ** self.token1_decimals * liquidity * active_fraction

        return fees_token0 + fees_token1 * float(token0_price)


def _as_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value.strip())
    raise TypeError(f"Expected an integer accumulator, got {type(value).__name__}")
