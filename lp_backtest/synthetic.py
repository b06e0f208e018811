"""
Synthetic pool snapshots from geometric Brownian motion

Used for scenario tests and for measuring how well the high/low based
active-liquidity estimate tracks the true time spent in range.
"""

import math
from typing import List, Optional

import numpy as np

from .event_processor import SECONDS_PER_DAY, Snapshot
from .uniswap_v3_math import Q128, price_to_tick

# Default accumulator growth per period: 1e-6 raw token units per liquidity unit
DEFAULT_FEE_GROWTH_PER_PERIOD = Q128 // 10 ** 6


def simulate_price_path(
    initial_price: float,
    n_periods: int,
    steps_per_period: int = 24,
    volatility: float = 0.02,
    drift: float = 0.0,
    seed: Optional[int] = None
) -> np.ndarray:
    """
    Generate intraperiod GBM price paths

    Args:
        initial_price: Opening price of the first period
        n_periods: Number of periods (rows)
        steps_per_period: Intraperiod steps after the open
        volatility: Standard deviation of the log return over one period
        drift: Expected log return per period
        seed: Seed for numpy's default_rng

    Returns:
        Array of shape (n_periods, steps_per_period + 1); column 0 of each
        row is the previous row's close
    """
    if initial_price <= 0:
        raise ValueError(f"Initial price must be positive, got {initial_price}")
    if n_periods <= 0 or steps_per_period <= 0:
        raise ValueError("n_periods and steps_per_period must be positive")

    rng = np.random.default_rng(seed)
    step_sigma = volatility / math.sqrt(steps_per_period)
    step_mu = (drift - 0.5 * volatility ** 2) / steps_per_period

    shocks = rng.normal(step_mu, step_sigma, size=n_periods * steps_per_period)
    log_prices = math.log(initial_price) + np.cumsum(shocks).reshape(n_periods, steps_per_period)

    opens = np.concatenate(([math.log(initial_price)], log_prices[:-1, -1]))
    return np.exp(np.column_stack((opens, log_prices)))


def time_in_range_percent(path: np.ndarray, price_lower: float, price_upper: float) -> float:
    """Share of path points inside [price_lower, price_upper], in percent"""
    inside = (path >= price_lower) & (path <= price_upper)
    return float(np.mean(inside) * 100)


def snapshots_from_paths(
    paths: np.ndarray,
    start_timestamp: int = 0,
    period_seconds: int = SECONDS_PER_DAY,
    token0_decimals: int = 6,
    token1_decimals: int = 8,
    fee_growth0_per_period: int = DEFAULT_FEE_GROWTH_PER_PERIOD,
    fee_growth1_per_period: int = 0,
    pool_liquidity: Optional[int] = None,
    tvl_usd: float = 0.0
) -> List[Snapshot]:
    """
    Turn price paths into pool snapshots

    Each row becomes one snapshot: the close sets the price and tick, the
    row's max/min become high/low, and the fee accumulators grow by a fixed
    amount per period.

    Args:
        paths: Output of simulate_price_path
        start_timestamp: Timestamp of the first snapshot
        period_seconds: Spacing between snapshots
        token0_decimals: Decimals of token0 (USD leg)
        token1_decimals: Decimals of token1 (volatile leg)
        fee_growth0_per_period: token0 accumulator increment (Q128)
        fee_growth1_per_period: token1 accumulator increment (Q128)
        pool_liquidity: Pool liquidity reported on every snapshot
        tvl_usd: Pool TVL reported on every snapshot

    Returns:
        List of snapshots in time order
    """
    snapshots = []
    fee_growth0 = 0
    fee_growth1 = 0

    for index, row in enumerate(np.asarray(paths, dtype=float)):
        close = float(row[-1])
        fee_growth0 += int(fee_growth0_per_period)
        fee_growth1 += int(fee_growth1_per_period)
        snapshots.append(Snapshot(
            timestamp=start_timestamp + index * period_seconds,
            tick=price_to_tick(close, token0_decimals, token1_decimals),
            token0_price=close,
            token1_price=1 / close,
            fee_growth_global0_x128=fee_growth0,
            fee_growth_global1_x128=fee_growth1,
            high=float(row.max()),
            low=float(row.min()),
            liquidity=pool_liquidity,
            tvl_usd=tvl_usd,
        ))

    return snapshots
