"""
Shared fixtures: a USDC/cbBTC-like pool (token0 = USDC, 6 decimals;
token1 = cbBTC, 8 decimals) with a fine tick spacing.
"""

from typing import Optional

import pytest

from lp_backtest.event_processor import Snapshot
from lp_backtest.positions.base_position import LiquidUnitPosition
from lp_backtest.uniswap_v3_math import Q128, price_to_tick

TOKEN0_DECIMALS = 6
TOKEN1_DECIMALS = 8
TICK_SPACING = 60
ENTRY_PRICE = 100_000.0
INVESTMENT = 100_000.0
POOL_LIQUIDITY = 10 ** 18

# One USDC of fees per liquidity unit, in Q128 fee-growth terms
ONE_USDC_PER_UNIT = Q128 * 10 ** TOKEN0_DECIMALS


def build_snapshot(
    timestamp: int = 0,
    price: float = ENTRY_PRICE,
    fee_growth0: int = 0,
    fee_growth1: int = 0,
    high: Optional[float] = None,
    low: Optional[float] = None,
    tick: Optional[int] = None,
    liquidity: Optional[int] = None,
    tvl_usd: float = 1_000_000.0
) -> Snapshot:
    if tick is None:
        tick = price_to_tick(price, TOKEN0_DECIMALS, TOKEN1_DECIMALS)
    return Snapshot(
        timestamp=timestamp,
        tick=tick,
        token0_price=price,
        token1_price=1 / price,
        fee_growth_global0_x128=fee_growth0,
        fee_growth_global1_x128=fee_growth1,
        high=high,
        low=low,
        liquidity=liquidity,
        tvl_usd=tvl_usd,
    )


def build_position(
    position_type: str = '50%',
    price: float = ENTRY_PRICE,
    initial_amount: float = INVESTMENT,
    granularity: str = 'daily',
    use_compounding_apr: bool = True
) -> LiquidUnitPosition:
    return LiquidUnitPosition(
        initial_amount=initial_amount,
        position_type=position_type,
        initial_tick=price_to_tick(price, TOKEN0_DECIMALS, TOKEN1_DECIMALS),
        initial_tvl=1_000_000.0,
        initial_token0_price=price,
        initial_token1_price=1 / price,
        total_pool_liquidity=POOL_LIQUIDITY,
        token0_symbol='USDC',
        token1_symbol='cbBTC',
        granularity=granularity,
        tick_spacing=TICK_SPACING,
        token0_decimals=TOKEN0_DECIMALS,
        token1_decimals=TOKEN1_DECIMALS,
        use_compounding_apr=use_compounding_apr,
    )


@pytest.fixture
def make_snapshot():
    return build_snapshot


@pytest.fixture
def make_position():
    return build_position


@pytest.fixture
def position():
    return build_position()
