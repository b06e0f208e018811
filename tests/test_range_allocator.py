"""
Token split, liquidity units and range construction

Run:  python -m pytest tests/test_range_allocator.py -v
"""

import math

import pytest

from lp_backtest.range_allocator import (
    FULL_RANGE,
    allocate,
    build_position_range,
    liquidity_for_strategy,
    parse_range_width,
    tokens_for_strategy,
)
from lp_backtest.uniswap_v3_math import MAX_TICK, MIN_TICK, tick_to_price

BASE_DECIMALS = 8   # cbBTC
QUOTE_DECIMALS = 6  # USDC
LOW = 75_000.0
HIGH = 125_000.0
INVESTMENT = 100_000.0


def split(price: float, investment: float = INVESTMENT):
    return tokens_for_strategy(LOW, HIGH, investment, price, BASE_DECIMALS, QUOTE_DECIMALS)


class TestTokensForStrategy:

    @pytest.mark.parametrize("price", [76_000.0, 90_000.0, 100_000.0, 110_000.0, 124_000.0])
    def test_in_range_holds_both_assets(self, price: float):
        base, quote = split(price)
        assert base > 0
        assert quote > 0

    @pytest.mark.parametrize("price", [LOW, 60_000.0, 10.0])
    def test_at_or_below_lower_bound_is_all_base(self, price: float):
        base, quote = split(price)
        assert quote == 0
        assert base == pytest.approx(INVESTMENT / price)

    @pytest.mark.parametrize("price", [HIGH, 150_000.0, 1e7])
    def test_at_or_above_upper_bound_is_all_quote(self, price: float):
        base, quote = split(price)
        assert base == 0
        assert quote == pytest.approx(INVESTMENT)

    @pytest.mark.parametrize("price", [10.0, 75_000.0, 80_000.0, 100_000.0, 120_000.0, 125_000.0, 200_000.0])
    def test_value_identity(self, price: float):
        base, quote = split(price)
        assert base * price + quote == pytest.approx(INVESTMENT, rel=1e-9)

    def test_quote_share_grows_with_price(self):
        _, quote_low = split(85_000.0)
        _, quote_mid = split(100_000.0)
        _, quote_high = split(115_000.0)
        assert quote_low < quote_mid < quote_high


class TestLiquidityForStrategy:

    @pytest.mark.parametrize("price", [80_000.0, 100_000.0, 120_000.0])
    def test_in_range_estimates_coincide(self, price: float):
        """Allocator output is balanced: neither leg alone binds"""
        base, quote = split(price)
        liquidity = liquidity_for_strategy(price, LOW, HIGH, base, quote, BASE_DECIMALS, QUOTE_DECIMALS)
        base_bound = liquidity_for_strategy(price, LOW, HIGH, base, quote * 2, BASE_DECIMALS, QUOTE_DECIMALS)
        quote_bound = liquidity_for_strategy(price, LOW, HIGH, base * 2, quote, BASE_DECIMALS, QUOTE_DECIMALS)
        assert base_bound == pytest.approx(liquidity, rel=1e-9)
        assert quote_bound == pytest.approx(liquidity, rel=1e-9)

    @pytest.mark.parametrize("price", [60_000.0, 100_000.0, 150_000.0])
    def test_monotonic_in_investment(self, price: float):
        liquidities = []
        for investment in (1_000.0, 10_000.0, 100_000.0, 1_000_000.0):
            base, quote = split(price, investment)
            liquidities.append(
                liquidity_for_strategy(price, LOW, HIGH, base, quote, BASE_DECIMALS, QUOTE_DECIMALS)
            )
        assert all(a < b for a, b in zip(liquidities, liquidities[1:]))

    def test_liquidity_is_continuous_across_regions(self):
        """Just inside and just outside a bound give nearly the same L"""
        inside = 75_000.0 * (1 + 1e-9)
        base_in, quote_in = split(inside)
        base_out, quote_out = split(LOW)
        l_in = liquidity_for_strategy(inside, LOW, HIGH, base_in, quote_in, BASE_DECIMALS, QUOTE_DECIMALS)
        l_out = liquidity_for_strategy(LOW, LOW, HIGH, base_out, quote_out, BASE_DECIMALS, QUOTE_DECIMALS)
        assert l_in == pytest.approx(l_out, rel=1e-4)

    def test_bounds_order_does_not_matter(self):
        base, quote = split(100_000.0)
        forward = liquidity_for_strategy(100_000.0, LOW, HIGH, base, quote, BASE_DECIMALS, QUOTE_DECIMALS)
        reverse = liquidity_for_strategy(100_000.0, HIGH, LOW, base, quote, BASE_DECIMALS, QUOTE_DECIMALS)
        assert forward == pytest.approx(reverse)


class TestParseRangeWidth:

    @pytest.mark.parametrize("position_type,expected", [
        ('50%', 0.5),
        ('10%', 0.1),
        ('12.5%', 0.125),
        (' 30% ', 0.3),
    ])
    def test_percentages(self, position_type: str, expected: float):
        assert parse_range_width(position_type) == pytest.approx(expected)

    def test_full_range(self):
        assert parse_range_width(FULL_RANGE) is None

    @pytest.mark.parametrize("position_type", ['50', 'abc%', '0%', '-10%', '200%', '250%', ''])
    def test_invalid(self, position_type: str):
        with pytest.raises(ValueError):
            parse_range_width(position_type)


class TestBuildPositionRange:

    @pytest.mark.parametrize("spacing", [1, 10, 60, 200, 2000])
    def test_ticks_aligned_and_ordered(self, spacing: int):
        position_range = build_position_range(100_000.0, '50%', spacing, QUOTE_DECIMALS, BASE_DECIMALS)
        assert position_range.tick_lower % spacing == 0
        assert position_range.tick_upper % spacing == 0
        assert position_range.tick_lower < position_range.tick_upper

    @pytest.mark.parametrize("spacing", [1, 60, 2000])
    def test_ticks_cover_price_bounds(self, spacing: int):
        position_range = build_position_range(100_000.0, '50%', spacing, QUOTE_DECIMALS, BASE_DECIMALS)
        assert position_range.price_lower == pytest.approx(75_000.0)
        assert position_range.price_upper == pytest.approx(125_000.0)
        # Inverted ticks: the lower tick carries the higher price
        upper_edge = tick_to_price(position_range.tick_lower, QUOTE_DECIMALS, BASE_DECIMALS)
        lower_edge = tick_to_price(position_range.tick_upper, QUOTE_DECIMALS, BASE_DECIMALS)
        assert upper_edge >= 125_000.0 * (1 - 1e-4)
        assert lower_edge <= 75_000.0 * (1 + 1e-4)

    def test_entry_tick_inside(self):
        position_range = build_position_range(100_000.0, '10%', 60, QUOTE_DECIMALS, BASE_DECIMALS)
        assert position_range.contains_tick(-69081)

    def test_tiny_width_never_collapses(self):
        position_range = build_position_range(100_000.0, '0.0001%', 2000, QUOTE_DECIMALS, BASE_DECIMALS)
        assert position_range.tick_lower < position_range.tick_upper

    def test_full_range(self):
        position_range = build_position_range(100_000.0, FULL_RANGE, 60, QUOTE_DECIMALS, BASE_DECIMALS)
        assert position_range.is_full_range
        assert (position_range.tick_lower, position_range.tick_upper) == (MIN_TICK, MAX_TICK)
        assert position_range.price_lower == 0
        assert math.isinf(position_range.price_upper)


class TestAllocate:

    def test_full_range_split_is_fifty_fifty(self):
        position_range = build_position_range(100_000.0, FULL_RANGE, 60, QUOTE_DECIMALS, BASE_DECIMALS)
        allocation = allocate(INVESTMENT, 100_000.0, position_range, BASE_DECIMALS, QUOTE_DECIMALS, 10 ** 18)
        assert allocation.quote_amount == pytest.approx(INVESTMENT / 2)
        assert allocation.base_amount * 100_000.0 == pytest.approx(INVESTMENT / 2)
        assert allocation.liquidity > 0

    def test_concentrated_range_buys_more_liquidity(self):
        full = build_position_range(100_000.0, FULL_RANGE, 60, QUOTE_DECIMALS, BASE_DECIMALS)
        narrow = build_position_range(100_000.0, '20%', 60, QUOTE_DECIMALS, BASE_DECIMALS)
        l_full = allocate(INVESTMENT, 100_000.0, full, BASE_DECIMALS, QUOTE_DECIMALS, 10 ** 18).liquidity
        l_narrow = allocate(INVESTMENT, 100_000.0, narrow, BASE_DECIMALS, QUOTE_DECIMALS, 10 ** 18).liquidity
        assert l_narrow > l_full

    def test_lp_share(self):
        position_range = build_position_range(100_000.0, '50%', 60, QUOTE_DECIMALS, BASE_DECIMALS)
        allocation = allocate(INVESTMENT, 100_000.0, position_range, BASE_DECIMALS, QUOTE_DECIMALS, 10 ** 18)
        assert allocation.lp_share == pytest.approx(allocation.liquidity / 10 ** 18)

    def test_lp_share_without_pool_liquidity(self):
        position_range = build_position_range(100_000.0, '50%', 60, QUOTE_DECIMALS, BASE_DECIMALS)
        allocation = allocate(INVESTMENT, 100_000.0, position_range, BASE_DECIMALS, QUOTE_DECIMALS, 0)
        assert allocation.lp_share == 0.0
