"""
Fee accrual from fee-growth accumulators and the active-liquidity estimate

Run:  python -m pytest tests/test_fee_accrual.py -v
"""

import dataclasses
import logging

import pytest

from lp_backtest.fee_accrual import FeeAccrualEngine, active_liquidity_percent
from lp_backtest.range_allocator import build_position_range
from lp_backtest.uniswap_v3_math import Q128, price_to_tick

D0 = 6
D1 = 8


@pytest.fixture
def engine():
    return FeeAccrualEngine(token0_decimals=D0, token1_decimals=D1)


class TestFirstSnapshot:

    @pytest.mark.parametrize("growth", [0, 1, Q128 * 10 ** 12, 2 ** 255])
    @pytest.mark.parametrize("liquidity", [0.0, 1.0, 1e24])
    def test_first_snapshot_earns_nothing(self, engine, make_snapshot, growth: int, liquidity: float):
        snapshot = make_snapshot(fee_growth0=growth, fee_growth1=growth)
        assert engine.accrue(snapshot, liquidity, 100.0) == 0.0

    def test_first_snapshot_seeds_baseline(self, engine, make_snapshot):
        engine.accrue(make_snapshot(fee_growth0=7, fee_growth1=11), 1.0, 100.0)
        assert engine.previous_fee_growth == (7, 11)
        assert engine.is_seeded


class TestAccrue:

    def test_identical_accumulators_earn_exactly_zero(self, engine, make_snapshot):
        snapshot = make_snapshot(fee_growth0=Q128 * 10 ** 9, fee_growth1=Q128 * 10 ** 9)
        engine.accrue(snapshot, 1e24, 100.0)
        assert engine.accrue(snapshot, 1e24, 100.0) == 0.0

    def test_known_income(self, engine, make_snapshot):
        engine.accrue(make_snapshot(fee_growth0=0, fee_growth1=0), 3.0, 50.0)
        # 5 USDC and 2 cbBTC per liquidity unit
        later = make_snapshot(
            timestamp=86400,
            price=100_000.0,
            fee_growth0=5 * Q128 * 10 ** D0,
            fee_growth1=2 * Q128 * 10 ** D1,
        )
        fees = engine.accrue(later, 3.0, 50.0)
        assert fees == pytest.approx(5 * 3 * 0.5 + 2 * 3 * 0.5 * 100_000.0)

    def test_income_scales_with_liquidity_and_active_share(self, engine, make_snapshot):
        base = make_snapshot(fee_growth0=0)
        later = make_snapshot(fee_growth0=Q128 * 10 ** D0)

        engine.accrue(base, 1.0, 100.0)
        full = engine.accrue(later, 10.0, 100.0)

        other = FeeAccrualEngine(D0, D1)
        other.accrue(base, 1.0, 100.0)
        half = other.accrue(later, 10.0, 50.0)

        assert full == pytest.approx(10.0)
        assert half == pytest.approx(full / 2)

    def test_accumulators_beyond_float_precision(self, engine, make_snapshot):
        """Deltas are exact integers even when the totals are huge"""
        start = 2 ** 250
        engine.accrue(make_snapshot(fee_growth0=start), 1.0, 100.0)
        fees = engine.accrue(make_snapshot(fee_growth0=start + Q128 * 10 ** D0), 1.0, 100.0)
        assert fees == pytest.approx(1.0)

    def test_string_accumulators(self, engine, make_snapshot):
        engine.accrue(make_snapshot(fee_growth0='0'), 1.0, 100.0)
        fees = engine.accrue(make_snapshot(fee_growth0=str(Q128 * 10 ** D0)), 1.0, 100.0)
        assert fees == pytest.approx(1.0)


class TestSkip:

    def test_skip_earns_nothing_and_moves_baseline(self, engine, make_snapshot):
        engine.accrue(make_snapshot(fee_growth0=0, fee_growth1=0), 1.0, 100.0)
        skipped = make_snapshot(fee_growth0=Q128 * 10 ** D0, fee_growth1=5)
        assert engine.accrue(skipped, 1.0, 100.0, skip=True) == 0.0
        assert engine.previous_fee_growth == (Q128 * 10 ** D0, 5)

    def test_growth_during_skip_is_not_earned_later(self, engine, make_snapshot):
        engine.accrue(make_snapshot(fee_growth0=0), 1.0, 100.0)
        engine.accrue(make_snapshot(fee_growth0=Q128 * 10 ** D0), 1.0, 100.0, skip=True)
        fees = engine.accrue(make_snapshot(fee_growth0=3 * Q128 * 10 ** D0), 1.0, 100.0)
        assert fees == pytest.approx(2.0)


class TestDegradedInputs:

    def test_negative_delta_contributes_zero(self, engine, make_snapshot, caplog):
        engine.accrue(make_snapshot(fee_growth0=10 * Q128 * 10 ** D0, fee_growth1=0), 1.0, 100.0)
        reset = make_snapshot(price=100_000.0, fee_growth0=0, fee_growth1=Q128 * 10 ** D1)
        with caplog.at_level(logging.WARNING, logger='lp_backtest.fee_accrual'):
            fees = engine.accrue(reset, 1.0, 100.0)
        assert fees == pytest.approx(100_000.0)
        assert 'decreased' in caplog.text

    def test_malformed_accumulator_keeps_baseline(self, engine, make_snapshot, caplog):
        engine.accrue(make_snapshot(fee_growth0=5, fee_growth1=6), 1.0, 100.0)
        broken = dataclasses.replace(make_snapshot(), fee_growth_global0_x128='not-a-number')
        with caplog.at_level(logging.WARNING, logger='lp_backtest.fee_accrual'):
            assert engine.accrue(broken, 1.0, 100.0) == 0.0
        assert engine.previous_fee_growth == (5, 6)
        assert caplog.records

    def test_float_accumulator_rejected(self, engine, make_snapshot):
        broken = dataclasses.replace(make_snapshot(), fee_growth_global1_x128=1.5)
        assert engine.accrue(broken, 1.0, 100.0) == 0.0
        assert not engine.is_seeded

    def test_bad_price_degrades_to_zero(self, engine, make_snapshot, caplog):
        engine.accrue(make_snapshot(fee_growth1=0), 1.0, 100.0)
        broken = dataclasses.replace(make_snapshot(fee_growth1=Q128 * 10 ** D1), token0_price='n/a')
        with caplog.at_level(logging.WARNING, logger='lp_backtest.fee_accrual'):
            assert engine.accrue(broken, 1.0, 100.0) == 0.0
        assert 'failed' in caplog.text

    def test_non_finite_income_degrades_to_zero(self, engine, make_snapshot):
        engine.accrue(make_snapshot(fee_growth1=0), 1.0, 100.0)
        broken = dataclasses.replace(make_snapshot(fee_growth1=Q128 * 10 ** D1), token0_price=float('nan'))
        assert engine.accrue(broken, 1.0, 100.0) == 0.0


class TestActiveLiquidityPercent:
    """Range [-71340, -66180] = 50% around 100,000 with spacing 60"""

    @pytest.fixture
    def ticks(self):
        position_range = build_position_range(100_000.0, '50%', 60, D0, D1)
        return position_range.tick_lower, position_range.tick_upper

    def active(self, low, high, ticks, **kwargs):
        return active_liquidity_percent(low, high, ticks[0], ticks[1], D0, D1, **kwargs)

    def test_band_inside_range(self, ticks):
        assert self.active(95_000.0, 105_000.0, ticks) == 100.0

    @pytest.mark.parametrize("low,high", [(130_000.0, 140_000.0), (50_000.0, 60_000.0)])
    def test_disjoint_band(self, ticks, low, high):
        assert self.active(low, high, ticks) == 0.0

    def test_partial_overlap(self, ticks):
        pct = self.active(118_000.0, 130_000.0, ticks)
        assert 0.0 < pct < 100.0

    def test_band_covering_range(self, ticks):
        pct = self.active(10_000.0, 1_000_000.0, ticks)
        tick_low = price_to_tick(10_000.0, D0, D1)
        tick_high = price_to_tick(1_000_000.0, D0, D1)
        expected = (ticks[1] - ticks[0]) / (tick_low - tick_high) * 100
        assert pct == pytest.approx(expected)

    def test_low_high_order_is_irrelevant(self, ticks):
        assert self.active(130_000.0, 118_000.0, ticks) == self.active(118_000.0, 130_000.0, ticks)

    def test_zero_width_band_inside_range(self, ticks):
        assert self.active(100_000.0, 100_000.0, ticks) == 100.0

    def test_zero_width_band_outside_range(self, ticks):
        assert self.active(200_000.0, 200_000.0, ticks) == 0.0

    @pytest.mark.parametrize("low,high", [
        (float('nan'), 100_000.0),
        (100_000.0, float('inf')),
        (0.0, 100_000.0),
        (-5.0, 100_000.0),
        (1e-310, 105_000.0),
    ])
    def test_unusable_inputs(self, ticks, low, high):
        assert self.active(low, high, ticks) == 0.0

    @pytest.mark.parametrize("low,high", [(float('nan'), float('nan')), (1.0, 1e9), (None, None)])
    def test_full_range_always_active(self, ticks, low, high):
        assert self.active(low, high, ticks, full_range=True) == 100.0

    def test_missing_band_uses_spot(self, ticks):
        assert self.active(None, None, ticks, spot_price=100_000.0) == 100.0
        assert self.active(None, None, ticks, spot_price=300_000.0) == 0.0

    def test_missing_band_without_spot(self, ticks):
        assert self.active(None, None, ticks) == 0.0
