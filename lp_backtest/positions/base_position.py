"""
Liquidity Unit Position

Stateful ledger for one concentrated liquidity position driven through a
series of pool snapshots. The position is split into sub-positions: each
rebalance closes the current one, re-centres the range on the current price
and re-deploys the capital.

Token roles: token0 is the USD leg (quote), token1 the volatile leg (base).
"""

import logging
import math
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..fee_accrual import FeeAccrualEngine, active_liquidity_percent
from ..performance_analyzer import (
    DrawdownTracker,
    annualize_return,
    hold_value,
    impermanent_loss,
    periods_per_year,
    weighted_apr,
)
from ..range_allocator import (
    FULL_RANGE_LOWER_FACTOR,
    FULL_RANGE_UPPER_FACTOR,
    PositionRange,
    RangeAllocation,
    allocate,
    build_position_range,
)
from ..uniswap_v3_math import amounts_for_liquidity, price_to_tick

logger = logging.getLogger(__name__)


class PositionState(Enum):
    """Lifecycle states of a position"""
    ACTIVE = "active"
    CLOSED = "closed"


class PositionClosedError(RuntimeError):
    """Raised when a closed position is advanced or rebalanced"""


@dataclass(frozen=True)
class SubPositionResult:
    """
    One completed interval between two rebalances

    Attributes:
        duration: Data points covered
        fees: Fees earned in USD
        gas_cost: Gas paid when the interval was closed
        starting_capital: Capital deployed when the interval opened
    """
    duration: int
    fees: float
    gas_cost: float
    starting_capital: float

    @property
    def net_fees(self) -> float:
        return self.fees - self.gas_cost


@dataclass(frozen=True)
class PositionStatus:
    """Point-in-time summary of a position, one per data point"""
    timestamp: int
    asset_composition: str
    asset_amounts: str
    spot_price: float
    total_portfolio_value: float
    pnl: float
    return_pct: float
    apr: float
    net_gain_vs_hold: float
    capital_used_in_trading: float
    total_capital_locked: float
    lp_fees_earned: float
    net_fees_earned: float
    gas_fees_paid: float
    max_drawdown: float
    max_gain: float
    impermanent_loss: float
    time_in_range: float
    rebalancing_actions: int
    notes: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class LiquidUnitPosition:
    """
    Concentrated liquidity position simulated from pool snapshots

    Protocol specifics (tick spacing, decimals) are plain constructor
    arguments; see `positions.variants.create_position` for presets.
    """

    def __init__(
        self,
        initial_amount: float,
        position_type: str,
        initial_tick: int,
        initial_tvl: float,
        initial_token0_price: float,
        initial_token1_price: float,
        total_pool_liquidity: float,
        token0_symbol: str,
        token1_symbol: str,
        granularity: str = 'daily',
        tick_spacing: int = 60,
        token0_decimals: int = 6,
        token1_decimals: int = 18,
        use_compounding_apr: bool = True
    ):
        """
        Open the first sub-position

        Args:
            initial_amount: Investment in USD
            position_type: 'full-range' or a width such as '50%'
            initial_tick: Pool tick at entry
            initial_tvl: Pool TVL at entry (USD)
            initial_token0_price: USD price of the base asset at entry
            initial_token1_price: Inverse price at entry
            total_pool_liquidity: Pool liquidity at entry, for the LP share
            token0_symbol: Symbol of the USD leg, e.g. 'USDC'
            token1_symbol: Symbol of the volatile leg, e.g. 'cbBTC'
            granularity: 'daily' or 'hourly'
            tick_spacing: Pool tick spacing
            token0_decimals: Decimals of token0
            token1_decimals: Decimals of token1
            use_compounding_apr: Report the capital-weighted APR once a
                sub-position has completed

        Raises:
            ValueError: On a non-positive investment or price, an unknown
                granularity or a malformed position type
        """
        if not math.isfinite(initial_amount) or initial_amount <= 0:
            raise ValueError(f"Initial amount must be positive, got {initial_amount}")
        if not math.isfinite(initial_token0_price) or initial_token0_price <= 0:
            raise ValueError(f"Initial price must be positive, got {initial_token0_price}")
        if tick_spacing <= 0:
            raise ValueError(f"Tick spacing must be positive, got {tick_spacing}")

        self._periods_per_year = periods_per_year(granularity)
        self.granularity = granularity
        self.position_type = position_type
        self.tick_spacing = tick_spacing
        self.token0_symbol = token0_symbol
        self.token1_symbol = token1_symbol
        self.token0_decimals = token0_decimals
        self.token1_decimals = token1_decimals
        self.use_compounding_apr = use_compounding_apr
        self.asset_composition = f"{token0_symbol},{token1_symbol}"

        self._state = PositionState.ACTIVE
        self._initial_amount = float(initial_amount)
        self._position_capital = float(initial_amount)
        self._allocated_capital = float(initial_amount)

        self._current_tick = int(initial_tick)
        self._current_price = float(initial_token0_price)
        self._current_token1_price = float(initial_token1_price)
        self._current_timestamp = 0
        self._run_start_price = float(initial_token0_price)
        self._entry_price = float(initial_token0_price)
        self._pool_tvl = initial_tvl
        self._total_pool_liquidity = total_pool_liquidity

        self._cumulative_fees = 0.0
        self._gas_costs_total = 0.0
        self._data_points = 0
        self._data_points_in_range = 0
        self._rebalance_count = 0
        self._last_rebalance_data_point = 0
        self._current_was_rebalanced = False
        self._current_position_data_points = 0
        self._current_position_fees = 0.0
        self._position_results: List[SubPositionResult] = []

        self._fee_engine = FeeAccrualEngine(token0_decimals, token1_decimals)
        self._drawdown = DrawdownTracker(self._initial_amount)

        position_range = build_position_range(
            self._current_price, position_type, tick_spacing, token0_decimals, token1_decimals
        )
        self._deploy(
            self._position_capital, position_range,
            self._allocation_for(self._position_capital, position_range),
        )

        logger.debug(
            "Opened %s %s position: %.2f USD, ticks [%d, %d]",
            position_type, self.asset_composition, self._initial_amount,
            self._position_range.tick_lower, self._position_range.tick_upper,
        )

    def _allocation_for(self, investment: float, position_range: PositionRange) -> RangeAllocation:
        return allocate(
            investment,
            self._current_price,
            position_range,
            base_decimals=self.token1_decimals,
            quote_decimals=self.token0_decimals,
            pool_liquidity=self._total_pool_liquidity,
        )

    def _deploy(self, investment: float, position_range: PositionRange, allocation: RangeAllocation) -> None:
        self._position_range = position_range
        self._base_amount = allocation.base_amount
        self._quote_amount = allocation.quote_amount
        self._liquidity = allocation.liquidity
        self._lp_share = allocation.lp_share
        self._allocated_capital = investment

    def _ensure_active(self) -> None:
        if self._state is PositionState.CLOSED:
            raise PositionClosedError("Position is closed")

    def advance(self, snapshot: Any, was_rebalanced: bool = False) -> float:
        """
        Process the next snapshot

        Fees are only earned while the current tick is inside the range and
        the step is not the first one after a rebalance.

        Args:
            snapshot: Next pool observation (see event_processor.Snapshot)
            was_rebalanced: A rebalance happened just before this step

        Returns:
            Fee income for this step in USD

        Raises:
            PositionClosedError: If the position has been closed
        """
        self._ensure_active()

        self._data_points += 1
        self._current_position_data_points += 1
        self._current_was_rebalanced = was_rebalanced
        self._current_tick = int(snapshot.tick)
        self._current_price = float(snapshot.token0_price)
        self._current_token1_price = float(snapshot.token1_price)
        self._current_timestamp = int(snapshot.timestamp)

        tvl_usd = getattr(snapshot, 'tvl_usd', None)
        if tvl_usd:
            self._pool_tvl = tvl_usd
        pool_liquidity = getattr(snapshot, 'liquidity', None)
        if pool_liquidity:
            self._total_pool_liquidity = pool_liquidity

        in_range = not self.is_out_of_range(self._current_tick) and not was_rebalanced
        if in_range:
            self._data_points_in_range += 1

        active_pct = self.active_liquidity_percent(snapshot)
        fees = self._fee_engine.accrue(snapshot, self._liquidity, active_pct, skip=not in_range)

        self._cumulative_fees += fees
        self._current_position_fees += fees
        self._drawdown.update(self.total_portfolio_value())

        return fees

    def active_liquidity_percent(self, snapshot: Any) -> float:
        """Share of the snapshot's high/low band inside the range (0-100)"""
        return active_liquidity_percent(
            getattr(snapshot, 'low', None),
            getattr(snapshot, 'high', None),
            self._position_range.tick_lower,
            self._position_range.tick_upper,
            self.token0_decimals,
            self.token1_decimals,
            full_range=self._position_range.is_full_range,
            spot_price=float(snapshot.token0_price),
        )

    def is_out_of_range(self, tick: int) -> bool:
        return not self._position_range.contains_tick(tick)

    def rebalance(
        self,
        current_tick: int,
        current_tvl: float,
        gas_cost: float = 0.0,
        is_closing: bool = False
    ) -> None:
        """
        Close the current sub-position and, unless closing, open a new one

        The finished sub-position is recorded (if it saw any data point) and
        its fees are added to the position capital. A non-closing rebalance
        re-centres the range on the current price and re-deploys the capital;
        a closing one leaves the balances as they are.

        Args:
            current_tick: Pool tick at the rebalance
            current_tvl: Pool TVL at the rebalance
            gas_cost: Gas paid for the rebalance (USD)
            is_closing: Final close of the position

        Raises:
            PositionClosedError: If the position has been closed
            ValueError: If a non-closing rebalance meets an unusable price;
                the position is left unchanged
        """
        self._ensure_active()

        capital = self._position_capital + self._current_position_fees
        if not is_closing:
            if not math.isfinite(self._current_price) or self._current_price <= 0:
                raise ValueError(f"Cannot rebalance at price {self._current_price}")
            position_range = build_position_range(
                self._current_price, self.position_type, self.tick_spacing,
                self.token0_decimals, self.token1_decimals,
            )
            allocation = self._allocation_for(capital, position_range)

        # nothing below may raise
        if self._current_position_data_points > 0:
            self._position_results.append(SubPositionResult(
                duration=self._current_position_data_points,
                fees=self._current_position_fees,
                gas_cost=gas_cost,
                starting_capital=self._position_capital,
            ))
        self._position_capital = capital
        self._current_tick = int(current_tick)
        self._pool_tvl = current_tvl

        if is_closing:
            self._state = PositionState.CLOSED
            logger.info(
                "Closed position after %d data points, %d rebalances, fees %.2f USD",
                self._data_points, self._rebalance_count, self._cumulative_fees,
            )
        else:
            self._entry_price = self._current_price
            self._deploy(capital, position_range, allocation)
            self._gas_costs_total += gas_cost
            self._rebalance_count += 1
            self._last_rebalance_data_point = self._data_points
            logger.info(
                "Rebalance #%d at price %.2f: ticks [%d, %d], capital %.2f USD",
                self._rebalance_count, self._current_price,
                self._position_range.tick_lower, self._position_range.tick_upper,
                self._position_capital,
            )

        self._current_position_data_points = 0
        self._current_position_fees = 0.0

    # ==================== Derived metrics ====================

    def get_current_position_value(self) -> float:
        """Token balances valued at the current price (USD)"""
        return self._quote_amount + self._base_amount * self._current_price

    def total_portfolio_value(self) -> float:
        """
        Position value plus fees not yet re-deployed, minus gas paid

        Fees of earlier sub-positions are already inside the balances once
        a rebalance re-deploys them.
        """
        undeployed_fees = self._position_capital - self._allocated_capital + self._current_position_fees
        return self.get_current_position_value() + undeployed_fees - self._gas_costs_total

    def calculate_impermanent_loss(self, price: Optional[float] = None) -> float:
        """Impermanent loss (%) against the current sub-position's entry price"""
        if price is None:
            price = self._current_price
        return impermanent_loss(price, self._entry_price)

    def calculate_hold_strategy_value(self) -> float:
        """Value of the run-start 50/50 split held to now"""
        return hold_value(self._initial_amount, self._run_start_price, self._current_price)

    def get_running_apr(self) -> float:
        """Net fees over the initial investment, annualised over all data points"""
        return annualize_return(
            self._cumulative_fees - self._gas_costs_total,
            self._initial_amount,
            self._data_points,
            self._periods_per_year,
        )

    def get_gross_apr(self) -> float:
        """Running APR before gas"""
        return annualize_return(
            self._cumulative_fees, self._initial_amount, self._data_points, self._periods_per_year
        )

    def get_weighted_position_apr(self) -> float:
        """Duration-weighted APR over completed sub-positions and the open one"""
        sub_positions = list(self._position_results)
        if self._current_position_data_points > 0:
            sub_positions.append(SubPositionResult(
                duration=self._current_position_data_points,
                fees=self._current_position_fees,
                gas_cost=0.0,
                starting_capital=self._position_capital,
            ))
        return weighted_apr(sub_positions, self._periods_per_year)

    def get_apr(self) -> float:
        if self.use_compounding_apr and self._position_results:
            return self.get_weighted_position_apr()
        return self.get_running_apr()

    def get_max_drawdown(self) -> float:
        return self._drawdown.max_drawdown

    def get_max_gain(self) -> float:
        return self._drawdown.max_gain

    def get_time_in_range(self) -> float:
        if self._data_points == 0:
            return 0.0
        return self._data_points_in_range / self._data_points * 100

    def token_amounts_at_tick(self, tick: Optional[int] = None) -> Tuple[float, float]:
        """
        Token amounts the liquidity represents at a tick, from tick math

        Unlike `token_amounts`, which keeps the balances fixed between
        rebalances, this follows the price through the range. Full-range
        liquidity is evaluated over the same [1%, 100x] band around the entry
        price it was derived from.

        Returns:
            Tuple of (token0, token1) in human units
        """
        if tick is None:
            tick = self._current_tick
        if self._position_range.is_full_range:
            # inverted ticks: the higher price gives the lower tick
            tick_lower = price_to_tick(
                self._entry_price * FULL_RANGE_UPPER_FACTOR, self.token0_decimals, self.token1_decimals
            )
            tick_upper = price_to_tick(
                self._entry_price * FULL_RANGE_LOWER_FACTOR, self.token0_decimals, self.token1_decimals
            )
        else:
            tick_lower = self._position_range.tick_lower
            tick_upper = self._position_range.tick_upper
        amount0, amount1 = amounts_for_liquidity(self._liquidity, tick_lower, tick_upper, tick)
        return amount0 / 10 ** self.token0_decimals, amount1 / 10 ** self.token1_decimals

    def current_status(self, is_last_data_point: bool = False) -> PositionStatus:
        """Summary of the position after the latest data point"""
        position_value = self.get_current_position_value()
        total_value = self.total_portfolio_value()
        hold_strategy_value = self.calculate_hold_strategy_value()

        notes = ""
        if self._data_points == 1:
            notes = "Start"
        elif self._current_was_rebalanced:
            notes = "Rebalanced"
        elif is_last_data_point:
            notes = "End"

        return PositionStatus(
            timestamp=self._current_timestamp,
            asset_composition=self.asset_composition,
            asset_amounts=f"{self._base_amount:.8f},{self._quote_amount:.2f}",
            spot_price=self._current_price,
            total_portfolio_value=total_value,
            pnl=total_value - self._initial_amount,
            return_pct=(total_value - self._initial_amount) / self._initial_amount * 100,
            apr=self.get_apr(),
            net_gain_vs_hold=total_value - hold_strategy_value,
            capital_used_in_trading=position_value,
            total_capital_locked=position_value,
            lp_fees_earned=self._cumulative_fees,
            net_fees_earned=self.net_fees_earned,
            gas_fees_paid=self._gas_costs_total,
            max_drawdown=self.get_max_drawdown(),
            max_gain=self.get_max_gain(),
            impermanent_loss=self.calculate_impermanent_loss(),
            time_in_range=self.get_time_in_range(),
            rebalancing_actions=self._rebalance_count,
            notes=notes,
        )

    # ==================== Read-only state ====================

    @property
    def state(self) -> PositionState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state is PositionState.CLOSED

    @property
    def total_fees_earned(self) -> float:
        return self._cumulative_fees

    @property
    def net_fees_earned(self) -> float:
        return self._cumulative_fees - self._gas_costs_total

    @property
    def gas_costs_total(self) -> float:
        return self._gas_costs_total

    @property
    def rebalance_count(self) -> int:
        return self._rebalance_count

    @property
    def last_rebalance_data_point(self) -> int:
        return self._last_rebalance_data_point

    @property
    def data_points(self) -> int:
        return self._data_points

    @property
    def data_points_in_range(self) -> int:
        return self._data_points_in_range

    @property
    def current_position_data_points(self) -> int:
        return self._current_position_data_points

    @property
    def current_position_fees(self) -> float:
        return self._current_position_fees

    @property
    def initial_investment(self) -> float:
        return self._initial_amount

    @property
    def position_capital(self) -> float:
        return self._position_capital

    @property
    def liquidity(self) -> float:
        return self._liquidity

    @property
    def completed_positions(self) -> List[SubPositionResult]:
        return list(self._position_results)

    @property
    def token_amounts(self) -> Dict[str, float]:
        """Current balances: token0 is the USD leg, token1 the volatile leg"""
        return {
            'token0': self._quote_amount,
            'token1': self._base_amount,
        }

    @property
    def position_range(self) -> PositionRange:
        return self._position_range

    @property
    def position_info(self) -> Dict[str, Any]:
        return {
            'type': self.position_type,
            'range': self._position_range,
            'tick_spacing': self.tick_spacing,
            'share_percentage': self._lp_share,
        }

    @property
    def lp_share(self) -> float:
        return self._lp_share

    @property
    def pool_tvl(self) -> float:
        return self._pool_tvl

    @property
    def current_tick(self) -> int:
        return self._current_tick

    @property
    def current_price(self) -> float:
        return self._current_price

    @property
    def entry_price(self) -> float:
        return self._entry_price

    @property
    def previous_fee_growth(self) -> Optional[Tuple[int, int]]:
        return self._fee_engine.previous_fee_growth
