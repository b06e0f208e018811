"""
Performance metrics for LP backtests

Position-level helpers (APR annualisation, capital-weighted APR, impermanent
loss, hold baseline, peak/trough tracking) plus series metrics over the
portfolio value history.
"""

import itertools
import math
import statistics
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

PERIODS_PER_YEAR = {
    'daily': 365,
    'hourly': 8760,
}


def periods_per_year(granularity: str) -> int:
    """Annualisation factor for a snapshot granularity"""
    try:
        return PERIODS_PER_YEAR[granularity]
    except KeyError:
        raise ValueError(
            f"Unknown granularity {granularity!r}, expected one of {sorted(PERIODS_PER_YEAR)}"
        ) from None


def annualize_return(net_income: float, capital: float, periods: int, periods_in_year: int) -> float:
    """
    Simple (non-compounded) annualised return in percent

    Formula: net_income / capital * (periods_in_year / periods) * 100
    """
    if capital <= 0 or periods <= 0:
        return 0.0
    return net_income / capital * (periods_in_year / periods) * 100


def weighted_apr(sub_positions: Iterable[Any], periods_in_year: int) -> float:
    """
    Duration-weighted mean of each sub-position's annualised net return

    Args:
        sub_positions: Objects with duration, fees, gas_cost and
            starting_capital attributes
        periods_in_year: 365 for daily data, 8760 for hourly

    Returns:
        APR in percent, 0.0 for an empty history
    """
    weighted_total = 0.0
    total_duration = 0
    for sub_position in sub_positions:
        if sub_position.duration <= 0:
            continue
        net_apr = annualize_return(
            sub_position.fees - sub_position.gas_cost,
            sub_position.starting_capital,
            sub_position.duration,
            periods_in_year,
        )
        weighted_total += net_apr * sub_position.duration
        total_duration += sub_position.duration

    return weighted_total / total_duration if total_duration > 0 else 0.0


def impermanent_loss(current_price: float, entry_price: float) -> float:
    """
    Impermanent loss of a 50/50 position in percent (<= 0)

    Formula: IL = (2 * sqrt(r) / (1 + r) - 1) * 100, r = current / entry

    The closed form ignores the range bounds, so concentrated positions lose
    more than this figure once the price moves towards a range edge.
    """
    if entry_price <= 0 or current_price <= 0:
        return 0.0
    ratio = current_price / entry_price
    return (2 * math.sqrt(ratio) / (1 + ratio) - 1) * 100


def hold_value(initial_amount: float, initial_price: float, current_price: float) -> float:
    """Value of the initial 50/50 split held without providing liquidity"""
    quote_half = initial_amount / 2
    base_units = initial_amount / 2 / initial_price
    return quote_half + base_units * current_price


class DrawdownTracker:
    """
    Peak/trough tracker for portfolio values

    The trough is only tracked once the peak has exceeded the initial
    investment, so early losses do not count as a drawdown from a gain.
    """

    def __init__(self, initial_amount: float):
        self.initial_amount = initial_amount
        self.max_value: Optional[float] = None
        self.min_value: Optional[float] = None

    def update(self, value: float) -> None:
        if self.max_value is None or value > self.max_value:
            self.max_value = value
        if self.max_value > self.initial_amount:
            if self.min_value is None or value < self.min_value:
                self.min_value = value

    @property
    def max_drawdown(self) -> float:
        """(peak - trough) / peak * 100 once a gain has been seen, else 0"""
        if self.max_value is None or self.max_value <= self.initial_amount:
            return 0.0
        trough = self.min_value if self.min_value is not None else self.max_value
        return (self.max_value - trough) / self.max_value * 100

    @property
    def max_gain(self) -> float:
        if self.max_value is None or self.initial_amount <= 0:
            return 0.0
        return (self.max_value - self.initial_amount) / self.initial_amount * 100


@dataclass
class PerformanceMetrics:
    """Summary metrics for one backtest run"""
    total_return: float = 0.0  # %
    annualized_return: float = 0.0  # %, compounded
    max_drawdown: float = 0.0  # %, peak-to-trough over the value series
    sharpe_ratio: float = 0.0
    volatility: float = 0.0  # annualised stdev of period returns (%)

    # LP specific
    total_fees_earned: float = 0.0  # USD
    gas_costs: float = 0.0  # USD
    net_fees_earned: float = 0.0  # USD
    impermanent_loss: float = 0.0  # %
    time_in_range: float = 0.0  # %

    value_history: List[Tuple[int, float]] = field(default_factory=list)  # (timestamp, value)
    return_history: List[float] = field(default_factory=list)

    num_periods: int = 0
    num_rebalances: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PerformanceAnalyzer:
    """Series metrics over a backtest's portfolio values"""

    def __init__(self, periods_in_year: int = PERIODS_PER_YEAR['daily']):
        self.periods_in_year = periods_in_year
        self.metrics = PerformanceMetrics()

    def calculate_returns(
        self,
        initial_value: float,
        final_value: float,
        periods: int
    ) -> Tuple[float, float]:
        """Total and compounded annualised return, both in percent"""
        if initial_value <= 0:
            return (0.0, 0.0)

        total_return = ((final_value - initial_value) / initial_value) * 100

        if periods <= 0:
            annualized_return = 0.0
        elif final_value <= 0:
            annualized_return = -100.0
        else:
            annualized_return = ((final_value / initial_value) ** (self.periods_in_year / periods) - 1) * 100

        return (total_return, annualized_return)

    def calculate_series_metrics(self, values: List[float]) -> Dict[str, Any]:
        """
        Period returns, max drawdown, Sharpe ratio and volatility of a value series

        Returns are percent changes between consecutive values (skipping
        non-positive bases). Sharpe and volatility are annualised with
        periods_in_year and stay 0 with fewer than two returns.
        """
        peaks = itertools.accumulate(values, max)
        drawdowns = [(peak - value) / peak * 100 for peak, value in zip(peaks, values) if peak > 0]
        returns = [(current - previous) / previous * 100 for previous, current in zip(values, values[1:]) if previous > 0]

        sharpe_ratio = 0.0
        volatility = 0.0
        if len(returns) > 1:
            spread = statistics.stdev(returns)
            annualiser = math.sqrt(self.periods_in_year)
            volatility = spread * annualiser
            if spread > 0:
                sharpe_ratio = statistics.mean(returns) / spread * annualiser

        return {
            'returns': returns,
            'max_drawdown': max(drawdowns, default=0.0),
            'sharpe_ratio': sharpe_ratio,
            'volatility': volatility,
        }

    def analyze_performance(
        self,
        initial_value: float,
        value_history: List[Tuple[int, float]],
        total_fees_earned: float = 0.0,
        gas_costs: float = 0.0,
        impermanent_loss: float = 0.0,
        time_in_range: float = 0.0,
        num_rebalances: int = 0
    ) -> PerformanceMetrics:
        """
        Build PerformanceMetrics from a (timestamp, value) series

        Args:
            initial_value: Capital at the start of the run
            value_history: Portfolio value after each period
            total_fees_earned: Cumulative LP fees (USD)
            gas_costs: Cumulative gas paid (USD)
            impermanent_loss: Final impermanent loss (%)
            time_in_range: Share of periods in range (%)
            num_rebalances: Rebalances executed

        Returns:
            PerformanceMetrics for the run
        """
        self.metrics = PerformanceMetrics()

        values = [v for _, v in value_history]
        self.metrics.value_history = list(value_history)
        self.metrics.num_periods = len(values)

        final_value = values[-1] if values else initial_value
        total_return, annualized_return = self.calculate_returns(initial_value, final_value, len(values))
        self.metrics.total_return = total_return
        self.metrics.annualized_return = annualized_return

        if len(values) > 1:
            series = self.calculate_series_metrics(values)
            self.metrics.return_history = series['returns']
            self.metrics.max_drawdown = series['max_drawdown']
            self.metrics.sharpe_ratio = series['sharpe_ratio']
            self.metrics.volatility = series['volatility']

        self.metrics.total_fees_earned = total_fees_earned
        self.metrics.gas_costs = gas_costs
        self.metrics.net_fees_earned = total_fees_earned - gas_costs
        self.metrics.impermanent_loss = impermanent_loss
        self.metrics.time_in_range = time_in_range
        self.metrics.num_rebalances = num_rebalances

        return self.metrics
