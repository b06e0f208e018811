"""
Backtest driver for a single liquidity unit position

Feeds snapshots to the position in time order, asks a rebalance signal after
each step and closes the position after the last snapshot.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .event_processor import Snapshot
from .performance_analyzer import PerformanceAnalyzer, PerformanceMetrics, periods_per_year
from .positions.base_position import LiquidUnitPosition, PositionStatus, SubPositionResult
from .positions.variants import ProtocolConfig, create_position, get_protocol

logger = logging.getLogger(__name__)

# (position, latest snapshot) -> rebalance now?
RebalanceSignal = Callable[[LiquidUnitPosition, Snapshot], bool]


def every_n_periods(n: int) -> RebalanceSignal:
    """Rebalance once the current sub-position has seen n data points"""
    if n <= 0:
        raise ValueError(f"Rebalance interval must be positive, got {n}")

    def signal(position: LiquidUnitPosition, snapshot: Snapshot) -> bool:
        return position.current_position_data_points >= n

    return signal


def when_out_of_range(position: LiquidUnitPosition, snapshot: Snapshot) -> bool:
    """Rebalance as soon as the pool tick leaves the position range"""
    return position.is_out_of_range(snapshot.tick)


@dataclass
class BacktestConfig:
    """Configuration for backtesting"""
    initial_amount: float = 10000.0  # USD
    position_type: str = '50%'
    protocol: Union[str, ProtocolConfig] = 'aerodrome'
    fee_tier: Optional[Union[int, str]] = None  # overrides the protocol tick spacing
    token0_symbol: str = 'USDC'
    token1_symbol: str = 'cbBTC'
    granularity: str = 'daily'
    use_compounding_apr: bool = True
    gas_cost_per_rebalance: float = 0.0  # USD
    total_pool_liquidity: float = 0.0  # used when snapshots carry no liquidity

    @property
    def protocol_config(self) -> ProtocolConfig:
        protocol = self.protocol
        if isinstance(protocol, str):
            protocol = get_protocol(protocol)
        if self.fee_tier is not None:
            protocol = protocol.with_fee_tier(self.fee_tier)
        return protocol


@dataclass
class BacktestResult:
    """Result of a single position backtest"""
    config: BacktestConfig
    final_status: PositionStatus
    metrics: PerformanceMetrics
    total_fees_earned: float
    net_fees_earned: float
    total_gas_cost: float
    rebalance_count: int
    time_in_range_pct: float
    apr: float
    statuses: List[PositionStatus] = field(default_factory=list)
    completed_positions: List[SubPositionResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'position_type': self.config.position_type,
            'protocol': self.config.protocol_config.name,
            'initial_value': self.config.initial_amount,
            'final_value': self.final_status.total_portfolio_value,
            'total_return_pct': self.metrics.total_return,
            'annualized_return_pct': self.metrics.annualized_return,
            'max_drawdown_pct': self.metrics.max_drawdown,
            'sharpe_ratio': self.metrics.sharpe_ratio,
            'volatility': self.metrics.volatility,
            'apr': self.apr,
            'total_fees_earned': self.total_fees_earned,
            'net_fees_earned': self.net_fees_earned,
            'rebalance_count': self.rebalance_count,
            'gas_cost': self.total_gas_cost,
            'impermanent_loss_pct': self.final_status.impermanent_loss,
            'time_in_range_pct': self.time_in_range_pct,
            'sub_positions': len(self.completed_positions),
        }


class BacktestEngine:
    """
    Runs one position over a snapshot series

    The rebalance decision is delegated to a signal; the engine only
    executes it and records the result.
    """

    def __init__(self, config: BacktestConfig):
        self.config = config
        self.analyzer = PerformanceAnalyzer(periods_per_year(config.granularity))

    def create_position(self, snapshot: Snapshot) -> LiquidUnitPosition:
        """Open the position at the first snapshot's pool state"""
        pool_liquidity = snapshot.liquidity or self.config.total_pool_liquidity
        return create_position(
            self.config.protocol_config,
            initial_amount=self.config.initial_amount,
            position_type=self.config.position_type,
            initial_tick=snapshot.tick,
            initial_tvl=snapshot.tvl_usd,
            initial_token0_price=snapshot.token0_price,
            initial_token1_price=snapshot.token1_price,
            total_pool_liquidity=pool_liquidity,
            token0_symbol=self.config.token0_symbol,
            token1_symbol=self.config.token1_symbol,
            granularity=self.config.granularity,
            use_compounding_apr=self.config.use_compounding_apr,
        )

    def run(
        self,
        snapshots: Iterable[Snapshot],
        rebalance_signal: Optional[RebalanceSignal] = None
    ) -> BacktestResult:
        """
        Run the backtest

        Args:
            snapshots: Pool snapshots (sorted by timestamp here)
            rebalance_signal: Called after every step except the last; a
                True result rebalances at that snapshot

        Returns:
            BacktestResult with per-step statuses and summary metrics

        Raises:
            ValueError: If there are no snapshots
        """
        ordered = sorted(snapshots, key=lambda s: s.timestamp)
        if not ordered:
            raise ValueError("No snapshots to backtest")

        position = self.create_position(ordered[0])
        logger.info(
            "Backtest start: %s %s, %d snapshots, %.2f USD",
            self.config.position_type, position.asset_composition, len(ordered), self.config.initial_amount,
        )

        statuses: List[PositionStatus] = []
        value_history = []
        last_index = len(ordered) - 1
        was_rebalanced = False

        for index, snapshot in enumerate(ordered):
            position.advance(snapshot, was_rebalanced=was_rebalanced)
            status = position.current_status(is_last_data_point=index == last_index)
            statuses.append(status)
            value_history.append((snapshot.timestamp, status.total_portfolio_value))

            was_rebalanced = False
            if rebalance_signal is not None and index < last_index and rebalance_signal(position, snapshot):
                position.rebalance(snapshot.tick, snapshot.tvl_usd, gas_cost=self.config.gas_cost_per_rebalance)
                was_rebalanced = True

        last = ordered[-1]
        position.rebalance(last.tick, last.tvl_usd, is_closing=True)
        final_status = position.current_status(is_last_data_point=True)

        metrics = self.analyzer.analyze_performance(
            initial_value=self.config.initial_amount,
            value_history=value_history,
            total_fees_earned=position.total_fees_earned,
            gas_costs=position.gas_costs_total,
            impermanent_loss=final_status.impermanent_loss,
            time_in_range=position.get_time_in_range(),
            num_rebalances=position.rebalance_count,
        )

        logger.info(
            "Backtest end: fees %.2f USD, %d rebalances, APR %.2f%%",
            position.total_fees_earned, position.rebalance_count, final_status.apr,
        )

        return BacktestResult(
            config=self.config,
            final_status=final_status,
            metrics=metrics,
            total_fees_earned=position.total_fees_earned,
            net_fees_earned=position.net_fees_earned,
            total_gas_cost=position.gas_costs_total,
            rebalance_count=position.rebalance_count,
            time_in_range_pct=position.get_time_in_range(),
            apr=final_status.apr,
            statuses=statuses,
            completed_positions=position.completed_positions,
        )
