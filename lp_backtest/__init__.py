"""
Concentrated liquidity position backtester
"""
from .event_processor import Snapshot, SnapshotLoader
from .fee_accrual import FeeAccrualEngine, active_liquidity_percent
from .range_allocator import PositionRange, RangeAllocation, allocate
from .positions import (
    AERODROME,
    UNISWAP_V3,
    LiquidUnitPosition,
    PositionClosedError,
    PositionState,
    PositionStatus,
    ProtocolConfig,
    SubPositionResult,
    create_position,
)
from .backtest_engine import BacktestConfig, BacktestEngine, BacktestResult, every_n_periods, when_out_of_range
from .performance_analyzer import PerformanceAnalyzer, PerformanceMetrics

__version__ = '1.0.0'
__all__ = [
    'Snapshot',
    'SnapshotLoader',
    'FeeAccrualEngine',
    'active_liquidity_percent',
    'PositionRange',
    'RangeAllocation',
    'allocate',
    'LiquidUnitPosition',
    'PositionClosedError',
    'PositionState',
    'PositionStatus',
    'SubPositionResult',
    'ProtocolConfig',
    'UNISWAP_V3',
    'AERODROME',
    'create_position',
    'BacktestConfig',
    'BacktestEngine',
    'BacktestResult',
    'every_n_periods',
    'when_out_of_range',
    'PerformanceAnalyzer',
    'PerformanceMetrics',
]
