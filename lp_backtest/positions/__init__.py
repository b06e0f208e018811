"""
Position models for concentrated liquidity backtests
"""

from .base_position import (
    LiquidUnitPosition,
    PositionClosedError,
    PositionState,
    PositionStatus,
    SubPositionResult,
)
from .variants import (
    AERODROME,
    PROTOCOLS,
    UNISWAP_V3,
    ProtocolConfig,
    create_position,
    get_protocol,
    tick_spacing_for_fee,
)

__all__ = [
    'LiquidUnitPosition',
    'PositionClosedError',
    'PositionState',
    'PositionStatus',
    'SubPositionResult',
    'ProtocolConfig',
    'UNISWAP_V3',
    'AERODROME',
    'PROTOCOLS',
    'get_protocol',
    'tick_spacing_for_fee',
    'create_position',
]
