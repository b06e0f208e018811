"""
Protocol presets for liquidity unit positions

A protocol only changes default values (tick spacing and token decimals);
every preset builds the same LiquidUnitPosition through `create_position`.
"""

from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Union

from .base_position import LiquidUnitPosition

# Uniswap V3 fee tiers (hundredths of a bip) -> tick spacing
FEE_TIER_TICK_SPACING = MappingProxyType({
    100: 1,
    500: 10,
    3000: 60,
    10000: 200,
})


@dataclass(frozen=True)
class ProtocolConfig:
    """
    Protocol defaults for a pool family

    Attributes:
        name: Protocol identifier
        tick_spacing: Pool tick spacing
        token0_decimals: Decimals of token0 (USD leg)
        token1_decimals: Decimals of token1 (volatile leg)
    """
    name: str
    tick_spacing: int
    token0_decimals: int
    token1_decimals: int

    def with_fee_tier(self, fee: Union[int, str]) -> 'ProtocolConfig':
        """Copy of this config with the tick spacing of a fee tier"""
        return replace(self, tick_spacing=tick_spacing_for_fee(fee))


UNISWAP_V3 = ProtocolConfig(name='uniswap-v3', tick_spacing=60, token0_decimals=6, token1_decimals=18)
AERODROME = ProtocolConfig(name='aerodrome', tick_spacing=2000, token0_decimals=6, token1_decimals=8)

PROTOCOLS = MappingProxyType({
    UNISWAP_V3.name: UNISWAP_V3,
    AERODROME.name: AERODROME,
})


def get_protocol(name: str) -> ProtocolConfig:
    """Look up a preset by name, e.g. 'aerodrome'"""
    try:
        return PROTOCOLS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown protocol {name!r}, expected one of {sorted(PROTOCOLS)}") from None


def tick_spacing_for_fee(fee: Union[int, str]) -> int:
    """
    Get tick spacing for a fee tier

    Args:
        fee: Fee tier as an int (500, 3000, 10000) or a percentage string
            ('0.05%', '0.3%', '1%')

    Returns:
        Tick spacing
    """
    if isinstance(fee, str):
        text = fee.strip().rstrip('%')
        try:
            fee = int(round(float(text) * 10000))
        except ValueError:
            raise ValueError(f"Invalid fee percentage: {fee!r}") from None

    try:
        return FEE_TIER_TICK_SPACING[fee]
    except KeyError:
        raise ValueError(f"Unsupported fee tier {fee}, expected one of {sorted(FEE_TIER_TICK_SPACING)}") from None


def create_position(
    protocol: Union[ProtocolConfig, str],
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
    use_compounding_apr: bool = True
) -> LiquidUnitPosition:
    """
    Build a LiquidUnitPosition with a protocol's tick spacing and decimals

    Args:
        protocol: ProtocolConfig or preset name
        (remaining arguments as for LiquidUnitPosition)

    Returns:
        New active position
    """
    if isinstance(protocol, str):
        protocol = get_protocol(protocol)

    return LiquidUnitPosition(
        initial_amount=initial_amount,
        position_type=position_type,
        initial_tick=initial_tick,
        initial_tvl=initial_tvl,
        initial_token0_price=initial_token0_price,
        initial_token1_price=initial_token1_price,
        total_pool_liquidity=total_pool_liquidity,
        token0_symbol=token0_symbol,
        token1_symbol=token1_symbol,
        granularity=granularity,
        tick_spacing=protocol.tick_spacing,
        token0_decimals=protocol.token0_decimals,
        token1_decimals=protocol.token1_decimals,
        use_compounding_apr=use_compounding_apr,
    )
