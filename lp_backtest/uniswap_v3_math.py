"""
Uniswap V3 Tick and Price Math

Conversions between human-readable prices and tick indices for a pool whose
token0 is the quote (USD) leg and token1 the volatile base leg, e.g.
USDC/cbBTC on Aerodrome or USDC/WETH on Uniswap.

Key concepts:
- tick: discrete log-scaled price index, raw_price = 1.0001^tick
- raw_price is token1 per token0 in smallest units, so a *higher* USD price
  of the base asset maps to a *lower* tick
- sqrtPriceX96: sqrt(price) * 2^96, the contract's fixed-point price
- decimal adjustment: human prices are rescaled by 10^(quote - base decimals)
  before any square-root price math; allocation and liquidity derivation
  both go through `decimal_adjustment` / `adjusted_sqrt_price` below
"""

import math
from decimal import Decimal, localcontext
from typing import Tuple

# Uniswap V3 Constants
Q96 = 2 ** 96
Q128 = 2 ** 128
MIN_TICK = -887272
MAX_TICK = 887272
TICK_BASE = 1.0001

LOG_TICK_BASE = math.log(TICK_BASE)


def price_to_tick(price: float, token0_decimals: int, token1_decimals: int) -> int:
    """
    Convert a human price (token0 per token1, e.g. USDC per cbBTC) to a tick

    Formula: tick = round(log((1 / price) * 10^(d1 - d0)) / log(1.0001))

    Args:
        price: Spot price of token1 expressed in token0
        token0_decimals: Decimals of token0 (quote leg)
        token1_decimals: Decimals of token1 (base leg)

    Returns:
        Nearest tick index

    Raises:
        ValueError: If price is zero, negative, not finite, or so extreme
            that its scaled inverse overflows or underflows
    """
    if not math.isfinite(price) or price <= 0:
        raise ValueError(f"Price must be positive and finite, got {price}")

    inverted_price = 1.0 / price
    value = inverted_price * math.pow(10, token1_decimals - token0_decimals)
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"Price {price} has no representable tick")
    return int(round(math.log(value) / LOG_TICK_BASE))


def tick_to_price(tick: int, token0_decimals: int, token1_decimals: int) -> float:
    """
    Convert a tick back to a human price (token0 per token1)

    Inverse of `price_to_tick`: price = 10^(d1 - d0) / 1.0001^tick
    """
    # exp/log keeps extreme ticks from overflowing the power operator
    exponent = (token1_decimals - token0_decimals) * math.log(10) - tick * LOG_TICK_BASE
    return math.exp(exponent)


def align_tick_to_spacing(tick: int, tick_spacing: int) -> int:
    """
    Align tick to the nearest tick spacing boundary (floor)

    Args:
        tick: Raw tick value
        tick_spacing: Pool tick spacing

    Returns:
        Aligned tick
    """
    return (tick // tick_spacing) * tick_spacing


def decimal_adjustment(base_decimals: int, quote_decimals: int) -> float:
    """
    Scale factor turning a human quote-per-base price into smallest-unit terms

    raw_price = human_price * 10^(quote_decimals - base_decimals)

    Both the token split and the liquidity-unit formula must use this factor;
    mixing conventions silently corrupts the LP's fee share.
    """
    return math.pow(10, quote_decimals - base_decimals)


def adjusted_sqrt_price(price: float, adjustment: float) -> float:
    """Square root of a human price after applying the decimal adjustment"""
    return math.sqrt(price * adjustment)


def tick_to_sqrt_price_x96(tick: int) -> int:
    """
    Convert tick to sqrtPriceX96 (Q64.96 format)

    Formula: sqrtPriceX96 = sqrt(1.0001^tick) * 2^96

    Args:
        tick: The tick value

    Returns:
        sqrtPriceX96 in Q64.96 format
    """
    if tick < MIN_TICK or tick > MAX_TICK:
        raise ValueError(f"Tick {tick} out of range [{MIN_TICK}, {MAX_TICK}]")

    with localcontext() as ctx:
        ctx.prec = 78
        sqrt_ratio = Decimal('1.0001') ** (Decimal(tick) / Decimal('2'))
        return int(sqrt_ratio * Decimal(Q96))


def amounts_for_liquidity(
    liquidity: float,
    tick_lower: int,
    tick_upper: int,
    current_tick: int
) -> Tuple[int, int]:
    """
    Raw token amounts held by `liquidity` across [tick_lower, tick_upper]

    - current_tick < tick_lower: all token0
    - current_tick >= tick_upper: all token1
    - otherwise: token0 above the current price, token1 below it

    Args:
        liquidity: Liquidity units (raw, as produced by the range allocator)
        tick_lower: Position lower tick
        tick_upper: Position upper tick
        current_tick: Current pool tick

    Returns:
        Tuple of (amount0, amount1) in smallest token units
    """
    if liquidity <= 0 or tick_lower >= tick_upper:
        return 0, 0

    tick_lower = max(MIN_TICK, tick_lower)
    tick_upper = min(MAX_TICK, tick_upper)
    liquidity_int = int(liquidity)

    sqrt_lower = tick_to_sqrt_price_x96(tick_lower)
    sqrt_upper = tick_to_sqrt_price_x96(tick_upper)

    if current_tick < tick_lower:
        return _amount0_delta(sqrt_lower, sqrt_upper, liquidity_int), 0
    if current_tick >= tick_upper:
        return 0, _amount1_delta(sqrt_lower, sqrt_upper, liquidity_int)

    sqrt_current = tick_to_sqrt_price_x96(current_tick)
    return (
        _amount0_delta(sqrt_current, sqrt_upper, liquidity_int),
        _amount1_delta(sqrt_lower, sqrt_current, liquidity_int),
    )


def _amount0_delta(sqrt_a_x96: int, sqrt_b_x96: int, liquidity: int) -> int:
    # amount0 = L * (sqrt_b - sqrt_a) * Q96 / (sqrt_a * sqrt_b)
    sqrt_a_x96, sqrt_b_x96 = sorted((sqrt_a_x96, sqrt_b_x96))
    denominator = sqrt_a_x96 * sqrt_b_x96
    if denominator == 0:
        return 0
    return (liquidity * (sqrt_b_x96 - sqrt_a_x96) * Q96) // denominator


def _amount1_delta(sqrt_a_x96: int, sqrt_b_x96: int, liquidity: int) -> int:
    # amount1 = L * (sqrt_b - sqrt_a) / Q96
    sqrt_a_x96, sqrt_b_x96 = sorted((sqrt_a_x96, sqrt_b_x96))
    return (liquidity * (sqrt_b_x96 - sqrt_a_x96)) // Q96
