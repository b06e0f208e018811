"""
Range Allocation for Concentrated Liquidity Positions

Given an investment, the current price and a price range, decides how much of
each asset the position holds and how many liquidity units that buys.

Three regions (Uniswap V3 Whitepaper §6.2):
- price <= price_lower: the position is 100% base asset
- price >= price_upper: the position is 100% quote asset
- otherwise: split by the square-root price ratio

Naming: "base" is the volatile, priced leg (token1 in the pool, e.g. cbBTC)
and "quote" the USD leg (token0, e.g. USDC).
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from .uniswap_v3_math import (
    MAX_TICK,
    MIN_TICK,
    Q96,
    adjusted_sqrt_price,
    align_tick_to_spacing,
    decimal_adjustment,
    price_to_tick,
)

FULL_RANGE = 'full-range'

# Full-range liquidity is derived against a finite band around the price
FULL_RANGE_LOWER_FACTOR = 0.01
FULL_RANGE_UPPER_FACTOR = 100.0

MAX_RANGE_WIDTH_PCT = 200.0


@dataclass(frozen=True)
class PositionRange:
    """
    Active range of a position

    Attributes:
        tick_lower: Lower tick, aligned to the pool tick spacing
        tick_upper: Upper tick, aligned to the pool tick spacing
        price_lower: Lower price bound (quote per base)
        price_upper: Upper price bound (quote per base)
        range_width: Width as a fraction of the entry price (inf for full range)

    Ticks are inverted relative to prices: tick_lower comes from price_upper.
    """
    tick_lower: int
    tick_upper: int
    price_lower: float
    price_upper: float
    range_width: float

    @property
    def is_full_range(self) -> bool:
        return math.isinf(self.range_width)

    @property
    def tick_width(self) -> int:
        return self.tick_upper - self.tick_lower

    def contains_tick(self, tick: int) -> bool:
        return self.tick_lower <= tick <= self.tick_upper


@dataclass(frozen=True)
class RangeAllocation:
    """Token split and liquidity for one sub-position"""
    base_amount: float
    quote_amount: float
    liquidity: float
    lp_share: float


def parse_range_width(position_type: str) -> Optional[float]:
    """
    Parse a position type into a range width fraction

    'full-range' -> None, '50%' -> 0.5, '12.5%' -> 0.125
    """
    if position_type == FULL_RANGE:
        return None

    text = str(position_type).strip()
    if not text.endswith('%'):
        raise ValueError(f"Position type must be '{FULL_RANGE}' or a percentage like '50%', got {position_type!r}")

    try:
        width_pct = float(text[:-1])
    except ValueError:
        raise ValueError(f"Invalid range percentage: {position_type!r}") from None

    if not 0 < width_pct < MAX_RANGE_WIDTH_PCT:
        raise ValueError(f"Range percentage must be in (0, {MAX_RANGE_WIDTH_PCT:g}), got {width_pct:g}")

    return width_pct / 100


def build_position_range(
    price: float,
    position_type: str,
    tick_spacing: int,
    token0_decimals: int,
    token1_decimals: int
) -> PositionRange:
    """
    Compute the tick range centred on `price` for a position type

    A width w gives [price * (1 - w/2), price * (1 + w/2)]; ticks are rounded
    outward to the tick spacing so the tick range always covers the prices.

    Args:
        price: Current price (quote per base)
        position_type: 'full-range' or a percentage width such as '50%'
        tick_spacing: Pool tick spacing
        token0_decimals: Decimals of token0 (quote leg)
        token1_decimals: Decimals of token1 (base leg)

    Returns:
        PositionRange for the new sub-position
    """
    width = parse_range_width(position_type)
    if width is None:
        return PositionRange(
            tick_lower=MIN_TICK,
            tick_upper=MAX_TICK,
            price_lower=0.0,
            price_upper=math.inf,
            range_width=math.inf,
        )

    price_lower = price * (1 - width / 2)
    price_upper = price * (1 + width / 2)

    raw_tick_a = price_to_tick(price_lower, token0_decimals, token1_decimals)
    raw_tick_b = price_to_tick(price_upper, token0_decimals, token1_decimals)

    tick_lower = min(
        align_tick_to_spacing(raw_tick_a, tick_spacing),
        align_tick_to_spacing(raw_tick_b, tick_spacing),
    )
    tick_upper = max(
        _ceil_tick_to_spacing(raw_tick_a, tick_spacing),
        _ceil_tick_to_spacing(raw_tick_b, tick_spacing),
    )
    if tick_upper == tick_lower:
        tick_upper += tick_spacing

    return PositionRange(
        tick_lower=max(MIN_TICK, tick_lower),
        tick_upper=min(MAX_TICK, tick_upper),
        price_lower=price_lower,
        price_upper=price_upper,
        range_width=width,
    )


def _ceil_tick_to_spacing(tick: int, tick_spacing: int) -> int:
    return -((-tick) // tick_spacing) * tick_spacing


def tokens_for_strategy(
    price_lower: float,
    price_upper: float,
    investment: float,
    price: float,
    base_decimals: int,
    quote_decimals: int
) -> Tuple[float, float]:
    """
    Split an investment between the base and quote assets for a range

    In range, with sp/sl/sh the decimal-adjusted square-root prices and
    adj the decimal adjustment:
        delta = investment / ((sp - sl) + (1/sp - 1/sh) * price * adj)
        base  = delta * (1/sp - 1/sh) * adj
        quote = delta * (sp - sl)

    so that base * price + quote == investment in every region.

    Returns:
        Tuple of (base_amount, quote_amount) in human units
    """
    if price <= price_lower:
        return investment / price, 0.0
    if price >= price_upper:
        return 0.0, investment

    adjustment = decimal_adjustment(base_decimals, quote_decimals)
    sqrt_price = adjusted_sqrt_price(price, adjustment)
    sqrt_low = adjusted_sqrt_price(price_lower, adjustment)
    sqrt_high = adjusted_sqrt_price(price_upper, adjustment)

    inverse_span = 1 / sqrt_price - 1 / sqrt_high
    delta = investment / ((sqrt_price - sqrt_low) + inverse_span * price * adjustment)

    base_amount = delta * inverse_span * adjustment
    quote_amount = delta * (sqrt_price - sqrt_low)
    return base_amount, quote_amount


def liquidity_for_strategy(
    price: float,
    low: float,
    high: float,
    base_amount: float,
    quote_amount: float,
    base_decimals: int,
    quote_decimals: int
) -> float:
    """
    Liquidity units bought by token amounts inside [low, high]

    Uses Q96 square-root prices (sqrt(adjusted price) * 2^96):
    - below range: L = base / (1/sqrt(low) - 1/sqrt(high))
    - in range: L = min(L_base, L_quote)
    - above range: L = quote / (sqrt(high) - sqrt(low))

    Each leg is expressed in its own smallest units before dividing.
    """
    adjustment = decimal_adjustment(base_decimals, quote_decimals)
    bounds = (
        adjusted_sqrt_price(low, adjustment) * Q96,
        adjusted_sqrt_price(high, adjustment) * Q96,
    )
    s_price = adjusted_sqrt_price(price, adjustment) * Q96
    s_low = min(bounds)
    s_high = max(bounds)

    base_raw = base_amount * math.pow(10, base_decimals)
    quote_raw = quote_amount * math.pow(10, quote_decimals)

    if s_price <= s_low:
        return base_raw / ((Q96 * (s_high - s_low)) / s_high / s_low)

    if s_price < s_high:
        liquidity_base = base_raw / ((Q96 * (s_high - s_price)) / s_high / s_price)
        liquidity_quote = quote_raw / ((s_price - s_low) / Q96)
        return min(liquidity_base, liquidity_quote)

    return quote_raw / ((s_high - s_low) / Q96)


def allocate(
    investment: float,
    price: float,
    position_range: PositionRange,
    base_decimals: int,
    quote_decimals: int,
    pool_liquidity: float
) -> RangeAllocation:
    """
    Allocate an investment into a range and derive its liquidity units

    Full-range positions split 50/50 and use a [1%, 100x] price band for the
    liquidity formula.

    Args:
        investment: Capital to deploy (USD)
        price: Current price (quote per base)
        position_range: Target range
        base_decimals: Decimals of the base asset (token1)
        quote_decimals: Decimals of the quote asset (token0)
        pool_liquidity: Pool's total liquidity, for the LP share

    Returns:
        RangeAllocation with amounts, liquidity and pool share
    """
    if position_range.is_full_range:
        quote_amount = investment / 2
        base_amount = investment / 2 / price
        low = price * FULL_RANGE_LOWER_FACTOR
        high = price * FULL_RANGE_UPPER_FACTOR
    else:
        base_amount, quote_amount = tokens_for_strategy(
            position_range.price_lower,
            position_range.price_upper,
            investment,
            price,
            base_decimals,
            quote_decimals,
        )
        low = position_range.price_lower
        high = position_range.price_upper

    liquidity = liquidity_for_strategy(
        price, low, high, base_amount, quote_amount, base_decimals, quote_decimals
    )
    lp_share = liquidity / pool_liquidity if pool_liquidity > 0 else 0.0

    return RangeAllocation(
        base_amount=base_amount,
        quote_amount=quote_amount,
        liquidity=liquidity,
        lp_share=lp_share,
    )
