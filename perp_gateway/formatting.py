"""
Perp Gateway - Numeric Formatter.

============================================================
PURPOSE
============================================================
Deterministic conversion of Decimal quantities into the decimal
strings venues accept on the wire.

RULES:
- Round to a fixed number of fractional digits (ROUND_HALF_UP)
- Anything that rounds to zero is "0" (no negative zero)
- Plain decimal notation, never an exponent
- Trailing fractional zeros stripped

============================================================
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Union


Number = Union[Decimal, int, float, str]

ROUNDING_MODE = ROUND_HALF_UP

# Hyperliquid perp prices: 5 significant figures, at most 6 - szDecimals decimals
HYPERLIQUID_SIG_FIGS = 5
HYPERLIQUID_MAX_PERP_DECIMALS = 6


def to_decimal(value: Number) -> Decimal:
    """
    Convert to Decimal.
    
    Floats go through their shortest repr, so 0.1 becomes
    Decimal("0.1") rather than its binary expansion.
    
    Raises:
        ValueError: value is not a finite number
    """
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Not a number: {value!r}")
    if not result.is_finite():
        raise ValueError(f"Not a finite number: {value!r}")
    return result


def format_decimal(value: Number, precision: int) -> str:
    """
    Format a number as a wire string.
    
    Args:
        value: Number to format
        precision: Maximum fractional digits
        
    Returns:
        Decimal string, e.g. format_decimal(1.5, 6) == "1.5"
    """
    if precision < 0:
        raise ValueError(f"precision must be >= 0, got {precision}")
    
    with localcontext() as ctx:
        ctx.prec = 60
        rounded = to_decimal(value).quantize(
            Decimal(1).scaleb(-precision),
            rounding=ROUNDING_MODE,
        )
        if rounded == 0:
            return "0"
        return format(rounded.normalize(), "f")


def round_to_significant(value: Number, figures: int) -> Decimal:
    """Round to a number of significant figures (ROUND_HALF_UP)."""
    d = to_decimal(value)
    if d == 0:
        return Decimal(0)
    exponent = d.adjusted() - figures + 1
    with localcontext() as ctx:
        ctx.prec = 60
        return d.quantize(Decimal(1).scaleb(exponent), rounding=ROUNDING_MODE)


def hyperliquid_price(price: Number, size_decimals: int) -> Decimal:
    """
    Round a perp price to what Hyperliquid accepts.
    
    Integer prices are always valid; otherwise five significant
    figures and no more than 6 - szDecimals decimals.
    """
    d = to_decimal(price)
    max_decimals = max(HYPERLIQUID_MAX_PERP_DECIMALS - size_decimals, 0)
    if abs(d) >= Decimal(10) ** HYPERLIQUID_SIG_FIGS:
        return d.quantize(Decimal(1), rounding=ROUNDING_MODE)
    d = round_to_significant(d, HYPERLIQUID_SIG_FIGS)
    if -d.as_tuple().exponent > max_decimals:
        d = d.quantize(Decimal(1).scaleb(-max_decimals), rounding=ROUNDING_MODE)
    return d


def truncate_to_step(value: Number, step: Number) -> Decimal:
    """Round down to a multiple of step (LOT_SIZE style filters)."""
    d = to_decimal(value)
    step = to_decimal(step)
    if step <= 0:
        return d
    return (d / step).to_integral_value(rounding=ROUND_DOWN) * step


def decimals_from_step(step: Number) -> int:
    """Fractional digits implied by a tick or step size ("0.001" -> 3)."""
    exponent = to_decimal(step).normalize().as_tuple().exponent
    return max(0, -exponent)


def round_to_step(value: Number, step: Number) -> Decimal:
    """Round to the nearest multiple of step (tick size)."""
    d = to_decimal(value)
    step = to_decimal(step)
    if step <= 0:
        return d
    return (d / step).to_integral_value(rounding=ROUNDING_MODE) * step
