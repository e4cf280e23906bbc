"""
Precision handling for prices and amounts sent to exchanges

Every price and volume passed to an exchange client goes through these
helpers so orders match the symbol's tick size.

Rounding convention: half away from zero in the decimal domain, so
round_to_precision(1.005, 2) == 1.01 even though the binary float 1.005
sits slightly below the midpoint.
"""
import math
import re
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from ccxt.base.decimal_to_precision import DECIMAL_PLACES, SIGNIFICANT_DIGITS

_LEADING_NUMBER = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


def parse_float(value: Any) -> float:
    """
    Parse a value into a float the lenient way: numbers pass through, strings
    are read up to the first non-numeric character, anything else is NaN.

    Examples:
        >>> parse_float("1.5abc")
        1.5
        >>> math.isnan(parse_float("abc"))
        True
    """
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, str):
        match = _LEADING_NUMBER.match(value)
        if match:
            return float(match.group(0))
    return math.nan


def _precision_missing(precision: Any) -> bool:
    if precision is None:
        return True
    try:
        return math.isnan(float(precision))
    except (TypeError, ValueError):
        return True


def _quantize(value: float, precision: int, rounding: str) -> float:
    digits = max(int(precision), 0)
    quantum = Decimal(1).scaleb(-digits)
    try:
        return float(Decimal(str(value)).quantize(quantum, rounding=rounding))
    except InvalidOperation:
        # Infinity or too many digits for the decimal context
        return value


def round_to_precision(value: Any, precision: Optional[int]) -> float:
    """
    Round a price to ``precision`` decimal digits.

    Returns the parsed float unrounded when precision is missing (None/NaN)
    or the value is not numeric; never raises.

    Examples:
        >>> round_to_precision(1.23456, 2)
        1.23
        >>> round_to_precision(1.005, 2)
        1.01
        >>> round_to_precision(5, None)
        5.0
    """
    parsed = parse_float(value)
    if _precision_missing(precision) or math.isnan(parsed) or math.isinf(parsed):
        return parsed
    return _quantize(parsed, precision, ROUND_HALF_UP)


def amount_to_precision(value: Any, precision: Optional[int]) -> float:
    """
    Round an order volume DOWN to ``precision`` decimal digits.

    Rounding down guarantees the order never exceeds the sized amount.
    """
    parsed = parse_float(value)
    if _precision_missing(precision) or math.isnan(parsed) or math.isinf(parsed):
        return parsed
    return _quantize(parsed, precision, ROUND_DOWN)


def decimals_from_tick(tick: Any, precision_mode: Optional[int] = None) -> Optional[int]:
    """
    Convert a market precision value into a count of decimals.

    ``precision_mode`` is the exchange's ccxt ``precisionMode``:
      - TICK_SIZE: the value is a step, 0.01 -> 2
      - DECIMAL_PLACES: the value is already a count, 8 or 8.0 -> 8
      - SIGNIFICANT_DIGITS: no fixed decimal count exists, returns None
        so local rounding is skipped and the venue's own rules apply

    Without a mode, ints are taken as decimal places and floats as ticks.
    """
    if tick is None or precision_mode == SIGNIFICANT_DIGITS:
        return None
    if precision_mode is None and isinstance(tick, int):
        return tick
    parsed = parse_float(tick)
    if math.isnan(parsed) or math.isinf(parsed):
        return None
    if precision_mode == DECIMAL_PLACES:
        return int(parsed) if parsed >= 0 and parsed.is_integer() else None
    if parsed <= 0:
        return None
    if parsed >= 1 and parsed.is_integer():
        return 0
    exponent = Decimal(str(parsed)).normalize().as_tuple().exponent
    return max(-int(exponent), 0)
