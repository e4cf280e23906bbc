"""
Realized profit for a closed UserSignal.
"""

from typing import Optional, Tuple

from signal_engine.constants import SHORT


def calculate_profit(
    direction: str,
    open_price: Optional[float],
    close_price: Optional[float],
    volume: Optional[float],
) -> Tuple[float, float]:
    """
    Returns (profit_percentage, profit_quote).

    LONG earns when price rises, SHORT when it falls. Percentage is the raw
    price move (leverage is not applied); quote profit is move * volume.

    Examples:
        >>> calculate_profit("LONG", 110, 120, 1.0)
        (9.09, 10.0)
        >>> calculate_profit("SHORT", 100, 90, 2.0)
        (10.0, 20.0)
    """
    if not open_price or open_price <= 0 or close_price is None:
        return 0.0, 0.0

    move = close_price - open_price
    if direction == SHORT:
        move = -move

    profit_pct = move / open_price * 100
    profit_quote = move * (volume or 0.0)
    return round(profit_pct, 2), round(profit_quote, 8)
