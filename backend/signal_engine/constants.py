"""
Engine Constants

Status codes and identifiers shared by watchers, dispatcher and read API.
"""

# Signal.status
SIGNAL_PENDING = "pending"
SIGNAL_ACTIVE = "active"
SIGNAL_CLOSED = "closed"
SIGNAL_CANCELLED = "cancelled"

SIGNAL_OPEN_STATUSES = (SIGNAL_PENDING, SIGNAL_ACTIVE)
SIGNAL_TERMINAL_STATUSES = (SIGNAL_CLOSED, SIGNAL_CANCELLED)

# Signal.result
RESULT_TP = "tp"
RESULT_SL = "sl"
RESULT_EXPIRED = "expired"
RESULT_INVALIDATED = "invalidated"  # Stop level hit before entry
RESULT_ADMIN = "admin"

# UserSignal.status
US_PENDING = 0  # Entry order not filled yet
US_ACTIVE = 1
US_CLOSED = 2
US_FAILED = 3  # Rejected order / invalid credentials
US_CANCELLED = 4  # Signal cancelled before entry filled

US_OPEN_STATUSES = (US_PENDING, US_ACTIVE)

US_STATUS_LABELS = {
    US_PENDING: "pending",
    US_ACTIVE: "active",
    US_CLOSED: "closed",
    US_FAILED: "failed",
    US_CANCELLED: "cancelled",
}

# Directions
LONG = "LONG"
SHORT = "SHORT"
DIRECTIONS = (LONG, SHORT)

# Markets an api key / signal can target
MARKET_SPOT = "spot"
MARKET_FUTURES = "futures"

# Order kinds understood by ExchangeClient.place_order
ORDER_LIMIT = "limit"
ORDER_MARKET = "market"
ORDER_STOP = "stop"
ORDER_TAKE_PROFIT = "take_profit"

# Order states reported by ExchangeClient.get_order_status
ORDER_FILLED = "filled"
ORDER_CANCELLED = "cancelled"
ORDER_PENDING = "pending"
ORDER_MISSING = "missing"  # Exchange has no record of the order

# Watcher registry kinds
WATCHER_SIGNAL = "signal"
WATCHER_USER_SIGNAL = "user_signal"


def entry_side(direction: str) -> str:
    return "buy" if direction == LONG else "sell"


def exit_side(direction: str) -> str:
    return "sell" if direction == LONG else "buy"


def client_order_id(user_signal_id: int, leg: str, seq: int = 0) -> str:
    """Deterministic client order id so the exchange can be asked about an order we never saw confirmed."""
    if seq:
        return f"us{user_signal_id}-{leg}{seq}"
    return f"us{user_signal_id}-{leg}"
