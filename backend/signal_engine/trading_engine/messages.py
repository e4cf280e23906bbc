"""Notification texts for signal broadcasts and per-user updates."""

from signal_engine.constants import (
    RESULT_ADMIN,
    RESULT_EXPIRED,
    RESULT_INVALIDATED,
    RESULT_SL,
    RESULT_TP,
    SIGNAL_ACTIVE,
    SIGNAL_CANCELLED,
    SIGNAL_CLOSED,
)

_RESULT_LABELS = {
    RESULT_TP: "take-profit reached",
    RESULT_SL: "stop-loss hit",
    RESULT_EXPIRED: "entry window expired",
    RESULT_INVALIDATED: "stop level hit before entry",
    RESULT_ADMIN: "cancelled by admin",
}

_CLOSE_LABELS = {
    "tp": "take-profit",
    "sl": "stop-loss",
    "manual": "manual close",
}


def _fmt(value) -> str:
    if value is None:
        return "market"
    return f"{value:g}"


def signal_broadcast(signal) -> str:
    """Channel message for a Signal state transition."""
    header = f"#{signal.id} {signal.symbol} {signal.direction}"
    if signal.status == SIGNAL_ACTIVE:
        return (
            f"🚀 Signal {header} is ACTIVE\n"
            f"Entry: {_fmt(signal.entry_price)} | SL: {_fmt(signal.stop_loss)} | TP: {_fmt(signal.take_profit)}"
        )
    if signal.status == SIGNAL_CLOSED:
        return (
            f"🏁 Signal {header} CLOSED - {_RESULT_LABELS.get(signal.result, signal.result)} "
            f"at {_fmt(signal.close_price)}"
        )
    if signal.status == SIGNAL_CANCELLED:
        return f"❌ Signal {header} CANCELLED - {_RESULT_LABELS.get(signal.result, signal.result)}"
    return f"Signal {header}: {signal.status}"


def position_opened(row) -> str:
    return (
        f"✅ {row.symbol} {row.direction} opened at {_fmt(row.open_price)}\n"
        f"Volume: {row.volume:g} | SL: {_fmt(row.sl)} | TP: {_fmt(row.tp)}"
    )


def position_closed(row, trigger: str) -> str:
    sign = "+" if (row.profit or 0) >= 0 else ""
    return (
        f"🏁 {row.symbol} {row.direction} closed by {_CLOSE_LABELS.get(trigger, trigger)}\n"
        f"Open: {_fmt(row.open_price)} → Close: {_fmt(row.close_price)} | Volume: {row.closed_volume:g}\n"
        f"Profit: {sign}{row.profit:.2f}% ({sign}{row.profit_usdt:.2f} USDT)"
    )


def position_failed(row, reason: str) -> str:
    return f"⚠️ {row.symbol} {row.direction} (signal #{row.signal_id}) failed: {reason}"


def position_cancelled(row) -> str:
    return f"❌ {row.symbol} {row.direction}: signal #{row.signal_id} was cancelled before your entry filled"
