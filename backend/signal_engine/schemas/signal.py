"""Signal and UserSignal Pydantic schemas"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class SignalResponse(BaseModel):
    id: int
    symbol: str
    direction: str  # LONG / SHORT
    market: str
    entry_price: Optional[float] = None  # None = market entry
    stop_loss: float
    take_profit: float
    status: str
    result: Optional[str] = None
    close_price: Optional[float] = None
    dispatched: bool = False
    cancel_requested: bool = False
    created_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserSignalResponse(BaseModel):
    id: int
    user_id: int
    signal_id: int
    api_id: int
    lotsize: float
    leverage: Optional[int] = 1
    strategy: Optional[str] = None
    ticket: Optional[str] = None  # Entry order id
    sticket: Optional[str] = None  # Stop-loss order id
    tticket: Optional[str] = None  # Take-profit order id
    symbol: str
    direction: str
    open_price: Optional[float] = None
    opened_at: Optional[datetime] = None
    volume: Optional[float] = None
    closed_volume: Optional[float] = None
    sl: Optional[float] = None
    tp: Optional[float] = None
    close_price: Optional[float] = None
    closed_at: Optional[datetime] = None
    profit: Optional[float] = None  # Percentage
    profit_usdt: Optional[float] = None
    event: Optional[str] = None
    status: int
    status_label: Optional[str] = None
    sl_wait: bool = False
    tp_wait: bool = False
    close_requested: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ActionResponse(BaseModel):
    id: int
    message: str
