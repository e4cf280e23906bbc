"""
ccxt Exchange Adapter

Wraps a ccxt async exchange instance with the ExchangeClient interface.
Covers any venue ccxt supports (Binance, Bybit, OKX, ...) for both spot and
futures markets. ccxt exceptions are translated into the engine's error
taxonomy so watchers never import ccxt.
"""

import logging
from typing import Any, Dict, Optional

import ccxt.async_support as ccxt_async
from ccxt.base import errors as ccxt_errors

from signal_engine.constants import (
    MARKET_FUTURES,
    ORDER_CANCELLED,
    ORDER_FILLED,
    ORDER_LIMIT,
    ORDER_MARKET,
    ORDER_MISSING,
    ORDER_PENDING,
    ORDER_STOP,
    ORDER_TAKE_PROFIT,
)
from signal_engine.exceptions import (
    ExchangeUnavailableError,
    InvalidCredentialsError,
    OrderRejectedError,
)
from signal_engine.exchange_clients.base import (
    ExchangeClient,
    MarketPrecision,
    OrderResult,
    OrderStatusInfo,
)
from signal_engine.precision import decimals_from_tick

logger = logging.getLogger(__name__)

# ccxt order status -> engine order state
_STATUS_MAP = {
    "open": ORDER_PENDING,
    "closed": ORDER_FILLED,
    "canceled": ORDER_CANCELLED,
    "cancelled": ORDER_CANCELLED,
    "expired": ORDER_CANCELLED,
    "rejected": ORDER_CANCELLED,
}

_AUTH_ERRORS = (
    ccxt_errors.AuthenticationError,
    ccxt_errors.PermissionDenied,
    ccxt_errors.AccountSuspended,
)


def _translate_query_error(e: Exception, what: str) -> Exception:
    """Map a ccxt error raised by a read-only call."""
    if isinstance(e, _AUTH_ERRORS):
        return InvalidCredentialsError(f"{what}: {e}")
    if isinstance(e, ccxt_errors.BadSymbol):
        return OrderRejectedError(f"{what}: {e}")
    return ExchangeUnavailableError(f"{what}: {e}")


def _translate_order_error(e: Exception, what: str) -> Exception:
    """Map a ccxt error raised while placing an order."""
    if isinstance(e, _AUTH_ERRORS):
        return InvalidCredentialsError(f"{what}: {e}")
    if isinstance(e, ccxt_errors.NetworkError):
        return ExchangeUnavailableError(f"{what}: {e}")
    # InsufficientFunds, InvalidOrder, BadSymbol, BadRequest, other ExchangeError
    return OrderRejectedError(f"{what}: {e}")


class CcxtExchangeClient(ExchangeClient):
    """ExchangeClient backed by ccxt.async_support."""

    def __init__(
        self,
        exchange_id: str,
        api_key: str = "",
        api_secret: str = "",
        market: str = MARKET_FUTURES,
        testnet: bool = False,
        exchange: Optional[Any] = None,
    ):
        """
        Args:
            exchange_id: ccxt exchange id ("binance", "bybit", ...)
            api_key / api_secret: decrypted credentials
            market: "spot" or "futures"; selects ccxt defaultType
            testnet: enable the exchange sandbox
            exchange: pre-built ccxt instance (tests)
        """
        self.exchange_name = exchange_id
        self.market_type = market
        if exchange is not None:
            self.exchange = exchange
        else:
            exchange_class = getattr(ccxt_async, exchange_id, None)
            if exchange_class is None:
                raise ValueError(f"Unknown ccxt exchange: {exchange_id}")
            self.exchange = exchange_class({
                "apiKey": api_key,
                "secret": api_secret,
                "enableRateLimit": True,
                "options": {"defaultType": "future" if market == MARKET_FUTURES else "spot"},
            })
            if testnet:
                self.exchange.set_sandbox_mode(True)

    def _order_params(self, order_kind: str, price: Optional[float], client_order_id: Optional[str]) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if client_order_id:
            params["clientOrderId"] = client_order_id
        if order_kind == ORDER_STOP:
            params["stopLossPrice"] = price
        elif order_kind == ORDER_TAKE_PROFIT:
            params["takeProfitPrice"] = price
        if order_kind in (ORDER_STOP, ORDER_TAKE_PROFIT) and self.market_type == MARKET_FUTURES:
            params["reduceOnly"] = True
        return params

    @staticmethod
    def _to_status(order: Dict[str, Any]) -> OrderStatusInfo:
        state = _STATUS_MAP.get(str(order.get("status") or "").lower(), ORDER_PENDING)
        filled = float(order.get("filled") or 0.0)
        average = order.get("average") or order.get("price")
        return OrderStatusInfo(
            state=state,
            ticket=str(order["id"]) if order.get("id") is not None else None,
            filled_volume=filled,
            average_price=float(average) if average is not None else None,
        )

    async def place_order(
        self,
        symbol: str,
        side: str,
        volume: float,
        price: Optional[float] = None,
        order_kind: str = ORDER_LIMIT,
        client_order_id: Optional[str] = None,
    ) -> OrderResult:
        # Stop / take-profit are triggered market orders; the trigger goes in params
        ccxt_type = "limit" if order_kind == ORDER_LIMIT else "market"
        limit_price = price if order_kind == ORDER_LIMIT else None
        if order_kind == ORDER_LIMIT and price is None:
            ccxt_type = ORDER_MARKET
        params = self._order_params(order_kind, price, client_order_id)

        try:
            order = await self.exchange.create_order(symbol, ccxt_type, side, volume, limit_price, params)
        except ccxt_errors.BaseError as e:
            raise _translate_order_error(e, f"{self.exchange_name} {order_kind} {side} {symbol}") from e

        info = self._to_status(order)
        if not info.ticket:
            raise ExchangeUnavailableError(f"{self.exchange_name} returned an order without id for {symbol}")
        logger.info(
            f"{self.exchange_name}: placed {order_kind} {side} {volume} {symbol} @ {price} "
            f"-> ticket {info.ticket} ({info.state})"
        )
        return OrderResult(
            ticket=info.ticket,
            status=info.state,
            filled_volume=info.filled_volume,
            average_price=info.average_price,
            client_order_id=client_order_id,
        )

    async def _find_by_client_id(self, symbol: str, client_order_id: str) -> Optional[Dict[str, Any]]:
        """Fallback lookup for exchanges whose fetch_order can't take a client id."""
        for fetch in (self.exchange.fetch_open_orders, self.exchange.fetch_closed_orders):
            try:
                orders = await fetch(symbol)
            except ccxt_errors.NotSupported:
                continue
            for order in orders:
                if order.get("clientOrderId") == client_order_id:
                    return order
        return None

    async def get_order_status(
        self,
        symbol: str,
        ticket: Optional[str] = None,
        client_order_id: Optional[str] = None,
    ) -> OrderStatusInfo:
        if not ticket and not client_order_id:
            raise ValueError("get_order_status needs a ticket or a client_order_id")

        try:
            if ticket:
                order = await self.exchange.fetch_order(ticket, symbol)
            else:
                try:
                    order = await self.exchange.fetch_order(None, symbol, {"clientOrderId": client_order_id})
                except (ccxt_errors.NotSupported, ccxt_errors.ArgumentsRequired):
                    order = await self._find_by_client_id(symbol, client_order_id)
        except ccxt_errors.OrderNotFound:
            return OrderStatusInfo(state=ORDER_MISSING, ticket=ticket)
        except ccxt_errors.BaseError as e:
            raise _translate_query_error(e, f"{self.exchange_name} fetch order {ticket or client_order_id}") from e

        if not order:
            return OrderStatusInfo(state=ORDER_MISSING, ticket=ticket)
        return self._to_status(order)

    async def cancel_order(self, symbol: str, ticket: str) -> bool:
        try:
            await self.exchange.cancel_order(ticket, symbol)
            logger.info(f"{self.exchange_name}: cancelled order {ticket} on {symbol}")
            return True
        except ccxt_errors.OrderNotFound:
            logger.info(f"{self.exchange_name}: order {ticket} on {symbol} already gone")
            return False
        except ccxt_errors.BaseError as e:
            raise _translate_query_error(e, f"{self.exchange_name} cancel {ticket}") from e

    async def get_price(self, symbol: str) -> float:
        try:
            ticker = await self.exchange.fetch_ticker(symbol)
        except ccxt_errors.BaseError as e:
            raise _translate_query_error(e, f"{self.exchange_name} ticker {symbol}") from e
        last = ticker.get("last") or ticker.get("close")
        if last is None:
            raise ExchangeUnavailableError(f"{self.exchange_name} ticker for {symbol} has no price")
        return float(last)

    async def get_market_precision(self, symbol: str) -> MarketPrecision:
        try:
            await self.exchange.load_markets()
            market = self.exchange.market(symbol)
        except ccxt_errors.BaseError as e:
            raise _translate_query_error(e, f"{self.exchange_name} markets") from e
        precision = market.get("precision") or {}
        mode = getattr(self.exchange, "precisionMode", None)
        return MarketPrecision(
            price=decimals_from_tick(precision.get("price"), mode),
            amount=decimals_from_tick(precision.get("amount"), mode),
        )

    async def close(self):
        try:
            await self.exchange.close()
        except Exception as e:
            logger.warning(f"Error closing {self.exchange_name} client: {e}")
