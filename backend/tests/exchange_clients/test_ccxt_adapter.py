"""
Tests for signal_engine/exchange_clients/ccxt_adapter.py

The ccxt exchange instance is replaced with a mock, so these tests cover
parameter mapping and error translation without network access.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from ccxt.base import errors as ccxt_errors
from ccxt.base.decimal_to_precision import DECIMAL_PLACES, SIGNIFICANT_DIGITS, TICK_SIZE

from signal_engine.exceptions import (
    ExchangeUnavailableError,
    InvalidCredentialsError,
    OrderRejectedError,
)
from signal_engine.exchange_clients.ccxt_adapter import CcxtExchangeClient


def _make_mock_exchange():
    exchange = MagicMock()
    exchange.precisionMode = TICK_SIZE
    exchange.create_order = AsyncMock(return_value={"id": "9001", "status": "open", "filled": 0.0})
    exchange.fetch_order = AsyncMock()
    exchange.fetch_open_orders = AsyncMock(return_value=[])
    exchange.fetch_closed_orders = AsyncMock(return_value=[])
    exchange.cancel_order = AsyncMock(return_value={})
    exchange.fetch_ticker = AsyncMock(return_value={"last": 101.5})
    exchange.load_markets = AsyncMock(return_value={})
    exchange.market = MagicMock(return_value={"precision": {"price": 0.01, "amount": 0.001}})
    exchange.close = AsyncMock()
    return exchange


@pytest.fixture
def mock_ccxt():
    return _make_mock_exchange()


@pytest.fixture
def futures_client(mock_ccxt):
    return CcxtExchangeClient("binance", market="futures", exchange=mock_ccxt)


@pytest.fixture
def spot_client(mock_ccxt):
    return CcxtExchangeClient("binance", market="spot", exchange=mock_ccxt)


# =========================================================
# place_order
# =========================================================


class TestPlaceOrder:
    @pytest.mark.asyncio
    async def test_limit_order_passes_price_and_client_id(self, futures_client, mock_ccxt):
        result = await futures_client.place_order(
            "BTC/USDT", "buy", 0.5, price=100.0, order_kind="limit", client_order_id="us1-entry"
        )

        mock_ccxt.create_order.assert_awaited_once_with(
            "BTC/USDT", "limit", "buy", 0.5, 100.0, {"clientOrderId": "us1-entry"}
        )
        assert result.ticket == "9001"
        assert result.status == "pending"
        assert result.client_order_id == "us1-entry"

    @pytest.mark.asyncio
    async def test_limit_without_price_becomes_market(self, futures_client, mock_ccxt):
        await futures_client.place_order("BTC/USDT", "buy", 0.5, price=None, order_kind="limit")
        args = mock_ccxt.create_order.await_args.args
        assert args[1] == "market"
        assert args[4] is None

    @pytest.mark.asyncio
    async def test_futures_stop_is_reduce_only_trigger(self, futures_client, mock_ccxt):
        await futures_client.place_order(
            "BTC/USDT", "sell", 0.5, price=95.0, order_kind="stop", client_order_id="us1-sl"
        )
        symbol, ccxt_type, side, amount, price, params = mock_ccxt.create_order.await_args.args
        assert ccxt_type == "market"
        assert price is None
        assert params == {"clientOrderId": "us1-sl", "stopLossPrice": 95.0, "reduceOnly": True}

    @pytest.mark.asyncio
    async def test_spot_take_profit_not_reduce_only(self, spot_client, mock_ccxt):
        await spot_client.place_order("BTC/USDT", "sell", 0.5, price=120.0, order_kind="take_profit")
        params = mock_ccxt.create_order.await_args.args[5]
        assert params == {"takeProfitPrice": 120.0}

    @pytest.mark.asyncio
    async def test_filled_market_order_reports_fill(self, futures_client, mock_ccxt):
        mock_ccxt.create_order.return_value = {"id": "1", "status": "closed", "filled": 0.5, "average": 100.2}
        result = await futures_client.place_order("BTC/USDT", "buy", 0.5, order_kind="market")
        assert result.is_filled
        assert result.filled_volume == 0.5
        assert result.average_price == 100.2

    @pytest.mark.asyncio
    async def test_insufficient_funds_is_rejection(self, futures_client, mock_ccxt):
        mock_ccxt.create_order.side_effect = ccxt_errors.InsufficientFunds("no margin")
        with pytest.raises(OrderRejectedError):
            await futures_client.place_order("BTC/USDT", "buy", 0.5, price=100.0)

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self, futures_client, mock_ccxt):
        mock_ccxt.create_order.side_effect = ccxt_errors.NetworkError("timeout")
        with pytest.raises(ExchangeUnavailableError):
            await futures_client.place_order("BTC/USDT", "buy", 0.5, price=100.0)

    @pytest.mark.asyncio
    async def test_authentication_error_is_invalid_credentials(self, futures_client, mock_ccxt):
        mock_ccxt.create_order.side_effect = ccxt_errors.AuthenticationError("bad key")
        with pytest.raises(InvalidCredentialsError):
            await futures_client.place_order("BTC/USDT", "buy", 0.5, price=100.0)

    @pytest.mark.asyncio
    async def test_order_without_id_is_not_confirmed(self, futures_client, mock_ccxt):
        mock_ccxt.create_order.return_value = {"status": "open"}
        with pytest.raises(ExchangeUnavailableError):
            await futures_client.place_order("BTC/USDT", "buy", 0.5, price=100.0)


# =========================================================
# get_order_status
# =========================================================


class TestGetOrderStatus:
    @pytest.mark.asyncio
    async def test_status_mapping(self, futures_client, mock_ccxt):
        for ccxt_status, expected in [("open", "pending"), ("closed", "filled"), ("canceled", "cancelled"), ("expired", "cancelled")]:
            mock_ccxt.fetch_order.return_value = {"id": "7", "status": ccxt_status, "filled": 0.0}
            info = await futures_client.get_order_status("BTC/USDT", ticket="7")
            assert info.state == expected

    @pytest.mark.asyncio
    async def test_filled_order_carries_average(self, futures_client, mock_ccxt):
        mock_ccxt.fetch_order.return_value = {"id": "7", "status": "closed", "filled": 1.0, "average": 120.0}
        info = await futures_client.get_order_status("BTC/USDT", ticket="7")
        assert info.ticket == "7"
        assert info.filled_volume == 1.0
        assert info.average_price == 120.0

    @pytest.mark.asyncio
    async def test_order_not_found_is_missing(self, futures_client, mock_ccxt):
        mock_ccxt.fetch_order.side_effect = ccxt_errors.OrderNotFound("unknown order")
        info = await futures_client.get_order_status("BTC/USDT", client_order_id="us1-sl")
        assert info.state == "missing"

    @pytest.mark.asyncio
    async def test_lookup_by_client_id(self, futures_client, mock_ccxt):
        mock_ccxt.fetch_order.return_value = {"id": "55", "status": "open"}
        info = await futures_client.get_order_status("BTC/USDT", client_order_id="us1-sl")
        mock_ccxt.fetch_order.assert_awaited_once_with(None, "BTC/USDT", {"clientOrderId": "us1-sl"})
        assert info.ticket == "55"

    @pytest.mark.asyncio
    async def test_client_id_fallback_scans_orders(self, futures_client, mock_ccxt):
        """Edge case: venues that can't fetch by client id are searched via open/closed orders."""
        mock_ccxt.fetch_order.side_effect = ccxt_errors.ArgumentsRequired("id required")
        mock_ccxt.fetch_closed_orders.return_value = [
            {"id": "1", "status": "closed", "clientOrderId": "other"},
            {"id": "2", "status": "closed", "clientOrderId": "us1-tp", "filled": 1.0, "average": 120.0},
        ]
        info = await futures_client.get_order_status("BTC/USDT", client_order_id="us1-tp")
        assert info.state == "filled"
        assert info.ticket == "2"

    @pytest.mark.asyncio
    async def test_client_id_fallback_not_found(self, futures_client, mock_ccxt):
        mock_ccxt.fetch_order.side_effect = ccxt_errors.NotSupported("no")
        info = await futures_client.get_order_status("BTC/USDT", client_order_id="us1-tp")
        assert info.state == "missing"

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self, futures_client, mock_ccxt):
        mock_ccxt.fetch_order.side_effect = ccxt_errors.RequestTimeout("slow")
        with pytest.raises(ExchangeUnavailableError):
            await futures_client.get_order_status("BTC/USDT", ticket="7")

    @pytest.mark.asyncio
    async def test_requires_ticket_or_client_id(self, futures_client):
        with pytest.raises(ValueError):
            await futures_client.get_order_status("BTC/USDT")


# =========================================================
# cancel / price / precision
# =========================================================


class TestCancelAndMarketData:
    @pytest.mark.asyncio
    async def test_cancel_success(self, futures_client, mock_ccxt):
        assert await futures_client.cancel_order("BTC/USDT", "7") is True
        mock_ccxt.cancel_order.assert_awaited_once_with("7", "BTC/USDT")

    @pytest.mark.asyncio
    async def test_cancel_unknown_order_returns_false(self, futures_client, mock_ccxt):
        mock_ccxt.cancel_order.side_effect = ccxt_errors.OrderNotFound("gone")
        assert await futures_client.cancel_order("BTC/USDT", "7") is False

    @pytest.mark.asyncio
    async def test_get_price(self, futures_client):
        assert await futures_client.get_price("BTC/USDT") == 101.5

    @pytest.mark.asyncio
    async def test_ticker_without_price_is_transient(self, futures_client, mock_ccxt):
        mock_ccxt.fetch_ticker.return_value = {"last": None, "close": None}
        with pytest.raises(ExchangeUnavailableError):
            await futures_client.get_price("BTC/USDT")

    @pytest.mark.asyncio
    async def test_precision_from_tick_sizes(self, futures_client):
        precision = await futures_client.get_market_precision("BTC/USDT")
        assert precision.price == 2
        assert precision.amount == 3

    @pytest.mark.asyncio
    async def test_precision_as_decimal_places(self, futures_client, mock_ccxt):
        """Edge case: a DECIMAL_PLACES venue reports counts, sometimes as floats."""
        mock_ccxt.precisionMode = DECIMAL_PLACES
        mock_ccxt.market.return_value = {"precision": {"price": 8.0, "amount": 3}}

        precision = await futures_client.get_market_precision("BTC/USDT")

        assert precision.price == 8
        assert precision.amount == 3

    @pytest.mark.asyncio
    async def test_significant_digits_skips_local_rounding(self, futures_client, mock_ccxt):
        mock_ccxt.precisionMode = SIGNIFICANT_DIGITS
        mock_ccxt.market.return_value = {"precision": {"price": 5, "amount": 8}}

        precision = await futures_client.get_market_precision("BTC/USDT")

        assert precision.price is None
        assert precision.amount is None

    @pytest.mark.asyncio
    async def test_unknown_symbol_precision_is_rejection(self, futures_client, mock_ccxt):
        mock_ccxt.market.side_effect = ccxt_errors.BadSymbol("no such market")
        with pytest.raises(OrderRejectedError):
            await futures_client.get_market_precision("FOO/BAR")

    @pytest.mark.asyncio
    async def test_close_releases_exchange(self, futures_client, mock_ccxt):
        await futures_client.close()
        mock_ccxt.close.assert_awaited_once()


class TestConstruction:
    def test_unknown_exchange_id(self):
        with pytest.raises(ValueError, match="Unknown ccxt exchange"):
            CcxtExchangeClient("not-a-real-exchange", api_key="k", api_secret="s")
