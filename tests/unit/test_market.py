"""
Unit Tests for BinanceFuturesMarket

These tests drive the caller-facing client end to end against fake
transports:
- Monitors deliver extracted records and can be cancelled
- The user data monitor manages its listen key and keepalive
- REST wrappers map responses to typed results
- Per-instance receive windows and market restrictions hold

Run with:
    pytest tests/unit/test_market.py -v
"""

import asyncio
import json
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
import pytest_asyncio

from conftest import FakeResponse, wait_until
from core.exceptions import ConfigurationError, DisconnectError, OperationUnavailableError
from core.schemas import ApiAccess, INVALID_TOKEN, MarketType, MonitorToken, RestCall
from exchanges.binance import BinanceFuturesMarket


# ============================================
# Fixtures
# ============================================

@pytest_asyncio.fixture
async def market(http_session, test_settings):
    """Market wired to the fake HTTP session"""
    market = BinanceFuturesMarket(ApiAccess(api_key="key", secret_key="secret"), MarketType.LIVE, test_settings)
    market.client.session = http_session
    yield market
    await market.aclose()


def respond(market, status=200, body="{}"):
    mock = MagicMock(return_value=FakeResponse(status, body))
    market.client.session.request = mock
    return mock


MARK_PRICE_FRAME = json.dumps({
    "stream": "!markPrice@arr",
    "data": [
        {"e": "markPriceUpdate", "E": 1562305380000, "s": "BTCUSDT", "p": "11794.15000000",
         "i": "11784.62659091", "P": "11784.25641265", "r": "0.00038167", "T": 1562306400000},
        {"e": "markPriceUpdate", "E": 1562305380000, "s": "ETHUSDT", "p": "290.1"},
    ]
})


# ============================================
# Monitors
# ============================================

class TestMonitors:
    """Tests for the stream monitors"""

    @pytest.mark.asyncio
    async def test_mark_price_end_to_end(self, market, http_session):
        received = []

        token = await market.monitor_mark_price(received.append)
        http_session.sockets[0].feed_text(MARK_PRICE_FRAME)
        await wait_until(lambda: len(received) == 1)

        assert token.is_valid
        assert http_session.connected_uris == ["wss://fstream.binance.com/stream?streams=!markPrice@arr"]
        records = received[0]
        assert [record["s"] for record in records] == ["BTCUSDT", "ETHUSDT"]
        assert records[0]["r"] == "0.00038167"
        assert "r" not in records[1]

    @pytest.mark.asyncio
    async def test_symbol_streams_use_lowercase_raw_uris(self, market, http_session):
        await market.monitor_symbol("BTCUSDT", print)
        await market.monitor_symbol_book_stream("ETHUSDT", print)
        await market.monitor_kline_candlestick_stream("BNBUSDT", "1m", print)
        await market.monitor_mini_ticker(print)

        assert http_session.connected_uris == [
            "wss://fstream.binance.com/ws/btcusdt@miniTicker",
            "wss://fstream.binance.com/ws/ethusdt@bookTicker",
            "wss://fstream.binance.com/ws/bnbusdt@kline_1m",
            "wss://fstream.binance.com/stream?streams=!miniTicker@arr",
        ]
        assert len(market.registry) == 4

    @pytest.mark.asyncio
    async def test_testnet_stream_uri(self, http_session, test_settings):
        market = BinanceFuturesMarket(market_type=MarketType.TEST, config=test_settings)
        market.client.session = http_session

        await market.monitor_symbol("btcusdt", print)
        await market.aclose()

        assert http_session.connected_uris == ["wss://stream.binancefuture.com/ws/btcusdt@miniTicker"]

    @pytest.mark.asyncio
    async def test_cancel_monitor_stops_delivery(self, market, http_session):
        received = []
        token = await market.monitor_symbol("BTCUSDT", received.append)

        await market.cancel_monitor(token)
        http_session.sockets[0].feed_text(json.dumps({"s": "BTCUSDT", "c": "1"}))

        assert token not in market.registry
        assert received == []

    @pytest.mark.asyncio
    async def test_cancel_invalid_token_is_noop(self, market):
        await market.cancel_monitor(INVALID_TOKEN)
        await market.cancel_monitor(MonitorToken(id=42))

    @pytest.mark.asyncio
    async def test_handshake_failure_raises(self, market, http_session):
        http_session.fail_with = aiohttp.ClientConnectionError("refused")

        with pytest.raises(DisconnectError):
            await market.monitor_mark_price(print)

        assert len(market.registry) == 0

    @pytest.mark.asyncio
    async def test_wait_monitor_surfaces_dropped_stream(self, market, http_session):
        token = await market.monitor_symbol("BTCUSDT", print)

        http_session.sockets[0].feed(aiohttp.WSMsgType.CLOSED)

        with pytest.raises(DisconnectError):
            await market.wait_monitor(token)

    @pytest.mark.asyncio
    async def test_aclose_cancels_everything(self, http_session, test_settings):
        market = BinanceFuturesMarket(config=test_settings)
        market.client.session = http_session
        await market.monitor_symbol("BTCUSDT", print)
        await market.monitor_mark_price(print)

        await market.aclose()

        assert len(market.registry) == 0
        assert all(ws.closed for ws in http_session.sockets)
        assert http_session.closed

    @pytest.mark.asyncio
    async def test_monitor_without_session_raises(self, test_settings):
        market = BinanceFuturesMarket(config=test_settings)

        with pytest.raises(RuntimeError):
            await market.monitor_mark_price(print)


# ============================================
# User Data
# ============================================

class TestUserData:
    """Tests for the user data monitor"""

    @pytest.mark.asyncio
    async def test_user_data_lifecycle(self, market, http_session):
        market.client.create_listen_key = AsyncMock(return_value="listen-key-1")
        market.client.close_listen_key = AsyncMock(return_value=True)
        received = []

        token = await market.monitor_user_data(received.append)

        assert http_session.connected_uris == ["wss://fstream.binance.com/ws/listen-key-1"]
        assert market.listen_key == "listen-key-1"
        assert market.keepalive.running

        http_session.sockets[0].feed_text(json.dumps({"e": "ACCOUNT_UPDATE", "E": 1, "T": 2, "a": {"m": "ORDER"}}))
        await wait_until(lambda: len(received) == 1)
        assert received[0].event_type == "ACCOUNT_UPDATE"

        await market.cancel_monitor(token)

        assert not market.keepalive.running
        assert market.listen_key is None
        market.client.close_listen_key.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_only_one_user_data_monitor(self, market):
        market.client.create_listen_key = AsyncMock(return_value="listen-key-1")
        market.client.close_listen_key = AsyncMock(return_value=True)

        await market.monitor_user_data(print)

        with pytest.raises(RuntimeError):
            await market.monitor_user_data(print)

    @pytest.mark.asyncio
    async def test_failed_handshake_closes_listen_key(self, market, http_session):
        market.client.create_listen_key = AsyncMock(return_value="listen-key-1")
        market.client.close_listen_key = AsyncMock(return_value=True)
        http_session.fail_with = aiohttp.ClientConnectionError("refused")

        with pytest.raises(DisconnectError):
            await market.monitor_user_data(print)

        market.client.close_listen_key.assert_awaited_once()
        assert market.listen_key is None
        assert not market.keepalive.running

    @pytest.mark.asyncio
    async def test_concurrent_user_data_monitors_open_one_stream(self, market, http_session):
        """Verify two simultaneous requests cannot both open a user data stream"""
        market.client.create_listen_key = AsyncMock(return_value="listen-key-1")
        market.client.close_listen_key = AsyncMock(return_value=True)

        results = await asyncio.gather(
            market.monitor_user_data(print),
            market.monitor_user_data(print),
            return_exceptions=True
        )

        tokens = [r for r in results if isinstance(r, MonitorToken)]
        errors = [r for r in results if isinstance(r, RuntimeError)]
        assert len(tokens) == 1
        assert len(errors) == 1
        assert len(market.registry) == 1
        assert len(http_session.sockets) == 1
        market.client.create_listen_key.assert_awaited_once()

        await market.cancel_monitor(tokens[0])

        assert len(market.registry) == 0
        assert not market.keepalive.running
        market.client.close_listen_key.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_user_data_requires_api_key(self, http_session, test_settings):
        market = BinanceFuturesMarket(config=test_settings)
        market.client.session = http_session

        with pytest.raises(ConfigurationError):
            await market.monitor_user_data(print)

        assert http_session.connected_uris == []


# ============================================
# REST
# ============================================

class TestRest:
    """Tests for the REST wrappers"""

    @pytest.mark.asyncio
    async def test_klines_parsed(self, market):
        row = [1499040000000, "0.01634790", "0.80000000", "0.01575800", "0.01577100", "148976.11427815",
               1499644799999, "2434.19055334", 308, "1756.87402397", "28.46694368", "0"]
        mock = respond(market, body=json.dumps([row]))

        result = await market.klines({"symbol": "BTCUSDT", "interval": "1d", "limit": 1})

        assert result.valid
        assert len(result.candles) == 1
        assert result.candles[0].close == pytest.approx(0.015771)
        assert result.candles[0].trades_count == 308
        assert "signature=" not in mock.call_args[0][1]

    @pytest.mark.asyncio
    async def test_truncated_kline_row_is_invalid_result(self, market):
        """Verify a 200 body of the wrong shape comes back as a failed result"""
        body = json.dumps([[1, "1", "2"]])
        respond(market, body=body)

        result = await market.klines({"symbol": "BTCUSDT", "interval": "1m"})

        assert result.valid is False
        assert result.candles == []
        assert result.message == body

    @pytest.mark.asyncio
    async def test_account_information_split(self, market):
        respond(market, body=json.dumps({
            "totalWalletBalance": "23.72469206",
            "assets": [{"asset": "USDT", "walletBalance": "23.72469206"}],
            "positions": [{"symbol": "BTCUSDT", "positionAmt": "0.000"}],
        }))

        result = await market.account_information()

        assert result.valid
        assert result.data == {"totalWalletBalance": "23.72469206"}
        assert result.assets[0]["asset"] == "USDT"
        assert result.positions[0]["symbol"] == "BTCUSDT"

    @pytest.mark.asyncio
    async def test_new_order_rejection_is_returned(self, market):
        respond(market, 400, json.dumps({"code": -2019, "msg": "Margin is insufficient."}))

        result = await market.new_order({"symbol": "BTCUSDT", "side": "BUY", "type": "MARKET", "quantity": "100"})

        assert result.valid is False
        assert result.code == -2019
        assert result.server_message == "Margin is insufficient."

    @pytest.mark.asyncio
    async def test_order_calls_use_expected_methods(self, market):
        mock = respond(market, body="{}")
        await market.cancel_order({"symbol": "BTCUSDT", "orderId": 1})
        assert mock.call_args[0][0] == "DELETE"

        mock = respond(market, body="[]")
        result = await market.all_orders({"symbol": "BTCUSDT"})
        assert mock.call_args[0][0] == "GET"
        assert result.orders == []

    @pytest.mark.asyncio
    async def test_account_balance(self, market):
        respond(market, body=json.dumps([{"asset": "USDT", "balance": "122.6"}]))

        result = await market.account_balance()

        assert result.balances[0]["balance"] == "122.6"

    @pytest.mark.asyncio
    async def test_signed_call_without_secret(self, http_session, test_settings):
        market = BinanceFuturesMarket(ApiAccess(api_key="key"), config=test_settings)
        market.client.session = http_session
        mock = respond(market)

        with pytest.raises(ConfigurationError):
            await market.account_balance()

        mock.assert_not_called()

    @pytest.mark.asyncio
    async def test_taker_volume_unavailable_on_testnet(self, http_session, test_settings):
        market = BinanceFuturesMarket(market_type=MarketType.TEST, config=test_settings)
        market.client.session = http_session
        mock = respond(market, body="[]")

        with pytest.raises(OperationUnavailableError):
            await market.taker_buy_sell_volume({"symbol": "BTCUSDT", "period": "5m"})

        mock.assert_not_called()

    @pytest.mark.asyncio
    async def test_taker_volume_on_live(self, market):
        respond(market, body=json.dumps([{"buySellRatio": "1.5586", "buyVol": "387.3300"}]))

        result = await market.taker_buy_sell_volume({"symbol": "BTCUSDT", "period": "5m"})

        assert result.entries[0]["buySellRatio"] == "1.5586"

    @pytest.mark.asyncio
    async def test_set_api_keys_after_construction(self, http_session, test_settings):
        market = BinanceFuturesMarket(config=test_settings)
        market.client.session = http_session
        mock = respond(market, body="[]")

        market.set_api_keys(ApiAccess(api_key="late-key", secret_key="late-secret"))
        await market.account_balance()

        assert mock.call_args[1]["headers"]["X-MBX-APIKEY"] == "late-key"


# ============================================
# Receive Window
# ============================================

class TestReceiveWindow:
    """Tests for per-call, per-instance recvWindow"""

    @pytest.mark.asyncio
    async def test_override_applies_to_one_call(self, market):
        market.set_receive_window(RestCall.NEW_ORDER, timedelta(seconds=2))

        assert market.get_receive_window(RestCall.NEW_ORDER) == 2000
        assert market.get_receive_window(RestCall.CANCEL_ORDER) == 5000

        mock = respond(market)
        await market.new_order({"symbol": "BTCUSDT"})
        assert "recvWindow=2000" in mock.call_args[0][1]

        await market.cancel_order({"symbol": "BTCUSDT"})
        assert "recvWindow=5000" in mock.call_args[0][1]

    def test_instances_are_independent(self, test_settings):
        first = BinanceFuturesMarket(config=test_settings)
        second = BinanceFuturesMarket(config=test_settings)

        first.set_receive_window(RestCall.ALL_ORDERS, 1000)

        assert second.get_receive_window(RestCall.ALL_ORDERS) == 5000
