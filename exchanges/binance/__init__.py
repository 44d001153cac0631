"""
Binance USD-M Futures Connector

This module exposes BinanceFuturesMarket, the caller-facing client for the
Binance USD-M Futures venue (live or testnet). It combines:

- Monitors: push streams delivered to your callback, one WebSocket each
- REST: signed trading/account calls returning typed results
- User data: listen key creation, background keepalive and cleanup

API Documentation:
    https://binance-docs.github.io/apidocs/futures/en/

Endpoints Used:
    REST:
        - POST/DELETE /fapi/v1/order - New / cancel order
        - GET /fapi/v1/allOrders - All orders
        - GET /fapi/v2/account, /fapi/v2/balance - Account information and balance
        - GET /fapi/v1/klines - Candlesticks
        - GET /futures/data/takerlongshortRatio - Taker buy/sell volume (live only)
        - POST/PUT/DELETE /fapi/v1/listenKey - User data stream session
        - GET /fapi/v1/ping - Latency

    WebSocket:
        - !markPrice@arr, !miniTicker@arr (combined streams)
        - <symbol>@kline_<interval>, <symbol>@miniTicker, <symbol>@bookTicker
        - <listenKey> (user data)

Callbacks:
    Each monitor declares the keys it extracts. A callback receives a dict of
    those keys for single-event streams and a list of dicts for the all-market
    array streams. The user data callback receives a UserDataEvent. Callbacks
    run one at a time per monitor, in receipt order, and may be coroutine
    functions.

Testnet:
    MarketType.TEST uses https://testnet.binancefuture.com. Accounts and API
    keys come from the testnet site, not from the live API Management page.
    Calls the testnet does not offer raise OperationUnavailableError before
    any network activity.
"""

import asyncio
from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Union

from core.config import Settings, settings as default_settings
from core.exceptions import DisconnectError
from core.logging import get_logger
from core.schemas import (
    AccountBalance,
    AccountInformation,
    AllOrdersResult,
    ApiAccess,
    CancelOrderResult,
    Kline,
    KlineCandlestick,
    MarketType,
    MonitorToken,
    NewOrderResult,
    RestCall,
    TakerBuySellVolume,
    UserDataEvent,
)
from .api_client import BinanceFuturesAPIClient
from .endpoints import (
    BOOK_TICKER_SCHEMA,
    KLINE_SCHEMA,
    MARK_PRICE_SCHEMA,
    MINI_TICKER_ARRAY_SCHEMA,
    MINI_TICKER_SCHEMA,
    combined_stream_uri,
    raw_stream_uri,
)
from .extraction import MessagePipeline, UserDataPipeline
from .keepalive import KeepaliveTimer
from .registry import SessionRegistry
from .request_builder import QueryParams, ReceiveWindow
from .ws_client import StreamSession

logger = get_logger(__name__)


class BinanceFuturesMarket:
    """
    Binance USD-M Futures client.

    Attributes:
        name: Exchange identifier ("binance")
        market_type: LIVE or TEST
        client: REST dispatcher (owns the aiohttp session)
        registry: Live monitor sessions
        receive_window: Per-call recvWindow, private to this instance
        listen_key: Current user data listen key, if a user data monitor is open

    Example:
        >>> async with BinanceFuturesMarket(ApiAccess.from_settings()) as market:
        ...     token = await market.monitor_mark_price(lambda records: print(len(records)))
        ...     result = await market.new_order({"symbol": "BTCUSDT", "side": "BUY",
        ...                                      "type": "MARKET", "quantity": "0.001"})
        ...     if not result.valid:
        ...         print(result.server_message)
        ...     await market.cancel_monitor(token)

    Notes:
        - Leaving the context cancels every monitor and waits for each read
          task to finish before the HTTP session is closed
        - Dropped streams are not reconnected; see wait_monitor()
    """

    name = "binance"

    def __init__(
        self,
        access: Optional[ApiAccess] = None,
        market_type: MarketType = MarketType.LIVE,
        config: Optional[Settings] = None
    ):
        self.config = config or default_settings
        self.market_type = market_type
        self.receive_window = ReceiveWindow(self.config.default_receive_window_ms)
        self.client = BinanceFuturesAPIClient(market_type, access or ApiAccess(), self.config, self.receive_window)
        self.registry = SessionRegistry(self._create_session)

        self.listen_key: Optional[str] = None
        self._user_data_token: Optional[MonitorToken] = None
        # Held from the "already open" check until the token is recorded
        self._user_data_lock = asyncio.Lock()
        self._keepalive = KeepaliveTimer(
            self.config.listen_key_keepalive_interval,
            self.client.keepalive_listen_key,
            name="listen key keepalive"
        )

        logger.debug(f"BinanceFuturesMarket created ({market_type.value}, {self.client.base_url})")

    # ============================================
    # Lifecycle
    # ============================================

    async def __aenter__(self):
        await self.client.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        """Cancel every monitor, end the user data session and close the HTTP session."""
        await self.cancel_monitors()
        await self.client.close()
        logger.info("BinanceFuturesMarket closed")

    def _create_session(self, uri: str, monitor_id: int) -> StreamSession:
        if self.client.session is None or self.client.session.closed:
            raise RuntimeError("Client session not initialized. Use 'async with' statement.")
        return StreamSession(uri, self.client.session, monitor_id, self.config)

    @property
    def keepalive(self) -> KeepaliveTimer:
        return self._keepalive

    # ============================================
    # Settings
    # ============================================

    def set_api_keys(self, access: Optional[ApiAccess] = None) -> None:
        """
        Replace the credentials.

        Every authenticated call needs the API key; only signed calls
        (orders, account) also need the secret.
        """
        self.client.access = access or ApiAccess()

    def set_receive_window(self, call: RestCall, window: Union[int, timedelta]) -> None:
        """
        Set recvWindow for one call. Other calls keep their current value.

        Args:
            call: The call to change
            window: Milliseconds, or a timedelta
        """
        if isinstance(window, timedelta):
            window = int(window.total_seconds() * 1000)
        self.receive_window.set(call, window)

    def get_receive_window(self, call: RestCall) -> int:
        return self.receive_window.get(call)

    # ============================================
    # Monitors
    # ============================================

    async def _monitor(self, uri: str, pipeline: MessagePipeline) -> MonitorToken:
        token, _ = await self.registry.create_monitor(uri, pipeline)
        return token

    async def monitor_mark_price(self, on_data: Callable[[Any], Any]) -> MonitorToken:
        """
        Mark price and funding rate for all symbols, every 3 seconds.

        The callback receives a list of dicts with keys e, E, s, p, i, P, r, T.
        """
        uri = combined_stream_uri(self.market_type, self.config, "!markPrice@arr")
        return await self._monitor(uri, MessagePipeline(MARK_PRICE_SCHEMA, on_data))

    async def monitor_mini_ticker(self, on_data: Callable[[Any], Any]) -> MonitorToken:
        """
        24hr rolling mini ticker for all symbols, every 1000ms.

        The callback receives a list of dicts with keys e, E, s, c, o, h, l, v, q.
        """
        uri = combined_stream_uri(self.market_type, self.config, "!miniTicker@arr")
        return await self._monitor(uri, MessagePipeline(MINI_TICKER_ARRAY_SCHEMA, on_data))

    async def monitor_kline_candlestick_stream(
        self,
        symbol: str,
        interval: str,
        on_data: Callable[[Any], Any]
    ) -> MonitorToken:
        """Candlestick updates for one symbol. The "k" value holds the candle."""
        uri = raw_stream_uri(self.market_type, self.config, f"{symbol.lower()}@kline_{interval}")
        return await self._monitor(uri, MessagePipeline(KLINE_SCHEMA, on_data))

    async def monitor_symbol(self, symbol: str, on_data: Callable[[Any], Any]) -> MonitorToken:
        """Mini ticker for one symbol, every 500ms."""
        uri = raw_stream_uri(self.market_type, self.config, f"{symbol.lower()}@miniTicker")
        return await self._monitor(uri, MessagePipeline(MINI_TICKER_SCHEMA, on_data))

    async def monitor_symbol_book_stream(self, symbol: str, on_data: Callable[[Any], Any]) -> MonitorToken:
        """Best bid/ask updates for one symbol, in real time."""
        uri = raw_stream_uri(self.market_type, self.config, f"{symbol.lower()}@bookTicker")
        return await self._monitor(uri, MessagePipeline(BOOK_TICKER_SCHEMA, on_data))

    async def monitor_user_data(self, on_data: Callable[[UserDataEvent], Any]) -> MonitorToken:
        """
        Account, order and margin events for the configured API key.

        Creates a listen key, opens its stream and starts the keepalive
        timer. Only one user data monitor can be open per client.

        Raises:
            ConfigurationError: No API key set
            ListenKeyError: The venue refused to create a listen key
            DisconnectError: Transport failure
            RuntimeError: A user data monitor is already open
        """
        async with self._user_data_lock:
            if self._user_data_token is not None:
                raise RuntimeError("A user data monitor is already open; cancel it first")

            self.listen_key = await self.client.create_listen_key()
            uri = raw_stream_uri(self.market_type, self.config, self.listen_key)

            try:
                token = await self._monitor(uri, UserDataPipeline(on_data))
            except DisconnectError:
                await self._close_listen_key()
                raise

            self._user_data_token = token
            self._keepalive.start()
            return token

    async def cancel_monitor(self, token: MonitorToken) -> None:
        """Close the stream for token. Unknown or already cancelled tokens are ignored."""
        await self.registry.cancel_monitor(token)

        if self._user_data_token is not None and token.id == self._user_data_token.id:
            await self._end_user_data()

    async def cancel_monitors(self) -> None:
        """Close all streams."""
        await self.registry.cancel_all()

        if self._user_data_token is not None:
            await self._end_user_data()

    async def wait_monitor(self, token: MonitorToken) -> None:
        """
        Wait until the monitor's stream ends.

        Returns immediately for unknown tokens.

        Raises:
            DisconnectError: The stream dropped; register the monitor again
        """
        session = self.registry.get(token)
        if session is None:
            return
        await session.wait_closed()

    async def _end_user_data(self) -> None:
        async with self._user_data_lock:
            if self._user_data_token is None:
                return
            await self._keepalive.stop()
            await self._close_listen_key()
            self._user_data_token = None

    async def _close_listen_key(self) -> None:
        try:
            await self.client.close_listen_key()
        except DisconnectError as e:
            logger.warning(f"Could not close listen key: {e}")
        self.listen_key = None

    # ============================================
    # REST: Market Data
    # ============================================

    async def ping(self) -> float:
        """
        Round trip to the venue in milliseconds.

        Raises:
            DisconnectError: Transport failure
        """
        return await self.client.ping()

    async def klines(self, query: QueryParams) -> KlineCandlestick:
        """
        Candlesticks. LIMIT decides the weight of the call (default 500).

        Example:
            >>> result = await market.klines({"symbol": "BTCUSDT", "interval": "1h", "limit": 24})
            >>> result.candles[-1].close
        """
        return await self.client.send(
            RestCall.KLINES,
            "GET",
            False,
            lambda rows: KlineCandlestick(candles=[Kline.from_row(row) for row in rows]),
            KlineCandlestick,
            query
        )

    async def taker_buy_sell_volume(self, query: QueryParams) -> TakerBuySellVolume:
        """
        Taker buy/sell volume ratio. Not offered on the testnet.

        Raises:
            OperationUnavailableError: On MarketType.TEST
        """
        return await self.client.send(
            RestCall.TAKER_BUY_SELL_VOLUME,
            "GET",
            False,
            lambda entries: TakerBuySellVolume(entries=entries),
            TakerBuySellVolume,
            query
        )

    # ============================================
    # REST: Account
    # ============================================

    async def account_information(self) -> AccountInformation:
        return await self.client.send(
            RestCall.ACCOUNT_INFO,
            "GET",
            True,
            _to_account_information,
            AccountInformation
        )

    async def account_balance(self) -> AccountBalance:
        return await self.client.send(
            RestCall.ACCOUNT_BALANCE,
            "GET",
            True,
            lambda balances: AccountBalance(balances=balances),
            AccountBalance
        )

    # ============================================
    # REST: Orders
    # ============================================

    async def new_order(self, order: QueryParams) -> NewOrderResult:
        """
        Place an order. Parameters are sent in the order given.

        On success the user data stream (if monitored) reports the order too.

        Example:
            >>> await market.new_order({"symbol": "BTCUSDT", "side": "BUY", "type": "LIMIT",
            ...                         "timeInForce": "GTC", "quantity": "0.001", "price": "30000"})
        """
        return await self.client.send(
            RestCall.NEW_ORDER,
            "POST",
            True,
            lambda response: NewOrderResult(response=response),
            NewOrderResult,
            order
        )

    async def cancel_order(self, order: QueryParams) -> CancelOrderResult:
        return await self.client.send(
            RestCall.CANCEL_ORDER,
            "DELETE",
            True,
            lambda response: CancelOrderResult(response=response),
            CancelOrderResult,
            order
        )

    async def all_orders(self, query: QueryParams) -> AllOrdersResult:
        """All orders for a symbol: active, canceled or filled."""
        return await self.client.send(
            RestCall.ALL_ORDERS,
            "GET",
            True,
            lambda orders: AllOrdersResult(orders=orders),
            AllOrdersResult,
            query
        )


def _to_account_information(document: Dict[str, Any]) -> AccountInformation:
    data = {k: v for k, v in document.items() if k not in ("assets", "positions")}
    return AccountInformation(
        data=data,
        assets=document.get("assets", []),
        positions=document.get("positions", []),
    )


__all__ = ["BinanceFuturesMarket", "BinanceFuturesAPIClient", "StreamSession", "SessionRegistry"]
