"""
Binance USD-M Futures Endpoints

Resolves logical calls and market variants to concrete URIs:

- REST base URL and WebSocket base URL per MarketType (from settings)
- RestCall -> REST path
- Which calls a market variant refuses (testnet lacks the futures data endpoints)
- Stream names and extraction schemas for the push streams

Stream URI Forms:
    Raw stream:      <ws base>/ws/<streamName>          payload is the event itself
    Combined stream: <ws base>/stream?streams=<name>    payload is {"stream": ..., "data": ...}

The all-market streams are opened in combined form so that their array
payload sits under the "data" key and can be extracted element by element.
"""

from typing import Dict, FrozenSet

from core.config import Settings
from core.exceptions import OperationUnavailableError
from core.schemas import ExtractionSchema, MarketType, RestCall


REST_PATHS: Dict[RestCall, str] = {
    RestCall.NEW_ORDER: "/fapi/v1/order",
    RestCall.CANCEL_ORDER: "/fapi/v1/order",
    RestCall.ALL_ORDERS: "/fapi/v1/allOrders",
    RestCall.ACCOUNT_INFO: "/fapi/v2/account",
    RestCall.ACCOUNT_BALANCE: "/fapi/v2/balance",
    RestCall.LISTEN_KEY: "/fapi/v1/listenKey",
    RestCall.KLINES: "/fapi/v1/klines",
    RestCall.TAKER_BUY_SELL_VOLUME: "/futures/data/takerlongshortRatio",
    RestCall.PING: "/fapi/v1/ping",
}

UNAVAILABLE_CALLS: Dict[MarketType, FrozenSet[RestCall]] = {
    MarketType.LIVE: frozenset(),
    MarketType.TEST: frozenset({RestCall.TAKER_BUY_SELL_VOLUME}),
}


# ============================================
# Extraction Schemas per Stream
# ============================================

MARK_PRICE_SCHEMA = ExtractionSchema(keys=("e", "E", "s", "p", "i", "P", "r", "T"), array_key="data")
MINI_TICKER_ARRAY_SCHEMA = ExtractionSchema(keys=("e", "E", "s", "c", "o", "h", "l", "v", "q"), array_key="data")
MINI_TICKER_SCHEMA = ExtractionSchema(keys=("e", "E", "s", "c", "o", "h", "l", "v", "q"))
KLINE_SCHEMA = ExtractionSchema(keys=("e", "E", "s", "k"))
BOOK_TICKER_SCHEMA = ExtractionSchema(keys=("e", "u", "E", "T", "s", "b", "B", "a", "A"))


def api_path(call: RestCall) -> str:
    return REST_PATHS[call]


def rest_base_url(market_type: MarketType, config: Settings) -> str:
    if market_type == MarketType.TEST:
        return config.futures_test_rest_url
    return config.futures_rest_url


def ws_base_url(market_type: MarketType, config: Settings) -> str:
    if market_type == MarketType.TEST:
        return config.futures_test_ws_url
    return config.futures_ws_url


def raw_stream_uri(market_type: MarketType, config: Settings, stream: str) -> str:
    """
    Example:
        >>> raw_stream_uri(MarketType.LIVE, settings, "btcusdt@bookTicker")
        'wss://fstream.binance.com/ws/btcusdt@bookTicker'
    """
    return f"{ws_base_url(market_type, config)}/ws/{stream}"


def combined_stream_uri(market_type: MarketType, config: Settings, stream: str) -> str:
    """
    Example:
        >>> combined_stream_uri(MarketType.LIVE, settings, "!markPrice@arr")
        'wss://fstream.binance.com/stream?streams=!markPrice@arr'
    """
    return f"{ws_base_url(market_type, config)}/stream?streams={stream}"


def is_available(market_type: MarketType, call: RestCall) -> bool:
    return call not in UNAVAILABLE_CALLS[market_type]


def ensure_available(market_type: MarketType, call: RestCall) -> None:
    """
    Raises:
        OperationUnavailableError: If the market variant refuses the call
    """
    if not is_available(market_type, call):
        raise OperationUnavailableError(call.value, market_type.value)
