"""
Data Schemas

This module defines the enums and Pydantic models shared by the REST and
streaming halves of the client.

Models:
    - ApiAccess: API key / secret pair (secret never printed)
    - MonitorToken: Handle returned for every registered stream
    - ExtractionSchema: Which keys to pull out of each inbound frame
    - RestResult and its typed subclasses: outcome of a REST call
    - Kline: One candlestick row from the klines endpoint
    - UserDataEvent: One event from the user data stream

Key Principle:
    A REST call that the venue rejects still produces a result object.
    `valid` is False and `message` carries the server's raw error body.
    Only transport and configuration faults are raised (see core.exceptions).
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from core.utils.time import to_utc_datetime


# ============================================
# Enums
# ============================================

class MarketType(str, Enum):
    """Selects the endpoints (and the set of permitted calls) of a client."""

    LIVE = "live"
    TEST = "test"


class RestCall(str, Enum):
    """Logical REST operations. Keys the receive window map and the path table."""

    NEW_ORDER = "new_order"
    CANCEL_ORDER = "cancel_order"
    ALL_ORDERS = "all_orders"
    ACCOUNT_INFO = "account_info"
    ACCOUNT_BALANCE = "account_balance"
    LISTEN_KEY = "listen_key"
    KLINES = "klines"
    TAKER_BUY_SELL_VOLUME = "taker_buy_sell_volume"
    PING = "ping"


# ============================================
# Credentials
# ============================================

class ApiAccess(BaseModel):
    """
    API key and secret for one client instance.

    The secret is held as a SecretStr so it renders as '**********' in
    repr(), str() and log lines.

    Example:
        >>> access = ApiAccess(api_key="abc", secret_key="xyz")
        >>> access
        ApiAccess(api_key='abc', secret_key=SecretStr('**********'))
        >>> access.secret()
        'xyz'
    """

    api_key: str = ""
    secret_key: SecretStr = SecretStr("")

    model_config = ConfigDict(frozen=True)

    def secret(self) -> str:
        return self.secret_key.get_secret_value()

    @classmethod
    def from_settings(cls, config=None) -> "ApiAccess":
        """Build from BINANCE_API_KEY / BINANCE_SECRET_KEY."""
        if config is None:
            from core.config import settings as config
        return cls(api_key=config.binance_api_key, secret_key=config.binance_secret_key)


# ============================================
# Streaming
# ============================================

class MonitorToken(BaseModel):
    """
    Handle for one registered stream.

    id 0 is reserved for the invalid token; real ids start at 1 and are
    never reused within a client's lifetime.
    """

    id: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)

    @property
    def is_valid(self) -> bool:
        return self.id != 0


INVALID_TOKEN = MonitorToken()


class ExtractionSchema(BaseModel):
    """
    Declares what the extraction pipeline pulls out of a frame.

    Attributes:
        keys: Field names to extract, in the order they appear in each record
        array_key: Optional name of a nested array; when set, one record is
            produced per element instead of one per frame

    Example:
        >>> ExtractionSchema(keys=("s", "p"), array_key="data")
    """

    keys: Tuple[str, ...]
    array_key: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class UserDataEvent(BaseModel):
    """
    One event from the user data stream.

    Attributes:
        event_type: Value of "e" (ACCOUNT_UPDATE, ORDER_TRADE_UPDATE, MARGIN_CALL, listenKeyExpired, ...)
        event_time: Value of "E" in milliseconds
        transaction_time: Value of "T" in milliseconds, when present
        payload: Every other top-level field, untouched
    """

    event_type: str
    event_time: Optional[int] = None
    transaction_time: Optional[int] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "UserDataEvent":
        payload = {k: v for k, v in document.items() if k not in ("e", "E", "T")}
        return cls(
            event_type=str(document.get("e", "")),
            event_time=document.get("E"),
            transaction_time=document.get("T"),
            payload=payload,
        )


# ============================================
# REST Results
# ============================================

class RestResult(BaseModel):
    """
    Base for every REST outcome.

    Attributes:
        valid: False if the venue answered with a non-success status
        message: Raw server error body when valid is False
        code: Venue error code when the error body carried one
    """

    valid: bool = True
    message: str = ""
    code: Optional[int] = None

    @classmethod
    def invalid(cls, body: str):
        """
        Build the failed-but-decoded variant from a raw error body.

        Binance error bodies look like {"code": -1121, "msg": "Invalid symbol."}.
        If the body is not JSON the raw text is kept as the message.
        """
        code = None
        try:
            document = json.loads(body) if body else {}
        except json.JSONDecodeError:
            document = {}
        if isinstance(document, dict) and isinstance(document.get("code"), int):
            code = document["code"]
        return cls(valid=False, message=body, code=code)

    @property
    def server_message(self) -> str:
        """The "msg" field of a JSON error body, or the raw message."""
        try:
            document = json.loads(self.message)
        except json.JSONDecodeError:
            return self.message
        if isinstance(document, dict) and "msg" in document:
            return str(document["msg"])
        return self.message


class NewOrderResult(RestResult):
    response: Dict[str, Any] = Field(default_factory=dict)


class CancelOrderResult(RestResult):
    response: Dict[str, Any] = Field(default_factory=dict)


class AllOrdersResult(RestResult):
    orders: List[Dict[str, Any]] = Field(default_factory=list)


class AccountInformation(RestResult):
    """Account snapshot. assets/positions are split out, everything else stays in data."""

    data: Dict[str, Any] = Field(default_factory=dict)
    assets: List[Dict[str, Any]] = Field(default_factory=list)
    positions: List[Dict[str, Any]] = Field(default_factory=list)


class AccountBalance(RestResult):
    balances: List[Dict[str, Any]] = Field(default_factory=list)


class TakerBuySellVolume(RestResult):
    entries: List[Dict[str, Any]] = Field(default_factory=list)


# ============================================
# Kline (Candlestick) Schema
# ============================================

class Kline(BaseModel):
    """
    One candlestick row from GET /fapi/v1/klines.

    Row Format:
        [open time, open, high, low, close, volume, close time,
         quote volume, trades, taker buy base, taker buy quote, ignore]

    Notes:
        - Prices can be 0.0 for symbols with no trades in the interval
        - Volume is in the base asset, quote_volume in the quote asset
    """

    open_time: datetime
    close_time: datetime
    open: float = Field(..., ge=0)
    high: float = Field(..., ge=0)
    low: float = Field(..., ge=0)
    close: float = Field(..., ge=0)
    volume: float = Field(..., ge=0)
    quote_volume: float = Field(..., ge=0)
    trades_count: int = Field(..., ge=0)
    taker_buy_volume: float = Field(default=0.0, ge=0)
    taker_buy_quote_volume: float = Field(default=0.0, ge=0)

    @classmethod
    def from_row(cls, row: List[Any]) -> "Kline":
        return cls(
            open_time=to_utc_datetime(row[0]),
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5]),
            close_time=to_utc_datetime(row[6]),
            quote_volume=float(row[7]),
            trades_count=int(row[8]),
            taker_buy_volume=float(row[9]) if len(row) > 9 else 0.0,
            taker_buy_quote_volume=float(row[10]) if len(row) > 10 else 0.0,
        )


class KlineCandlestick(RestResult):
    candles: List[Kline] = Field(default_factory=list)
