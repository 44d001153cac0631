"""
Request Builder

Assembles the pieces of an authenticated Binance Futures request:

- Query string in caller order (never re-sorted; the venue accepts any order)
- recvWindow + timestamp + signature for signed calls
- Fixed headers (API key, content type, client identifier)

Timing Security:
    A signed request is rejected when the venue sees it more than recvWindow
    milliseconds after its timestamp. Build the query string as late as
    possible, immediately before transmission.
    https://binance-docs.github.io/apidocs/futures/en/#endpoint-security-type
"""

import threading
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, Field

from core.schemas import ApiAccess, RestCall
from core.utils.time import timestamp_ms
from .signing import sign as sign_query

API_KEY_HEADER = "X-MBX-APIKEY"
CLIENT_ID = "futures-session-client"
DEFAULT_RECEIVE_WINDOW_MS = 5000

QueryParams = Union[Mapping[str, Any], Iterable[Tuple[str, Any]]]


class ReceiveWindow:
    """
    Per-call recvWindow in milliseconds, owned by one client instance.

    Every RestCall starts with the default (copied at construction, so two
    clients never share state). Access is serialized with a lock because
    callers may adjust windows from other threads while requests are built.

    Example:
        >>> windows = ReceiveWindow()
        >>> windows.set(RestCall.NEW_ORDER, 2000)
        >>> windows.get(RestCall.NEW_ORDER), windows.get(RestCall.CANCEL_ORDER)
        (2000, 5000)
    """

    def __init__(self, default_ms: int = DEFAULT_RECEIVE_WINDOW_MS):
        self._lock = threading.Lock()
        self._windows: Dict[RestCall, int] = {call: default_ms for call in RestCall}

    def get(self, call: RestCall) -> int:
        # KeyError here is a programming error: every call has an entry.
        with self._lock:
            return self._windows[call]

    def set(self, call: RestCall, milliseconds: int) -> None:
        if milliseconds <= 0:
            raise ValueError(f"Receive window must be positive, got {milliseconds}")
        with self._lock:
            self._windows[call] = int(milliseconds)

    def snapshot(self) -> Dict[RestCall, int]:
        with self._lock:
            return dict(self._windows)


class RestRequest(BaseModel):
    """A request ready for the transport: method, absolute path and headers."""

    method: str
    path: str
    headers: Dict[str, str] = Field(default_factory=dict)


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_query_string(
    params: Optional[QueryParams],
    call: RestCall,
    sign: bool,
    secret: str = "",
    receive_window_ms: int = DEFAULT_RECEIVE_WINDOW_MS,
    timestamp: Optional[int] = None
) -> str:
    """
    Join params as key=value pairs in the order given.

    For a signed call, recvWindow and timestamp are appended and the
    HMAC signature over everything so far goes last.

    Args:
        params: Mapping or sequence of (key, value) pairs
        call: The logical call (documents which receive window applies)
        sign: Append recvWindow/timestamp/signature
        secret: HMAC key (required when sign is True)
        receive_window_ms: recvWindow value for this call
        timestamp: Milliseconds since epoch; defaults to now

    Returns:
        str: Query string without a leading '?'

    Example:
        >>> build_query_string({"symbol": "BTCUSDT"}, RestCall.KLINES, sign=False)
        'symbol=BTCUSDT'
        >>> build_query_string([("symbol", "BTCUSDT")], RestCall.NEW_ORDER, True, "s", 5000, 1)
        'symbol=BTCUSDT&recvWindow=5000&timestamp=1&signature=…'
    """
    if params is None:
        pairs = []
    elif isinstance(params, Mapping):
        pairs = list(params.items())
    else:
        pairs = list(params)

    parts = [f"{key}={_format_value(value)}" for key, value in pairs]

    if not sign:
        return "&".join(parts)

    if timestamp is None:
        timestamp = timestamp_ms()

    parts.append(f"recvWindow={receive_window_ms}")
    parts.append(f"timestamp={timestamp}")
    query_string = "&".join(parts)

    return f"{query_string}&signature={sign_query(secret, query_string)}"


def build_request(method: str, path: str, access: ApiAccess) -> RestRequest:
    """
    Attach the fixed headers to a method and resolved path.

    Example:
        >>> build_request("GET", "/fapi/v1/ping", ApiAccess(api_key="k")).headers[API_KEY_HEADER]
        'k'
    """
    headers = {
        "Content-Type": "application/json",
        "User-Agent": CLIENT_ID,
    }
    if access.api_key:
        headers[API_KEY_HEADER] = access.api_key

    return RestRequest(method=method.upper(), path=path, headers=headers)
