"""
Binance Futures REST Dispatcher

This module provides the async HTTP side of the client. It handles:
- Allow-list and credential checks before any I/O
- Signing (recvWindow + timestamp + HMAC signature) right before transmission
- Mapping HTTP outcomes to a uniform result policy
- Listen key lifecycle calls for the user data stream

Outcome Policy:
    HTTP 200              -> handler(decoded JSON) builds the typed result
    Other HTTP status     -> ResultType.invalid(raw body), returned, never raised
    Transport failure     -> DisconnectError raised (connection refused/reset, timeout)

API Documentation:
    https://binance-docs.github.io/apidocs/futures/en/

Usage:
    async with BinanceFuturesAPIClient(MarketType.LIVE, access) as client:
        latency = await client.ping()
        result = await client.send(RestCall.ACCOUNT_BALANCE, "GET", True, handler, AccountBalance)
"""

import asyncio
import json
import time
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

import aiohttp

from core.config import Settings, settings as default_settings
from core.exceptions import DisconnectError, ListenKeyError
from core.logging import get_logger, log_api_request, log_api_response
from core.schemas import ApiAccess, MarketType, RestCall, RestResult
from core.utils.time import elapsed_ms
from .endpoints import api_path, ensure_available, rest_base_url
from .request_builder import QueryParams, ReceiveWindow, build_query_string, build_request
from .signing import require_api_key, require_secret

ResultT = TypeVar("ResultT", bound=RestResult)


class BinanceFuturesAPIClient:
    """
    Async REST dispatcher for Binance USD-M Futures.

    Attributes:
        market_type: LIVE or TEST; selects base URL and permitted calls
        access: API key / secret used for headers and signing
        receive_window: Per-call recvWindow map owned by this instance
        session: aiohttp ClientSession (also used for WebSocket handshakes)
        logger: Logger instance

    Example:
        >>> async with BinanceFuturesAPIClient(MarketType.TEST) as client:
        ...     print(f"Latency: {await client.ping():.0f}ms")

    Notes:
        - Use as async context manager for session cleanup
        - No automatic retries: signed requests carry a timestamp, so a retry
          must be rebuilt by the caller anyway
    """

    EXCHANGE = "binance"

    def __init__(
        self,
        market_type: MarketType = MarketType.LIVE,
        access: Optional[ApiAccess] = None,
        config: Optional[Settings] = None,
        receive_window: Optional[ReceiveWindow] = None
    ):
        """
        Initialize the REST dispatcher.

        Args:
            market_type: Market variant to talk to
            access: Credentials (empty by default; public calls still work)
            config: Settings to read URLs and timeouts from
            receive_window: Shared recvWindow map (a fresh one by default)
        """
        self.config = config or default_settings
        self.market_type = market_type
        self.access = access or ApiAccess()
        self.receive_window = receive_window or ReceiveWindow(self.config.default_receive_window_ms)
        self.base_url = rest_base_url(market_type, self.config)
        self.session: Optional[aiohttp.ClientSession] = None
        self.logger = get_logger(__name__)

    # ============================================
    # Context Manager for Session Management
    # ============================================

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self) -> None:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
            self.logger.debug(f"REST session created for {self.base_url}")

    async def close(self) -> None:
        """Close the HTTP session. Safe to call multiple times."""
        if self.session and not self.session.closed:
            await self.session.close()
            self.logger.debug(f"REST session closed for {self.base_url}")

    # ============================================
    # Transport
    # ============================================

    async def _request(self, method: str, path: str, query_string: str) -> Tuple[int, str]:
        """
        Issue one request and return (status, body text).

        Raises:
            RuntimeError: If the session was never opened
            DisconnectError: On any transport-level failure
        """
        if not self.session:
            raise RuntimeError("Client session not initialized. Use 'async with' statement.")

        request = build_request(method, f"{path}?{query_string}" if query_string else path, self.access)
        url = f"{self.base_url}{request.path}"

        log_api_request(self.EXCHANGE, request.method, path, query_string)
        started = time.perf_counter()

        try:
            async with self.session.request(
                request.method,
                url,
                headers=request.headers,
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout)
            ) as resp:
                body = await resp.text()
                status = resp.status

        except asyncio.TimeoutError as e:
            self.logger.error(f"Timeout on {request.method} {path}")
            raise DisconnectError(f"{self.base_url}{path}", "request timed out") from e

        except aiohttp.ClientError as e:
            self.logger.error(f"Transport failure on {request.method} {path}: {e}")
            raise DisconnectError(f"{self.base_url}{path}", str(e)) from e

        log_api_response(self.EXCHANGE, path, status, elapsed_ms(started, time.perf_counter()) / 1000.0)
        return status, body

    # ============================================
    # Dispatcher
    # ============================================

    async def send(
        self,
        call: RestCall,
        method: str,
        sign: bool,
        handler: Callable[[Any], ResultT],
        result_type: Type[ResultT] = RestResult,
        params: Optional[QueryParams] = None
    ) -> ResultT:
        """
        Build, sign and send a call, then map the response to a result.

        Args:
            call: Logical call (selects path and recvWindow)
            method: HTTP method
            sign: Whether the call must be signed
            handler: Turns decoded JSON of a 200 response into the typed result
            result_type: Result class used for the failed-but-decoded variant
            params: Query parameters in the order they must be sent

        Returns:
            ResultT: handler output on success, result_type.invalid(body) otherwise

        Raises:
            OperationUnavailableError: Call not offered on this market
            ConfigurationError: Missing API key / secret for the call
            DisconnectError: Transport failure
        """
        ensure_available(self.market_type, call)

        secret = ""
        if sign:
            require_api_key(self.access, call.value)
            secret = require_secret(self.access, call.value)

        # Timestamp is taken here, as close to transmission as possible
        query_string = build_query_string(
            params,
            call,
            sign,
            secret=secret,
            receive_window_ms=self.receive_window.get(call)
        )

        path = api_path(call)
        status, body = await self._request(method, path, query_string)

        if status != 200:
            self.logger.warning(f"HTTP {status} on {method} {path}: {body[:200]}")
            return result_type.invalid(body)

        try:
            document = json.loads(body) if body else {}
        except json.JSONDecodeError:
            self.logger.warning(f"Malformed response body on {method} {path}: {body[:100]}")
            return result_type.invalid(body)

        try:
            return handler(document)
        except (ValueError, TypeError, IndexError, KeyError, AttributeError) as e:
            # pydantic.ValidationError is a ValueError
            self.logger.warning(f"Unexpected response shape on {method} {path}: {e}")
            return result_type.invalid(body)

    async def ping(self) -> float:
        """
        Round trip of an unsigned GET /fapi/v1/ping in milliseconds.

        Network latency plus the venue's processing time; the client adds
        next to nothing.

        Raises:
            DisconnectError: Transport failure
        """
        path = api_path(RestCall.PING)
        started = time.perf_counter()
        status, body = await self._request("GET", path, "")
        latency = elapsed_ms(started, time.perf_counter())

        if status != 200:
            self.logger.warning(f"Ping answered with HTTP {status}: {body[:200]}")

        return latency

    # ============================================
    # Listen Key (user data stream)
    # ============================================

    async def create_listen_key(self) -> str:
        """
        POST /fapi/v1/listenKey. Needs the API key but no signature.

        Returns:
            str: The listen key

        Raises:
            ConfigurationError: No API key set
            ListenKeyError: The venue refused
            DisconnectError: Transport failure
        """
        require_api_key(self.access, RestCall.LISTEN_KEY.value)
        ensure_available(self.market_type, RestCall.LISTEN_KEY)

        status, body = await self._request("POST", api_path(RestCall.LISTEN_KEY), "")
        if status != 200:
            raise ListenKeyError(f"Listen key creation failed (HTTP {status}): {body[:200]}")

        try:
            listen_key = json.loads(body).get("listenKey", "")
        except (json.JSONDecodeError, AttributeError) as e:
            raise ListenKeyError(f"Listen key response malformed: {body[:200]}") from e

        if not listen_key:
            raise ListenKeyError(f"Listen key missing from response: {body[:200]}")

        self.logger.info("Listen key created")
        return listen_key

    async def keepalive_listen_key(self) -> None:
        """
        PUT /fapi/v1/listenKey. Extends the current listen key's validity.

        Raises:
            ListenKeyError: The venue refused
            DisconnectError: Transport failure
        """
        require_api_key(self.access, RestCall.LISTEN_KEY.value)

        status, body = await self._request("PUT", api_path(RestCall.LISTEN_KEY), "")
        if status != 200:
            raise ListenKeyError(f"Keepalive for listen key failed (HTTP {status}): {body[:200]}")

        self.logger.debug("Listen key kept alive")

    async def close_listen_key(self) -> bool:
        """
        DELETE /fapi/v1/listenKey. Invalidates the user data stream.

        Returns:
            bool: True if the venue accepted the request
        """
        require_api_key(self.access, RestCall.LISTEN_KEY.value)

        status, body = await self._request("DELETE", api_path(RestCall.LISTEN_KEY), "")
        if status != 200:
            self.logger.warning(f"Closing listen key failed (HTTP {status}): {body[:200]}")
            return False

        self.logger.info("Listen key closed")
        return True
