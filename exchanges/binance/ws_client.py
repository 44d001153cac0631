"""
Binance WebSocket Stream Session

This module owns one persistent WebSocket connection per monitor. It handles:
- The handshake (with timeout) and heartbeat
- A read loop that feeds frames, in receipt order, to a MessagePipeline
- Cooperative cancellation checked at every receive boundary
- Surfacing dropped connections as DisconnectError

Lifecycle:
    CONNECTING --connect()--> OPEN --cancel()--> CANCELLING --> CLOSED
    A failed handshake or a dropped stream also ends in CLOSED, with
    `fault` set to the DisconnectError.

Teardown Order (driven by the registry):
    1. cancel(): set the cancellation flag (and, if forced, cancel the read task)
    2. await the read task so nothing touches the session afterwards
    3. the registry erases its entry
    4. close(): close the WebSocket handle

There is no automatic reconnection. A caller that sees a DisconnectError
(from wait_closed()) registers the monitor again.

WebSocket Documentation:
    https://binance-docs.github.io/apidocs/futures/en/#websocket-market-streams
"""

import asyncio
from enum import Enum
from typing import Optional

import aiohttp

from core.config import Settings, settings as default_settings
from core.exceptions import DisconnectError, MalformedPayloadError
from core.logging import get_logger, log_websocket_event
from .extraction import MessagePipeline

_TERMINAL_MESSAGE_TYPES = (
    aiohttp.WSMsgType.CLOSE,
    aiohttp.WSMsgType.CLOSING,
    aiohttp.WSMsgType.CLOSED,
    aiohttp.WSMsgType.ERROR,
)


class SessionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CANCELLING = "cancelling"
    CLOSED = "closed"


class StreamSession:
    """
    One WebSocket connection and its read task.

    Attributes:
        uri: Stream URI
        monitor_id: Id of the monitor this session serves (lookup only)
        ws: Active WebSocket connection
        state: Current SessionState
        fault: DisconnectError if the stream dropped or never connected
        malformed_frames: Number of frames dropped because they were not JSON

    Example:
        >>> session = StreamSession(uri, http_session, monitor_id=1)
        >>> await session.connect()
        >>> session.start(MessagePipeline(schema, print))
        >>> ...
        >>> await session.cancel()
        >>> await session.close()
    """

    EXCHANGE = "binance"

    def __init__(
        self,
        uri: str,
        http_session: aiohttp.ClientSession,
        monitor_id: int = 0,
        config: Optional[Settings] = None
    ):
        self.uri = uri
        self.monitor_id = monitor_id
        self.config = config or default_settings

        self.ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self.state = SessionState.CONNECTING
        self.fault: Optional[DisconnectError] = None
        self.malformed_frames = 0

        self._http_session = http_session
        self._cancelled = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

        self.logger = get_logger(__name__)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    # ============================================
    # Connection Management
    # ============================================

    async def connect(self) -> None:
        """
        Run the WebSocket handshake.

        Raises:
            DisconnectError: If the handshake fails or times out
        """
        self.logger.info(f"Connecting to {self.uri}")

        try:
            self.ws = await asyncio.wait_for(
                self._http_session.ws_connect(self.uri, heartbeat=self.config.ws_heartbeat),
                timeout=self.config.ws_handshake_timeout
            )

        except asyncio.TimeoutError as e:
            self.state = SessionState.CLOSED
            self.fault = DisconnectError(self.uri, "handshake timed out")
            log_websocket_event(self.EXCHANGE, "error", self.monitor_id, str(self.fault))
            raise self.fault from e

        except aiohttp.ClientError as e:
            self.state = SessionState.CLOSED
            self.fault = DisconnectError(self.uri, str(e))
            log_websocket_event(self.EXCHANGE, "error", self.monitor_id, str(self.fault))
            raise self.fault from e

        self.state = SessionState.OPEN
        log_websocket_event(self.EXCHANGE, "connected", self.monitor_id, self.uri)

    def start(self, pipeline: MessagePipeline) -> asyncio.Task:
        """
        Spawn the read loop.

        Raises:
            RuntimeError: If the session is not open or already reading
        """
        if self.state != SessionState.OPEN or self.ws is None:
            raise RuntimeError(f"Cannot start reading from a session in state '{self.state.value}'")
        if self._task is not None:
            raise RuntimeError("Read loop already started")

        self._task = asyncio.create_task(self._read_loop(pipeline), name=f"monitor-{self.monitor_id}")
        return self._task

    async def cancel(self, forced: bool = False) -> None:
        """
        Stop the read loop and wait for it to unwind.

        A graceful cancel lets a callback that is already running finish;
        the pending receive is abandoned. A forced cancel also cancels the
        read task, interrupting a running coroutine callback.

        Called from inside the session's own callback, this only sets the
        flag; the loop exits once the callback returns.
        """
        if self.state in (SessionState.CONNECTING, SessionState.OPEN):
            self.state = SessionState.CANCELLING
        self._cancelled.set()

        task = self._task
        if task is None:
            self.state = SessionState.CLOSED
            return

        if task is asyncio.current_task():
            return

        if forced and not task.done():
            task.cancel()

        await asyncio.gather(task, return_exceptions=True)

    async def close(self) -> None:
        """Close the WebSocket handle. Safe to call multiple times."""
        if self.ws is not None and not self.ws.closed:
            await self.ws.close()
            self.logger.debug(f"WebSocket closed for monitor {self.monitor_id}")
        self.state = SessionState.CLOSED

    async def wait_closed(self) -> None:
        """
        Wait until the read loop ends.

        Raises:
            DisconnectError: If the stream ended because the connection dropped
        """
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
        if self.fault is not None:
            raise self.fault

    # ============================================
    # Read Loop
    # ============================================

    async def _next_message(self) -> Optional[aiohttp.WSMessage]:
        """
        Wait for the next frame or for cancellation, whichever comes first.

        Returns:
            The message, or None once cancellation has been observed
        """
        receive = asyncio.ensure_future(self.ws.receive())
        cancelled = asyncio.ensure_future(self._cancelled.wait())

        try:
            await asyncio.wait({receive, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in (receive, cancelled):
                if not waiter.done():
                    waiter.cancel()

        if self._cancelled.is_set():
            if receive.done() and not receive.cancelled():
                receive.exception()
            return None

        return receive.result()

    async def _read_loop(self, pipeline: MessagePipeline) -> None:
        """
        Deliver frames to the pipeline until cancelled or disconnected.

        Message Types:
            - TEXT: handed to the pipeline
            - CLOSE/CLOSING/CLOSED/ERROR: connection lost, sets fault
            - anything else (BINARY, PING, PONG): ignored
        """
        try:
            while not self._cancelled.is_set():
                try:
                    msg = await self._next_message()
                except (aiohttp.ClientError, ConnectionError) as e:
                    self.fault = DisconnectError(self.uri, str(e))
                    break

                if msg is None:
                    break

                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._dispatch(pipeline, msg.data)

                elif msg.type in _TERMINAL_MESSAGE_TYPES:
                    if not self._cancelled.is_set():
                        self.fault = DisconnectError(self.uri, f"{msg.type.name} {msg.data}")
                    break

                else:
                    self.logger.debug(f"Ignoring message type {msg.type} on monitor {self.monitor_id}")

        except asyncio.CancelledError:
            self.logger.debug(f"Read loop for monitor {self.monitor_id} cancelled")
            raise

        finally:
            self.state = SessionState.CLOSED
            if self.fault is not None:
                log_websocket_event(self.EXCHANGE, "disconnected", self.monitor_id, str(self.fault))
            else:
                log_websocket_event(self.EXCHANGE, "stopped", self.monitor_id)

    async def _dispatch(self, pipeline: MessagePipeline, frame: str) -> None:
        try:
            await pipeline.process(frame)

        except MalformedPayloadError as e:
            self.malformed_frames += 1
            self.logger.warning(f"Dropped malformed frame on monitor {self.monitor_id}: {e}")

        except Exception:
            self.logger.exception(f"Callback for monitor {self.monitor_id} raised")
