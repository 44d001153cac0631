"""
Shared fakes for the unit tests.

The network is never touched: REST calls go to FakeResponse objects and
WebSocket handshakes return FakeWebSocket instances whose frames the test
feeds by hand.
"""

import asyncio

import pytest
from aiohttp import WSMsgType

from core.config import Settings


class MockWSMessage:
    """Mock aiohttp WebSocket message"""

    def __init__(self, msg_type, data=None):
        self.type = msg_type
        self.data = data


class FakeWebSocket:
    """WebSocket whose receive() returns whatever the test feeds."""

    def __init__(self):
        self.queue = asyncio.Queue()
        self.closed = False
        self.close_calls = 0

    def feed_text(self, data: str) -> None:
        self.queue.put_nowait(MockWSMessage(WSMsgType.TEXT, data))

    def feed(self, msg_type, data=None) -> None:
        self.queue.put_nowait(MockWSMessage(msg_type, data))

    async def receive(self):
        return await self.queue.get()

    async def close(self):
        self.closed = True
        self.close_calls += 1
        return True


class FakeHTTPSession:
    """Stands in for aiohttp.ClientSession on the WebSocket side."""

    def __init__(self):
        self.sockets = []
        self.connected_uris = []
        self.connect_kwargs = []
        self.fail_with = None
        self.closed = False

    async def ws_connect(self, uri, **kwargs):
        if self.fail_with is not None:
            raise self.fail_with
        ws = FakeWebSocket()
        self.sockets.append(ws)
        self.connected_uris.append(uri)
        self.connect_kwargs.append(kwargs)
        return ws

    async def close(self):
        self.closed = True


class FakeResponse:
    """Async context manager mimicking an aiohttp response."""

    def __init__(self, status=200, body="", raise_on_enter=None):
        self.status = status
        self._body = body
        self._raise_on_enter = raise_on_enter

    async def __aenter__(self):
        if self._raise_on_enter is not None:
            raise self._raise_on_enter
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False

    async def text(self):
        return self._body


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Poll predicate until it is true or fail after timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def test_settings():
    """Settings isolated from any .env file"""
    return Settings(_env_file=None, ws_handshake_timeout=1, ws_heartbeat=30)


@pytest.fixture
def http_session():
    return FakeHTTPSession()
