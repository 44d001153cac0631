"""
Unit Tests for KeepaliveTimer

Run with:
    pytest tests/unit/test_keepalive.py -v
"""

import pytest
from unittest.mock import AsyncMock

from conftest import wait_until
from core.exceptions import DisconnectError, ListenKeyError
from exchanges.binance.keepalive import KeepaliveTimer


class TestKeepaliveTimer:
    """Tests for periodic refresh"""

    @pytest.mark.asyncio
    async def test_ticks_periodically(self):
        action = AsyncMock()
        timer = KeepaliveTimer(0.01, action)

        timer.start()
        await wait_until(lambda: action.await_count >= 3)
        await timer.stop()

        assert not timer.running

    @pytest.mark.asyncio
    async def test_failure_is_counted_and_timer_keeps_running(self):
        failures = [ListenKeyError("nope"), DisconnectError("https://x")]

        def outcome():
            if failures:
                raise failures.pop(0)

        action = AsyncMock(side_effect=outcome)
        timer = KeepaliveTimer(0.01, action)

        timer.start()
        await wait_until(lambda: action.await_count >= 2)

        assert timer.running
        assert timer.consecutive_failures >= 1

        await wait_until(lambda: action.await_count >= 3)
        await wait_until(lambda: timer.consecutive_failures == 0)
        await timer.stop()

    @pytest.mark.asyncio
    async def test_unexpected_exception_keeps_timer_running(self):
        """Verify a non-client error is counted instead of ending the timer"""
        calls = []

        async def action():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("Client session not initialized")

        timer = KeepaliveTimer(0.01, action)

        timer.start()
        await wait_until(lambda: len(calls) >= 2)

        assert timer.running
        assert timer.consecutive_failures == 0
        await timer.stop()

    @pytest.mark.asyncio
    async def test_tick_counts_unexpected_exception(self):
        timer = KeepaliveTimer(60, AsyncMock(side_effect=RuntimeError("boom")))

        assert await timer.tick() is False
        assert timer.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_tick_reports_outcome(self):
        timer = KeepaliveTimer(60, AsyncMock(side_effect=ListenKeyError("expired")))

        assert await timer.tick() is False
        assert await timer.tick() is False
        assert timer.consecutive_failures == 2

        timer.action = AsyncMock()
        assert await timer.tick() is True
        assert timer.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_task(self):
        timer = KeepaliveTimer(60, AsyncMock())

        timer.start()
        task = timer._task
        timer.start()

        assert timer._task is task
        await timer.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        timer = KeepaliveTimer(60, AsyncMock())
        await timer.stop()
        assert not timer.running
