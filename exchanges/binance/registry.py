"""
Session Registry

Sole owner of the live StreamSessions of one client. It issues monitor ids
and maps them to sessions.

Guarantees:
    - Ids start at 1, increase strictly and are never reused, even after
      a monitor is cancelled
    - Registrations and teardowns are serialized by one asyncio.Lock, so a
      session can never be torn down while a registration is half done
    - Cancelling an unknown or already-cancelled token is a no-op
    - A session's entry is erased only after its read task has finished
"""

import asyncio
import itertools
import threading
from typing import Callable, Dict, Optional, Tuple

from core.logging import get_logger
from core.schemas import MonitorToken
from .extraction import MessagePipeline
from .ws_client import StreamSession

SessionFactory = Callable[[str, int], StreamSession]


class SessionRegistry:
    """
    Map of monitor id -> StreamSession.

    Args:
        session_factory: Builds an unconnected StreamSession for (uri, monitor_id)

    Example:
        >>> registry = SessionRegistry(lambda uri, mid: StreamSession(uri, http_session, mid))
        >>> token, session = await registry.create_monitor(uri, pipeline)
        >>> await registry.cancel_monitor(token)
    """

    def __init__(self, session_factory: SessionFactory):
        self._factory = session_factory
        self._sessions: Dict[int, StreamSession] = {}
        self._lock = asyncio.Lock()
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()
        self.logger = get_logger(__name__)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, token: MonitorToken) -> bool:
        return token.id in self._sessions

    def _next_id(self) -> int:
        with self._id_lock:
            return next(self._ids)

    async def create_monitor(self, uri: str, pipeline: MessagePipeline) -> Tuple[MonitorToken, StreamSession]:
        """
        Connect a new session, register it and start its read loop.

        A failed handshake consumes the id; it is not handed out again.

        Raises:
            DisconnectError: If the handshake fails
        """
        async with self._lock:
            monitor_id = self._next_id()
            session = self._factory(uri, monitor_id)
            await session.connect()
            self._sessions[monitor_id] = session
            session.start(pipeline)

        self.logger.info(f"Monitor {monitor_id} registered for {uri}")
        return MonitorToken(id=monitor_id), session

    async def cancel_monitor(self, token: MonitorToken, forced: bool = True) -> bool:
        """
        Tear down the session behind token.

        Returns:
            bool: False if the token was unknown (nothing to do)
        """
        async with self._lock:
            session = self._sessions.get(token.id)
            if session is None:
                return False
            await self._teardown(token.id, session, forced)

        self.logger.info(f"Monitor {token.id} cancelled")
        return True

    async def cancel_all(self, forced: bool = True) -> int:
        """
        Tear down every registered session.

        Returns:
            int: Number of sessions torn down
        """
        async with self._lock:
            monitor_ids = list(self._sessions)
            for monitor_id in monitor_ids:
                await self._teardown(monitor_id, self._sessions[monitor_id], forced)

        if monitor_ids:
            self.logger.info(f"Cancelled {len(monitor_ids)} monitors")
        return len(monitor_ids)

    async def _teardown(self, monitor_id: int, session: StreamSession, forced: bool) -> None:
        await session.cancel(forced=forced)
        del self._sessions[monitor_id]
        await session.close()

    def get(self, token: MonitorToken) -> Optional[StreamSession]:
        return self._sessions.get(token.id)

    def snapshot(self) -> Dict[int, StreamSession]:
        """Copy of the current id -> session map, for read-only use."""
        return dict(self._sessions)
