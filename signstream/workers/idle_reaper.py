"""
Idle reaper: expires streaming sessions with no client activity.

Runs as a periodic job on the scheduler. Each stale session is closed
through its owning handler so the close path (bridge release, registry
removal, `streaming-stopped`) is the same as a client stop. Sessions whose
owner is gone, or does not respond in time, are closed here directly.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional

from signstream.core.config import get_settings
from signstream.core.logger import get_logger
from signstream.services.session_registry import Session, SessionRegistry, get_session_registry
from signstream.services.transcription_bridge import TranscriptionBridge, get_transcription_bridge

log = get_logger(__name__)


class IdleReaper:
    def __init__(
        self,
        registry: SessionRegistry,
        bridge: TranscriptionBridge,
        timeout: Optional[float] = None,
        interval: Optional[float] = None,
        expire_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        settings = get_settings()
        self._registry = registry
        self._bridge = bridge
        self.timeout = timeout if timeout is not None else settings.SESSION_IDLE_TIMEOUT
        self.interval = interval if interval is not None else settings.REAPER_INTERVAL
        self.expire_timeout = expire_timeout if expire_timeout is not None else settings.BRIDGE_CLOSE_TIMEOUT * 2
        self._clock = clock

    async def sweep(self) -> int:
        """Expire every session idle longer than `timeout`; returns how many were closed."""
        stale = await self._registry.list_stale(self._clock(), self.timeout)
        expired = 0
        for session in stale:
            try:
                await self._expire(session)
                expired += 1
            except Exception:
                log.exception("Failed to expire session %s", session.id)
        if expired:
            log.info("Cleaned up %d inactive session(s)", expired)
        return expired

    async def shutdown_sessions(self) -> int:
        sessions = await self._registry.snapshot()
        closed = 0
        for session in sessions:
            try:
                await self._expire(session)
                closed += 1
            except Exception:
                log.exception("Failed to close session %s during shutdown", session.id)
        if closed:
            log.info("Closed %d session(s) on shutdown", closed)
        return closed

    async def _expire(self, session: Session) -> None:
        owner = session.owner
        if owner is not None:
            try:
                await asyncio.wait_for(owner.expire(session), timeout=self.expire_timeout)
            except asyncio.TimeoutError:
                log.warning("Session %s owner did not close it within %.1fs", session.id, self.expire_timeout)
            if session.is_closed and await self._registry.get(session.id) is None:
                return
        await self._close_orphan(session)

    async def _close_orphan(self, session: Session) -> None:
        log.info("Closing orphaned session %s", session.id)
        if session.bridge_handle is not None:
            await self._bridge.close(session.bridge_handle)
        await self._registry.remove(session.id)
        session.mark_closed()


_reaper: Optional[IdleReaper] = None


def get_idle_reaper() -> IdleReaper:
    global _reaper
    if _reaper is None:
        _reaper = IdleReaper(get_session_registry(), get_transcription_bridge())
    return _reaper
