"""
Session Registry: authoritative map of session id → live streaming session.

Shared across all connections and the idle reaper; every operation runs
under one asyncio.Lock.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from signstream.core.errors import DuplicateSession
from signstream.core.logger import get_logger
from signstream.schemas.streaming import SessionState, StreamingConfig

log = get_logger(__name__)


@dataclass(eq=False)
class Session:
    id: str
    config: StreamingConfig
    owner: Any = None
    state: SessionState = SessionState.STREAMING
    bridge_handle: Any = None
    started_at: float = field(default_factory=time.time)
    last_activity_at: float = 0.0
    _closed: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    def __post_init__(self) -> None:
        if not self.last_activity_at:
            self.last_activity_at = self.started_at

    def touch(self, now: Optional[float] = None) -> None:
        self.last_activity_at = now if now is not None else time.time()

    def mark_closed(self) -> None:
        self.state = SessionState.CLOSED
        self._closed.set()

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    def to_stats(self, now: float) -> Dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state.value,
            "startTime": int(self.started_at * 1000),
            "lastActivity": int(self.last_activity_at * 1000),
            "duration": int((now - self.started_at) * 1000),
            "config": self.config.to_wire(),
        }


class SessionRegistry:
    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()

    async def create(self, session_id: str, config: StreamingConfig, owner: Any = None, now: Optional[float] = None) -> Session:
        async with self._lock:
            if session_id in self._sessions:
                raise DuplicateSession(f"Session {session_id} already exists")
            started = now if now is not None else time.time()
            session = Session(id=session_id, config=config, owner=owner, started_at=started)
            self._sessions[session_id] = session
        log.info("Session %s registered (%d active)", session_id, len(self._sessions))
        return session

    async def get(self, session_id: str) -> Optional[Session]:
        async with self._lock:
            return self._sessions.get(session_id)

    async def remove(self, session_id: str) -> Optional[Session]:
        async with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            log.info("Session %s removed (%d active)", session_id, len(self._sessions))
        return session

    async def touch(self, session_id: str, now: Optional[float] = None) -> None:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.touch(now)

    async def list_stale(self, now: float, timeout: float) -> List[Session]:
        async with self._lock:
            return [s for s in self._sessions.values() if now - s.last_activity_at > timeout]

    async def snapshot(self) -> List[Session]:
        async with self._lock:
            return list(self._sessions.values())

    async def stats(self, now: Optional[float] = None) -> Dict[str, Any]:
        now = now if now is not None else time.time()
        sessions = await self.snapshot()
        return {
            "activeConnections": len(sessions),
            "connections": [s.to_stats(now) for s in sessions],
        }

    def __len__(self) -> int:
        return len(self._sessions)


_registry: Optional[SessionRegistry] = None


def get_session_registry() -> SessionRegistry:
    global _registry
    if _registry is None:
        _registry = SessionRegistry()
    return _registry
