"""
Session Protocol Handler: per-connection streaming state machine.

    Idle --start--> Streaming --stop/end/error/idle--> Closing --> Idle
    any state --disconnect--> Closed

Every input (client command, bridge signal, reaper expiry) is a message on
one inbox queue consumed by a single dispatcher task, so state transitions
never interleave. Outbound events go through one ordered outbox drained by
a sender task. Mapping runs in background tasks so a slow lookup never
delays transcript delivery; results for a session that has since closed
are dropped.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from signstream.core.config import Settings, get_settings
from signstream.core.errors import (
    ErrorKind,
    NoActiveSession,
    SignStreamError,
    StreamAlreadyActive,
    describe_error,
)
from signstream.core.logger import get_logger
from signstream.core.monitoring import get_metrics
from signstream.schemas.protocol import ServerEvent, server_message
from signstream.schemas.streaming import SessionState, StreamingConfig, TranscriptEvent, utcnow
from signstream.services.mapping_service import MappingInvoker
from signstream.services.session_registry import Session, SessionRegistry
from signstream.services.transcription_bridge import (
    BridgeEnded,
    BridgeFailure,
    BridgeSignal,
    TranscriptionBridge,
)

log = get_logger(__name__)

EventSink = Callable[[Dict[str, Any]], Awaitable[None]]


# -------------------------
# Inbox messages
# -------------------------
@dataclass(frozen=True)
class StartStreaming:
    config: StreamingConfig


@dataclass(frozen=True)
class AudioChunk:
    data: bytes


@dataclass(frozen=True)
class StopStreaming:
    pass


@dataclass(frozen=True)
class Ping:
    pass


@dataclass(frozen=True)
class Disconnect:
    pass


@dataclass(frozen=True, eq=False)
class Expire:
    session: Session


@dataclass(frozen=True, eq=False)
class ProviderSignal:
    session: Session
    signal: BridgeSignal


@dataclass(frozen=True)
class ProtocolFault:
    error: SignStreamError


_STOP_SENDING = object()


class SessionProtocolHandler:
    def __init__(
        self,
        connection_id: str,
        *,
        registry: SessionRegistry,
        bridge: TranscriptionBridge,
        mapper: MappingInvoker,
        sink: EventSink,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self.connection_id = connection_id
        self._registry = registry
        self._bridge = bridge
        self._mapper = mapper
        self._sink = sink
        self._drain_timeout = settings.MAPPING_DRAIN_TIMEOUT

        self._inbox: asyncio.Queue = asyncio.Queue()
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._state = SessionState.IDLE
        self._session: Optional[Session] = None
        self._mappings: Set[asyncio.Task] = set()
        self._dispatcher: Optional[asyncio.Task] = None
        self._sender: Optional[asyncio.Task] = None
        self._disconnecting = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def open(self) -> None:
        if self._dispatcher is not None:
            return
        self._dispatcher = asyncio.create_task(self._dispatch_loop(), name=f"dispatch-{self.connection_id}")
        self._sender = asyncio.create_task(self._send_loop(), name=f"send-{self.connection_id}")

    # -------------------------
    # Public entry points (called by the transport)
    # -------------------------
    def start_streaming(self, config: StreamingConfig) -> None:
        self._put(StartStreaming(config))

    def send_audio(self, chunk: bytes) -> None:
        self._put(AudioChunk(chunk))

    def stop_streaming(self) -> None:
        self._put(StopStreaming())

    def ping(self) -> None:
        self._put(Ping())

    def reject(self, error: SignStreamError) -> None:
        """Report a message the transport could not decode."""
        self._put(ProtocolFault(error))

    async def disconnect(self) -> None:
        if self._dispatcher is None:
            self._state = SessionState.CLOSED
            return
        if not self._disconnecting:
            self._disconnecting = True
            self._inbox.put_nowait(Disconnect())
        await self.wait_closed()

    async def wait_closed(self) -> None:
        tasks = {t for t in (self._dispatcher, self._sender) if t is not None}
        if tasks:
            await asyncio.wait(tasks)

    async def expire(self, session: Session) -> None:
        """Close `session` through the normal close path (idle reaper entry point)."""
        if self._dispatcher is None or self._state is SessionState.CLOSED:
            return
        self._inbox.put_nowait(Expire(session))
        await session.wait_closed()

    def _put(self, message: Any) -> None:
        if self._disconnecting or self._state is SessionState.CLOSED:
            log.debug("Connection %s closed; dropping %s", self.connection_id, type(message).__name__)
            return
        if self._session is not None:
            self._session.touch()
        self._inbox.put_nowait(message)

    # -------------------------
    # Dispatcher
    # -------------------------
    async def _dispatch_loop(self) -> None:
        try:
            while self._state is not SessionState.CLOSED:
                message = await self._inbox.get()
                try:
                    await self._handle(message)
                except Exception as exc:
                    log.exception("Connection %s failed handling %s", self.connection_id, type(message).__name__)
                    self._emit(ServerEvent.ERROR, describe_error("Internal server error", exc))
                    if isinstance(message, Disconnect):
                        self._state = SessionState.CLOSED
        finally:
            self._outbox.put_nowait(_STOP_SENDING)

    async def _handle(self, message: Any) -> None:
        if isinstance(message, ProviderSignal):
            await self._on_provider_signal(message.session, message.signal)
        elif isinstance(message, AudioChunk):
            await self._on_audio(message.data)
        elif isinstance(message, StartStreaming):
            await self._on_start(message.config)
        elif isinstance(message, StopStreaming):
            await self._close_stream()
        elif isinstance(message, Ping):
            self._emit(ServerEvent.PONG, {"timestamp": utcnow().isoformat()})
        elif isinstance(message, ProtocolFault):
            self._on_fault(message.error)
        elif isinstance(message, Expire):
            await self._on_expire(message.session)
        elif isinstance(message, Disconnect):
            await self._close_stream()
            self._state = SessionState.CLOSED
            log.info("Connection %s closed", self.connection_id)
        else:
            raise TypeError(f"Unknown inbox message: {message!r}")

    async def _on_start(self, config: StreamingConfig) -> None:
        if self._state is SessionState.STREAMING:
            err = StreamAlreadyActive()
            self._emit(ServerEvent.ERROR, describe_error(err.user_message, err))
            return

        try:
            handle = await self._bridge.open(config)
        except SignStreamError as exc:
            log.warning("Connection %s failed to start streaming: %s", self.connection_id, exc)
            self._emit(ServerEvent.STREAMING_ERROR, describe_error("Failed to start streaming recognition", exc))
            return

        try:
            session = await self._registry.create(uuid.uuid4().hex, config, owner=self)
        except SignStreamError as exc:
            await self._bridge.close(handle)
            self._emit(ServerEvent.STREAMING_ERROR, describe_error("Failed to start streaming recognition", exc))
            return

        session.bridge_handle = handle
        self._session = session
        self._state = SessionState.STREAMING
        self._emit(ServerEvent.STREAMING_STARTED, {"sessionId": session.id, "config": config.to_wire()})
        self._bridge.on_event(handle, self._bridge_callback(session))
        log.info("Connection %s started streaming session %s", self.connection_id, session.id)

    def _bridge_callback(self, session: Session) -> Callable[[BridgeSignal], Awaitable[None]]:
        async def deliver(signal: BridgeSignal) -> None:
            self._inbox.put_nowait(ProviderSignal(session, signal))

        return deliver

    async def _on_audio(self, data: bytes) -> None:
        session = self._session
        if self._state is not SessionState.STREAMING or session is None:
            err = NoActiveSession()
            self._emit(ServerEvent.ERROR, describe_error(err.user_message, err))
            return
        session.touch()
        try:
            await self._bridge.write(session.bridge_handle, data)
        except SignStreamError as exc:
            log.warning("Session %s rejected audio: %s", session.id, exc)
            self._emit(ServerEvent.STREAMING_ERROR, describe_error("Streaming session ended", exc))
            await self._close_stream()

    async def _on_provider_signal(self, session: Session, signal: BridgeSignal) -> None:
        if session is not self._session or self._state is not SessionState.STREAMING:
            return

        if isinstance(signal, TranscriptEvent):
            self._emit(ServerEvent.TRANSCRIPT_UPDATE, signal.to_wire())
            if signal.is_final and signal.text.strip():
                self._start_mapping(session, signal.text)
        elif isinstance(signal, BridgeFailure):
            log.warning("Session %s recognition failed: %s", session.id, signal.error)
            self._emit(ServerEvent.STREAMING_ERROR, describe_error("Speech recognition error", signal.error))
            await self._close_stream()
        elif isinstance(signal, BridgeEnded):
            await self._drain_mappings()
            self._emit(ServerEvent.STREAMING_ENDED, {"sessionId": session.id})
            await self._close_stream()

    async def _on_expire(self, session: Session) -> None:
        if session is self._session:
            log.info("Session %s expired after inactivity", session.id)
            await self._close_stream()
        elif not session.is_closed:
            # Not ours any more; only release the waiter.
            session.mark_closed()

    def _on_fault(self, error: SignStreamError) -> None:
        # Outside a live stream a bad start request is a failed start.
        if error.kind is ErrorKind.CONFIGURATION and self._state is not SessionState.STREAMING:
            event = ServerEvent.STREAMING_ERROR
        else:
            event = ServerEvent.ERROR
        self._emit(event, describe_error(error.user_message, error))

    # -------------------------
    # Mapping
    # -------------------------
    def _start_mapping(self, session: Session, text: str) -> None:
        task = asyncio.create_task(self._map(session, text))
        self._mappings.add(task)
        task.add_done_callback(self._mappings.discard)

    async def _map(self, session: Session, text: str) -> None:
        started = time.perf_counter()
        try:
            result = await self._mapper.map_text_async(text)
        except SignStreamError as exc:
            log.warning("Session %s mapping failed: %s", session.id, exc)
            self._emit_for(session, ServerEvent.MAPPING_ERROR, describe_error("Failed to map text to signs", exc))
            return
        except Exception as exc:
            log.exception("Session %s mapping crashed", session.id)
            self._emit_for(session, ServerEvent.MAPPING_ERROR, describe_error("Failed to map text to signs", exc))
            return
        get_metrics().record_processing("mapping", (time.perf_counter() - started) * 1000)
        self._emit_for(session, ServerEvent.SIGNS_UPDATE, result.to_event())

    async def _drain_mappings(self) -> None:
        pending = set(self._mappings)
        if not pending:
            return
        _, still_running = await asyncio.wait(pending, timeout=self._drain_timeout)
        if still_running:
            log.warning("%d mapping(s) still running after %.1fs; dropping", len(still_running), self._drain_timeout)

    def _cancel_mappings(self) -> None:
        for task in list(self._mappings):
            task.cancel()
        self._mappings.clear()

    # -------------------------
    # Close path
    # -------------------------
    async def _close_stream(self) -> None:
        session = self._session
        if session is None:
            self._emit(ServerEvent.STREAMING_STOPPED, None)
            return

        self._state = SessionState.CLOSING
        session.state = SessionState.CLOSING
        try:
            self._cancel_mappings()
            if session.bridge_handle is not None:
                await self._bridge.close(session.bridge_handle)
            await self._registry.remove(session.id)
        finally:
            self._session = None
            session.mark_closed()
            self._state = SessionState.IDLE
        log.info("Streaming session %s stopped", session.id)
        self._emit(ServerEvent.STREAMING_STOPPED, {"sessionId": session.id})

    # -------------------------
    # Outbound
    # -------------------------
    def _emit(self, event: ServerEvent, data: Any = None) -> None:
        if self._state is SessionState.CLOSED:
            return
        self._outbox.put_nowait(server_message(event, data))

    def _emit_for(self, session: Session, event: ServerEvent, data: Any) -> None:
        if session is self._session and self._state is SessionState.STREAMING:
            self._emit(event, data)
        else:
            log.debug("Dropping %s for closed session %s", event.value, session.id)

    async def _send_loop(self) -> None:
        deliverable = True
        while True:
            message = await self._outbox.get()
            if message is _STOP_SENDING:
                break
            if not deliverable:
                continue
            try:
                await self._sink(message)
            except Exception as exc:
                deliverable = False
                log.info("Connection %s can no longer receive events: %s", self.connection_id, exc)
