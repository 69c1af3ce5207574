"""
Transcription Bridge: owns one duplex recognition channel per session.

`open` connects to the speech provider, `write` forwards audio, `on_event`
registers a callback that receives transcripts (then exactly one
BridgeEnded or BridgeFailure) in provider order from a single reader task,
and `close` releases the channel within a bounded time.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Union

from signstream.core.config import get_settings
from signstream.core.errors import (
    BridgeClosed,
    ProviderTimeout,
    ProviderTransportError,
    ProviderUnavailable,
    SignStreamError,
)
from signstream.core.logger import get_logger
from signstream.schemas.streaming import StreamingConfig, TranscriptEvent
from signstream.services.speech_provider import ProviderStream, SpeechProvider, get_speech_provider

log = get_logger(__name__)


@dataclass(frozen=True)
class BridgeFailure:
    error: SignStreamError


@dataclass(frozen=True)
class BridgeEnded:
    pass


BridgeSignal = Union[TranscriptEvent, BridgeFailure, BridgeEnded]
BridgeCallback = Callable[[BridgeSignal], Awaitable[None]]


@dataclass(eq=False)
class BridgeHandle:
    config: StreamingConfig
    stream: ProviderStream
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    opened_at: float = field(default_factory=time.time)
    ended: bool = False
    closed: bool = False
    reader: Optional[asyncio.Task] = None
    callbacks: List[BridgeCallback] = field(default_factory=list)


class TranscriptionBridge:
    def __init__(
        self,
        provider: Optional[SpeechProvider],
        open_timeout: Optional[float] = None,
        close_timeout: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.provider = provider
        self.open_timeout = open_timeout if open_timeout is not None else settings.BRIDGE_OPEN_TIMEOUT
        self.close_timeout = close_timeout if close_timeout is not None else settings.BRIDGE_CLOSE_TIMEOUT

    async def open(self, config: StreamingConfig) -> BridgeHandle:
        if self.provider is None:
            raise ProviderUnavailable("Speech recognition provider is not configured")
        self.provider.check_config(config)
        try:
            stream = await asyncio.wait_for(self.provider.open_stream(config), timeout=self.open_timeout)
        except asyncio.TimeoutError:
            raise ProviderTimeout(f"Speech provider did not connect within {self.open_timeout:.0f}s") from None
        except SignStreamError:
            raise
        except Exception as exc:
            raise ProviderUnavailable(f"Failed to open recognition stream: {exc}") from exc

        handle = BridgeHandle(config=config, stream=stream)
        log.info("Bridge %s opened with %s (%s, %d Hz)", handle.id, self.provider.name, config.language_code, config.sample_rate)
        return handle

    async def write(self, handle: BridgeHandle, chunk: bytes) -> None:
        if handle.closed or handle.ended:
            raise BridgeClosed("Recognition channel has ended")
        try:
            await handle.stream.send(chunk)
        except SignStreamError:
            raise
        except Exception as exc:
            raise ProviderTransportError(f"Failed to forward audio: {exc}") from exc

    def on_event(self, handle: BridgeHandle, callback: BridgeCallback) -> None:
        handle.callbacks.append(callback)
        if handle.reader is None and not handle.closed:
            handle.reader = asyncio.create_task(self._pump(handle), name=f"bridge-reader-{handle.id}")

    async def _pump(self, handle: BridgeHandle) -> None:
        signal: BridgeSignal
        try:
            async for event in handle.stream.results():
                await self._deliver(handle, event)
            signal = BridgeEnded()
        except SignStreamError as exc:
            signal = BridgeFailure(exc)
        except Exception as exc:
            log.exception("Bridge %s reader failed", handle.id)
            signal = BridgeFailure(ProviderTransportError(f"Recognition stream failed: {exc}"))
        handle.ended = True
        await self._deliver(handle, signal)

    async def _deliver(self, handle: BridgeHandle, signal: BridgeSignal) -> None:
        for callback in list(handle.callbacks):
            try:
                await callback(signal)
            except Exception:
                log.exception("Bridge %s callback failed", handle.id)

    async def close(self, handle: BridgeHandle) -> None:
        if handle.closed:
            return
        handle.closed = True
        handle.ended = True

        reader = handle.reader
        if reader is not None and not reader.done():
            reader.cancel()
        try:
            await asyncio.wait_for(handle.stream.aclose(), timeout=self.close_timeout)
        except asyncio.TimeoutError:
            log.warning("Bridge %s did not release within %.1fs", handle.id, self.close_timeout)
        except Exception:
            log.exception("Failed to release bridge %s", handle.id)
        if reader is not None and reader is not asyncio.current_task():
            await asyncio.wait({reader}, timeout=self.close_timeout)
        log.info("Bridge %s closed", handle.id)


_bridge: Optional[TranscriptionBridge] = None


def get_transcription_bridge() -> TranscriptionBridge:
    global _bridge
    if _bridge is None:
        _bridge = TranscriptionBridge(get_speech_provider())
    return _bridge
