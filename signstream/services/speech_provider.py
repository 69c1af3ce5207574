"""
Speech provider contract used by the transcription bridge and the one-shot
speech service. Swapping ASR vendors means adding a provider here; nothing
above the bridge changes.
"""

from __future__ import annotations

from typing import AsyncIterator, Optional, Protocol

from signstream.core.logger import get_logger
from signstream.schemas.speech import Transcription
from signstream.schemas.streaming import StreamingConfig, TranscriptEvent
from signstream.services.google_speech import GoogleSpeechProvider

log = get_logger(__name__)


class ProviderStream(Protocol):
    """One live duplex recognition channel."""

    async def send(self, chunk: bytes) -> None:
        ...

    def results(self) -> AsyncIterator[TranscriptEvent]:
        ...

    async def aclose(self) -> None:
        ...


class SpeechProvider(Protocol):
    name: str

    def check_config(self, config: StreamingConfig) -> None:
        """Raise ProviderRejectedConfig if the combination is unsupported."""

    async def open_stream(self, config: StreamingConfig) -> ProviderStream:
        ...

    async def recognize(self, audio: bytes, config: StreamingConfig) -> Transcription:
        ...


_provider: Optional[SpeechProvider] = None
_resolved = False


def get_speech_provider() -> Optional[SpeechProvider]:
    """Return the configured streaming provider, or None when none is available."""
    global _provider, _resolved
    if not _resolved:
        google = GoogleSpeechProvider()
        if google.available:
            _provider = google
            log.info("Google Cloud Speech provider initialized")
        else:
            log.warning("No streaming speech provider configured (set GOOGLE_APPLICATION_CREDENTIALS)")
        _resolved = True
    return _provider
