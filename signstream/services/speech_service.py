"""
One-shot speech recognition for the REST endpoints.

Google Cloud Speech is tried first when configured; OpenAI Whisper is the
fallback. Streaming sessions never come through here, they use the
transcription bridge.
"""

from __future__ import annotations

import time
from typing import Dict, Optional

from signstream.core.config import get_settings
from signstream.core.errors import (
    AudioTooLarge,
    NoSpeechDetected,
    ProviderUnavailable,
    SignStreamError,
)
from signstream.core.logger import get_logger
from signstream.core.monitoring import get_metrics
from signstream.schemas.speech import Transcription
from signstream.schemas.streaming import StreamingConfig
from signstream.services.speech_provider import SpeechProvider, get_speech_provider
from signstream.services.whisper_client import WhisperClient, get_whisper_client

log = get_logger(__name__)


class SpeechService:
    def __init__(
        self,
        provider: Optional[SpeechProvider] = None,
        whisper: Optional[WhisperClient] = None,
        max_bytes: Optional[int] = None,
    ) -> None:
        self.provider = provider
        self.whisper = whisper
        self.max_bytes = max_bytes or get_settings().MAX_UPLOAD_BYTES

    def availability(self) -> Dict[str, bool]:
        return {
            "google": self.provider is not None,
            "whisper": self.whisper is not None and self.whisper.configured,
        }

    async def transcribe(self, audio: bytes, config: Optional[StreamingConfig] = None) -> Transcription:
        if not audio:
            raise NoSpeechDetected("No audio data provided")
        if len(audio) > self.max_bytes:
            raise AudioTooLarge(f"Audio of {len(audio)} bytes exceeds limit of {self.max_bytes} bytes")
        config = config or StreamingConfig()

        started = time.perf_counter()
        last_error: Optional[SignStreamError] = None

        if self.provider is not None:
            try:
                result = await self.provider.recognize(audio, config)
                self._record(started)
                return result
            except NoSpeechDetected:
                raise
            except SignStreamError as e:
                log.warning("%s speech recognition failed, trying fallback: %s", self.provider.name, e)
                last_error = e

        if self.whisper is not None and self.whisper.configured:
            result = await self.whisper.atranscribe(audio, config.language_code)
            self._record(started)
            return result

        if last_error is not None:
            raise last_error
        raise ProviderUnavailable("No speech recognition service available")

    def _record(self, started: float) -> None:
        get_metrics().record_processing("transcription", (time.perf_counter() - started) * 1000)


_service: Optional[SpeechService] = None


def get_speech_service() -> SpeechService:
    global _service
    if _service is None:
        _service = SpeechService(provider=get_speech_provider(), whisper=get_whisper_client())
    return _service
