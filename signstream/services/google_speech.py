"""
Google Cloud Speech provider (streaming + one-shot recognition).

The streaming channel feeds audio from an asyncio queue into
`SpeechAsyncClient.streaming_recognize` and yields each response's top
alternative as a TranscriptEvent. Google API exceptions are translated into
the service error taxonomy here so nothing above the bridge depends on the
vendor SDK.
"""

from __future__ import annotations

import asyncio
import re
from typing import AsyncIterator, Optional

from signstream.core.config import get_settings
from signstream.core.errors import (
    NoSpeechDetected,
    ProviderRejectedConfig,
    ProviderTimeout,
    ProviderTransportError,
    ProviderUnavailable,
    QuotaExceeded,
    SignStreamError,
    TranscriptionFailed,
)
from signstream.core.logger import get_logger
from signstream.schemas.speech import Transcription
from signstream.schemas.streaming import StreamingConfig, TranscriptEvent

# Optional dependency; keep module import-safe when the extra is not installed
try:
    from google.api_core import exceptions as google_exceptions
    from google.cloud import speech
except Exception:  # pragma: no cover
    google_exceptions = None  # type: ignore
    speech = None  # type: ignore

log = get_logger(__name__)

MIN_SAMPLE_RATE = 8000
MAX_SAMPLE_RATE = 48000
DEFAULT_CONFIDENCE = 0.8
_LANGUAGE_CODE = re.compile(r"^[A-Za-z]{2,3}(-[A-Za-z0-9]{2,8})*$")

_END_OF_AUDIO = None


def translate_google_error(exc: BaseException) -> SignStreamError:
    """Map a google.api_core exception onto the service error taxonomy."""
    if isinstance(exc, SignStreamError):
        return exc
    if google_exceptions is not None:
        if isinstance(exc, google_exceptions.InvalidArgument):
            return ProviderRejectedConfig(f"Invalid audio format or configuration: {exc}")
        if isinstance(exc, (google_exceptions.PermissionDenied, google_exceptions.Unauthenticated)):
            return ProviderUnavailable(f"Google Cloud Speech authentication failed: {exc}")
        if isinstance(exc, google_exceptions.ResourceExhausted):
            return QuotaExceeded(f"Google Cloud Speech quota exceeded: {exc}")
        if isinstance(exc, google_exceptions.DeadlineExceeded):
            return ProviderTimeout(f"Google Cloud Speech timed out: {exc}")
        if isinstance(exc, google_exceptions.ServiceUnavailable):
            return ProviderTransportError(f"Unable to connect to Google Cloud Speech: {exc}")
    if isinstance(exc, (ConnectionError, OSError)):
        return ProviderTransportError(f"Unable to connect to Google Cloud Speech: {exc}")
    return TranscriptionFailed(f"Google Cloud Speech failed: {exc}")


class GoogleRecognitionStream:
    def __init__(self, client, streaming_config) -> None:
        self._client = client
        self._streaming_config = streaming_config
        self._audio: asyncio.Queue[Optional[bytes]] = asyncio.Queue()
        self._responses = None
        self._closed = False

    async def _requests(self):
        yield speech.StreamingRecognizeRequest(streaming_config=self._streaming_config)
        while True:
            chunk = await self._audio.get()
            if chunk is _END_OF_AUDIO:
                return
            yield speech.StreamingRecognizeRequest(audio_content=chunk)

    async def connect(self) -> None:
        try:
            self._responses = await self._client.streaming_recognize(requests=self._requests())
        except Exception as exc:
            raise translate_google_error(exc) from exc

    async def send(self, chunk: bytes) -> None:
        if self._closed:
            raise ProviderTransportError("Recognition stream already closed")
        self._audio.put_nowait(chunk)

    async def results(self) -> AsyncIterator[TranscriptEvent]:
        if self._responses is None:
            raise ProviderTransportError("Recognition stream is not connected")
        try:
            async for response in self._responses:
                if not response.results:
                    continue
                result = response.results[0]
                if not result.alternatives:
                    continue
                alternative = result.alternatives[0]
                yield TranscriptEvent(
                    text=alternative.transcript,
                    confidence=alternative.confidence or DEFAULT_CONFIDENCE,
                    is_final=bool(result.is_final),
                )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise translate_google_error(exc) from exc

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._audio.put_nowait(_END_OF_AUDIO)
        # The wrapped gRPC call exposes cancel(); older api-core wrappers may not
        cancel = getattr(self._responses, "cancel", None)
        if callable(cancel):
            cancel()


class GoogleSpeechProvider:
    name = "google"

    def __init__(self, credentials: Optional[str] = None) -> None:
        self._settings = get_settings()
        self.credentials = credentials if credentials is not None else self._settings.GOOGLE_APPLICATION_CREDENTIALS
        self._client = None

    @property
    def available(self) -> bool:
        return speech is not None and bool(self.credentials)

    def _get_client(self):
        if not self.available:
            raise ProviderUnavailable("Google Cloud Speech client not available")
        if self._client is None:
            try:
                self._client = speech.SpeechAsyncClient()
            except Exception as exc:
                raise ProviderUnavailable(f"Failed to initialize Google Cloud Speech client: {exc}") from exc
        return self._client

    def recognition_config(self, config: StreamingConfig):
        if speech is None:
            raise ProviderUnavailable("google-cloud-speech is not installed")
        try:
            encoding = speech.RecognitionConfig.AudioEncoding[config.encoding.upper()]
        except KeyError:
            raise ProviderRejectedConfig(f"Unsupported audio encoding: {config.encoding}") from None
        if not MIN_SAMPLE_RATE <= config.sample_rate <= MAX_SAMPLE_RATE:
            raise ProviderRejectedConfig(
                f"Sample rate {config.sample_rate} outside supported range {MIN_SAMPLE_RATE}-{MAX_SAMPLE_RATE}"
            )
        if not _LANGUAGE_CODE.match(config.language_code):
            raise ProviderRejectedConfig(f"Invalid language code: {config.language_code}")
        return speech.RecognitionConfig(
            encoding=encoding,
            sample_rate_hertz=config.sample_rate,
            language_code=config.language_code,
            enable_automatic_punctuation=True,
            enable_word_time_offsets=False,
            model=self._settings.SPEECH_MODEL,
            use_enhanced=True,
            max_alternatives=1,
        )

    def check_config(self, config: StreamingConfig) -> None:
        self.recognition_config(config)

    async def open_stream(self, config: StreamingConfig) -> GoogleRecognitionStream:
        recognition_config = self.recognition_config(config)
        streaming_config = speech.StreamingRecognitionConfig(
            config=recognition_config,
            interim_results=config.interim_results,
        )
        stream = GoogleRecognitionStream(self._get_client(), streaming_config)
        try:
            await stream.connect()
        except BaseException:
            await stream.aclose()
            raise
        log.info(
            "Google streaming recognition opened: encoding=%s rate=%s lang=%s",
            config.encoding,
            config.sample_rate,
            config.language_code,
        )
        return stream

    async def recognize(self, audio: bytes, config: StreamingConfig) -> Transcription:
        recognition_config = self.recognition_config(config)
        client = self._get_client()
        log.info("Sending request to Google Cloud Speech: bytes=%d lang=%s", len(audio), config.language_code)
        try:
            response = await client.recognize(config=recognition_config, audio=speech.RecognitionAudio(content=audio))
        except Exception as exc:
            log.error("Google Cloud Speech error: %s", exc)
            raise translate_google_error(exc) from exc

        results = [r for r in response.results if r.alternatives]
        transcript = " ".join(r.alternatives[0].transcript for r in results).strip()
        if not transcript:
            raise NoSpeechDetected("No speech detected in audio")
        confidence = results[0].alternatives[0].confidence or DEFAULT_CONFIDENCE
        return Transcription(
            transcript=transcript,
            confidence=confidence,
            language=config.language_code,
            service=self.name,
        )
