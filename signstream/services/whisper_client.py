"""
OpenAI Whisper client (async, httpx), used as the one-shot transcription
fallback when Google Cloud Speech is not configured or fails.

API key and endpoint are loaded via signstream.core.config.get_settings.
"""

from __future__ import annotations

import os
from typing import Optional

import httpx

from signstream.core.config import get_settings
from signstream.core.errors import (
    NoSpeechDetected,
    ProviderTimeout,
    ProviderTransportError,
    ProviderUnavailable,
    QuotaExceeded,
    TranscriptionFailed,
)
from signstream.core.logger import get_logger
from signstream.schemas.speech import Transcription

log = get_logger(__name__)


class WhisperClient:
    def __init__(self, api_key: Optional[str] = None, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._settings = get_settings()
        # Prefer explicit arg, then settings, then env var
        self.api_key = api_key or self._settings.OPENAI_API_KEY or os.getenv("OPENAI_API_KEY", "")
        self.url = self._settings.OPENAI_TRANSCRIPTION_URL
        self.model = self._settings.WHISPER_MODEL
        self._timeout = timeout
        self._transport = transport
        self._aclient: Optional[httpx.AsyncClient] = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get_async_client(self) -> httpx.AsyncClient:
        if self._aclient is None:
            self._aclient = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._aclient

    async def atranscribe(self, audio: bytes, language_code: str = "en-US", filename: str = "audio.webm") -> Transcription:
        """Send one audio clip to the Whisper transcription endpoint.

        Args:
            audio: Raw encoded audio (webm/ogg/wav/...).
            language_code: BCP-47 code; Whisper only takes the language part.
            filename: Name reported in the multipart upload; Whisper sniffs
                the container format from its extension.

        Returns:
            A Transcription tagged with service "whisper".
        """
        if not self.configured:
            raise ProviderUnavailable("OpenAI API key not configured")

        language = language_code.split("-")[0]
        headers = {"Authorization": f"Bearer {self.api_key}"}
        files = {"file": (filename, audio, "application/octet-stream")}
        data = {"model": self.model, "language": language, "response_format": "json"}

        log.info("Sending request to Whisper: bytes=%d lang=%s", len(audio), language)
        try:
            client = self._get_async_client()
            resp = await client.post(self.url, headers=headers, files=files, data=data)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.TimeoutException as e:
            raise ProviderTimeout(f"Whisper request timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            log.error("Whisper request failed: status=%s body=%s", status, e.response.text[:200])
            if status in (401, 403):
                raise ProviderUnavailable("Whisper authentication failed") from e
            if status == 429:
                raise QuotaExceeded("Whisper rate limit exceeded") from e
            raise TranscriptionFailed(f"Whisper request failed with status {status}") from e
        except httpx.HTTPError as e:
            raise ProviderTransportError(f"Unable to reach Whisper: {e}") from e
        except ValueError as e:
            raise TranscriptionFailed("Whisper returned a non-JSON response") from e

        text = (payload.get("text") or "").strip()
        if not text:
            raise NoSpeechDetected("No speech detected in audio")
        return Transcription(transcript=text, confidence=None, language=language, service="whisper")

    async def aclose(self) -> None:
        if self._aclient is not None:
            await self._aclient.aclose()
            self._aclient = None


_client: Optional[WhisperClient] = None


def get_whisper_client() -> WhisperClient:
    global _client
    if _client is None:
        _client = WhisperClient()
    return _client
