import pytest

from conftest import FakeSpeechProvider
from signstream.core.errors import AudioTooLarge, NoSpeechDetected, ProviderUnavailable, TranscriptionFailed
from signstream.schemas.speech import Transcription
from signstream.schemas.streaming import StreamingConfig
from signstream.services.speech_service import SpeechService


class FakeWhisper:
    def __init__(self, configured=True):
        self.configured = configured
        self.calls = []

    async def atranscribe(self, audio, language_code="en-US", filename="audio.webm"):
        self.calls.append((audio, language_code))
        return Transcription(transcript="from whisper", language=language_code.split("-")[0], service="whisper")


@pytest.mark.asyncio
async def test_primary_provider_used_first():
    provider = FakeSpeechProvider(transcript="from google")
    whisper = FakeWhisper()
    service = SpeechService(provider=provider, whisper=whisper, max_bytes=100)

    result = await service.transcribe(b"audio", StreamingConfig(languageCode="de-DE"))

    assert result.transcript == "from google"
    assert result.language == "de-DE"
    assert whisper.calls == []


@pytest.mark.asyncio
async def test_falls_back_to_whisper():
    provider = FakeSpeechProvider(recognize_error=TranscriptionFailed("bad response"))
    whisper = FakeWhisper()
    service = SpeechService(provider=provider, whisper=whisper, max_bytes=100)

    result = await service.transcribe(b"audio")

    assert result.service == "whisper"
    assert whisper.calls == [(b"audio", "en-US")]


@pytest.mark.asyncio
async def test_no_speech_is_not_retried():
    provider = FakeSpeechProvider(recognize_error=NoSpeechDetected())
    whisper = FakeWhisper()
    service = SpeechService(provider=provider, whisper=whisper, max_bytes=100)

    with pytest.raises(NoSpeechDetected):
        await service.transcribe(b"audio")
    assert whisper.calls == []


@pytest.mark.asyncio
async def test_primary_error_surfaces_without_fallback():
    provider = FakeSpeechProvider(recognize_error=TranscriptionFailed("bad response"))
    service = SpeechService(provider=provider, whisper=FakeWhisper(configured=False), max_bytes=100)

    with pytest.raises(TranscriptionFailed):
        await service.transcribe(b"audio")


@pytest.mark.asyncio
async def test_nothing_configured():
    service = SpeechService(provider=None, whisper=FakeWhisper(configured=False), max_bytes=100)

    assert service.availability() == {"google": False, "whisper": False}
    with pytest.raises(ProviderUnavailable):
        await service.transcribe(b"audio")


@pytest.mark.asyncio
async def test_input_validation():
    service = SpeechService(provider=FakeSpeechProvider(), whisper=None, max_bytes=4)

    with pytest.raises(NoSpeechDetected):
        await service.transcribe(b"")
    with pytest.raises(AudioTooLarge):
        await service.transcribe(b"12345")
