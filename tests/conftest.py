import asyncio
from typing import Any, Callable, Dict, Iterable, List, Optional

import pytest

from signstream.core.config import get_settings
from signstream.schemas.speech import Transcription
from signstream.schemas.streaming import StreamingConfig, TranscriptEvent
from signstream.services.dictionary import DictionaryStore, SignDictionary, VocabularyEntry
from signstream.services.mapping_service import MappingInvoker
from signstream.services.session_registry import SessionRegistry
from signstream.services.stream_session import SessionProtocolHandler
from signstream.services.transcription_bridge import TranscriptionBridge

CDN = "https://cdn.test/videos/"

# Marks the end of a scripted provider stream
END = object()


def final(text: str, confidence: float = 0.9) -> TranscriptEvent:
    return TranscriptEvent(text=text, confidence=confidence, is_final=True)


def interim(text: str, confidence: float = 0.5) -> TranscriptEvent:
    return TranscriptEvent(text=text, confidence=confidence, is_final=False)


class ScriptedStream:
    """Provider stream that replays scripted events, exceptions and END.

    `responder(chunk)` may return more items to emit for each audio chunk.
    """

    def __init__(self, script: Iterable[Any] = (), responder: Optional[Callable[[bytes], Iterable[Any]]] = None):
        self.sent: List[bytes] = []
        self.close_calls = 0
        self.responder = responder
        self._queue: asyncio.Queue = asyncio.Queue()
        for item in script:
            self._queue.put_nowait(item)

    def push(self, item: Any) -> None:
        self._queue.put_nowait(item)

    async def send(self, chunk: bytes) -> None:
        self.sent.append(chunk)
        if self.responder is not None:
            for item in self.responder(chunk):
                self.push(item)

    async def results(self):
        while True:
            item = await self._queue.get()
            if item is END:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    async def aclose(self) -> None:
        self.close_calls += 1


class HangingCloseStream(ScriptedStream):
    async def aclose(self) -> None:
        self.close_calls += 1
        await asyncio.sleep(10)


class FakeSpeechProvider:
    name = "fake"

    def __init__(
        self,
        streams: Iterable[ScriptedStream] = (),
        open_error: Optional[BaseException] = None,
        reject: Optional[BaseException] = None,
        open_delay: float = 0.0,
        transcript: str = "hello",
        recognize_error: Optional[BaseException] = None,
    ):
        self.streams = list(streams)
        self.open_error = open_error
        self.reject = reject
        self.open_delay = open_delay
        self.transcript = transcript
        self.recognize_error = recognize_error
        self.opened: List[ScriptedStream] = []
        self.recognized: List[bytes] = []

    def check_config(self, config: StreamingConfig) -> None:
        if self.reject is not None:
            raise self.reject

    async def open_stream(self, config: StreamingConfig) -> ScriptedStream:
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if self.open_error is not None:
            raise self.open_error
        stream = self.streams.pop(0) if self.streams else ScriptedStream()
        self.opened.append(stream)
        return stream

    async def recognize(self, audio: bytes, config: StreamingConfig) -> Transcription:
        self.recognized.append(audio)
        if self.recognize_error is not None:
            raise self.recognize_error
        return Transcription(transcript=self.transcript, confidence=0.93, language=config.language_code, service=self.name)


class RecordingSink:
    def __init__(self) -> None:
        self.events: List[Dict[str, Any]] = []

    async def __call__(self, payload: Dict[str, Any]) -> None:
        self.events.append(payload)

    def names(self) -> List[str]:
        return [e["event"] for e in self.events]

    def of(self, name: str) -> List[Any]:
        return [e["data"] for e in self.events if e["event"] == name]

    async def wait_for(self, name: str, count: int = 1, timeout: float = 2.0) -> Any:
        async def _poll() -> None:
            while len(self.of(name)) < count:
                await asyncio.sleep(0.005)

        await asyncio.wait_for(_poll(), timeout)
        return self.of(name)[count - 1]


@pytest.fixture
def dictionary():
    mapping = {
        "hello": ["HELLO.mp4"],
        "thank you": ["THANK-YOU.mp4"],
        "good morning": ["GOOD.mp4", "MORNING.mp4"],
        "how are you": ["HOW.mp4", "YOU.mp4"],
        "help": ["HELP.mp4"],
        "water": ["NEED-WATER.mp4"],
    }
    vocabulary = [
        VocabularyEntry("hello", "HELLO", "greetings", "HELLO.mp4", ("hello", "hi"), 1800),
        VocabularyEntry("thank you", "THANK-YOU", "courtesy", "THANK-YOU.mp4", ("thank you", "thanks"), 2100),
    ]
    return SignDictionary.from_data(mapping, vocabulary)


@pytest.fixture
def store(dictionary):
    return DictionaryStore(dictionary)


@pytest.fixture
def mapper(store):
    return MappingInvoker(store, cdn_base_url=CDN, default_duration_ms=2000)


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def provider():
    return FakeSpeechProvider()


@pytest.fixture
def bridge(provider):
    return TranscriptionBridge(provider, open_timeout=0.5, close_timeout=0.5)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_handler(registry, bridge, mapper, sink):
    """Build and open a handler; call from inside a running event loop."""
    created: List[SessionProtocolHandler] = []

    def _make(connection_id: str = "conn-1", **overrides) -> SessionProtocolHandler:
        kwargs = dict(registry=registry, bridge=bridge, mapper=mapper, sink=sink, settings=get_settings())
        kwargs.update(overrides)
        handler = SessionProtocolHandler(connection_id, **kwargs)
        handler.open()
        created.append(handler)
        return handler

    return _make
