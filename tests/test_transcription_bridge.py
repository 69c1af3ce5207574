import asyncio

import pytest

from conftest import END, FakeSpeechProvider, HangingCloseStream, ScriptedStream, final, interim
from signstream.core.errors import (
    BridgeClosed,
    ProviderRejectedConfig,
    ProviderTimeout,
    ProviderTransportError,
    ProviderUnavailable,
)
from signstream.schemas.streaming import StreamingConfig, TranscriptEvent
from signstream.services.transcription_bridge import BridgeEnded, BridgeFailure, TranscriptionBridge


class Collector:
    def __init__(self):
        self.signals = []
        self.done = asyncio.Event()

    async def __call__(self, signal):
        self.signals.append(signal)
        if not isinstance(signal, TranscriptEvent):
            self.done.set()


@pytest.mark.asyncio
async def test_open_without_provider_is_unavailable():
    bridge = TranscriptionBridge(None, open_timeout=0.1, close_timeout=0.1)
    with pytest.raises(ProviderUnavailable):
        await bridge.open(StreamingConfig())


@pytest.mark.asyncio
async def test_rejected_config_never_opens_stream():
    provider = FakeSpeechProvider(reject=ProviderRejectedConfig("bad sample rate"))
    bridge = TranscriptionBridge(provider, open_timeout=0.1, close_timeout=0.1)
    with pytest.raises(ProviderRejectedConfig):
        await bridge.open(StreamingConfig(sampleRate=4000))
    assert provider.opened == []


@pytest.mark.asyncio
async def test_open_times_out():
    provider = FakeSpeechProvider(open_delay=1.0)
    bridge = TranscriptionBridge(provider, open_timeout=0.05, close_timeout=0.1)
    with pytest.raises(ProviderTimeout):
        await bridge.open(StreamingConfig())


@pytest.mark.asyncio
async def test_unexpected_open_failure_is_unavailable():
    provider = FakeSpeechProvider(open_error=RuntimeError("grpc channel down"))
    bridge = TranscriptionBridge(provider, open_timeout=0.1, close_timeout=0.1)
    with pytest.raises(ProviderUnavailable):
        await bridge.open(StreamingConfig())


@pytest.mark.asyncio
async def test_events_delivered_in_order_then_ended():
    stream = ScriptedStream([interim("a"), interim("ab"), final("abc"), END])
    bridge = TranscriptionBridge(FakeSpeechProvider(streams=[stream]), 0.5, 0.5)
    handle = await bridge.open(StreamingConfig())

    collector = Collector()
    bridge.on_event(handle, collector)
    await asyncio.wait_for(collector.done.wait(), 1.0)

    assert [s.text for s in collector.signals[:3]] == ["a", "ab", "abc"]
    assert isinstance(collector.signals[3], BridgeEnded)
    assert handle.ended
    with pytest.raises(BridgeClosed):
        await bridge.write(handle, b"late")
    await bridge.close(handle)


@pytest.mark.asyncio
async def test_provider_failure_is_delivered_once():
    stream = ScriptedStream([interim("a"), ProviderTransportError("reset by peer")])
    bridge = TranscriptionBridge(FakeSpeechProvider(streams=[stream]), 0.5, 0.5)
    handle = await bridge.open(StreamingConfig())

    collector = Collector()
    bridge.on_event(handle, collector)
    await asyncio.wait_for(collector.done.wait(), 1.0)

    assert len(collector.signals) == 2
    failure = collector.signals[1]
    assert isinstance(failure, BridgeFailure)
    assert failure.error.code == "provider_error"
    await bridge.close(handle)


@pytest.mark.asyncio
async def test_unknown_stream_exception_becomes_transport_failure():
    stream = ScriptedStream([RuntimeError("decoder crashed")])
    bridge = TranscriptionBridge(FakeSpeechProvider(streams=[stream]), 0.5, 0.5)
    handle = await bridge.open(StreamingConfig())

    collector = Collector()
    bridge.on_event(handle, collector)
    await asyncio.wait_for(collector.done.wait(), 1.0)

    assert isinstance(collector.signals[0].error, ProviderTransportError)
    await bridge.close(handle)


@pytest.mark.asyncio
async def test_write_forwards_audio_until_closed():
    stream = ScriptedStream()
    bridge = TranscriptionBridge(FakeSpeechProvider(streams=[stream]), 0.5, 0.5)
    handle = await bridge.open(StreamingConfig())

    await bridge.write(handle, b"one")
    await bridge.write(handle, b"two")
    await bridge.close(handle)

    assert stream.sent == [b"one", b"two"]
    with pytest.raises(BridgeClosed):
        await bridge.write(handle, b"three")


@pytest.mark.asyncio
async def test_close_is_idempotent_and_cancels_reader():
    stream = ScriptedStream()
    bridge = TranscriptionBridge(FakeSpeechProvider(streams=[stream]), 0.5, 0.5)
    handle = await bridge.open(StreamingConfig())
    collector = Collector()
    bridge.on_event(handle, collector)

    await bridge.close(handle)
    await bridge.close(handle)

    assert stream.close_calls == 1
    assert handle.reader.done()
    assert collector.signals == []


@pytest.mark.asyncio
async def test_close_is_bounded_when_provider_hangs():
    stream = HangingCloseStream()
    bridge = TranscriptionBridge(FakeSpeechProvider(streams=[stream]), 0.5, close_timeout=0.05)
    handle = await bridge.open(StreamingConfig())

    await asyncio.wait_for(bridge.close(handle), 1.0)
    assert handle.closed
    assert stream.close_calls == 1
