import uuid

from fastapi import APIRouter, WebSocket

from signstream.core.config import get_settings
from signstream.core.errors import SignStreamError
from signstream.core.logger import get_logger
from signstream.schemas.protocol import ClientEvent, parse_client_message, parse_streaming_config
from signstream.services.audio_payload import decode_audio_payload
from signstream.services.mapping_service import get_mapping_invoker
from signstream.services.session_registry import get_session_registry
from signstream.services.stream_session import SessionProtocolHandler
from signstream.services.transcription_bridge import get_transcription_bridge

router = APIRouter()
log = get_logger(__name__)


def _dispatch(handler: SessionProtocolHandler, event: ClientEvent, data, max_chunk: int) -> None:
    if event is ClientEvent.START_STREAMING:
        handler.start_streaming(parse_streaming_config(data))
    elif event is ClientEvent.AUDIO_DATA:
        handler.send_audio(decode_audio_payload(data, max_chunk))
    elif event is ClientEvent.STOP_STREAMING:
        handler.stop_streaming()
    elif event is ClientEvent.PING:
        handler.ping()


@router.websocket("/ws/stream")
async def stream_speech(websocket: WebSocket):
    """
    Real-time speech-to-sign streaming.

    Text frames are JSON envelopes {"event": "...", "data": ...}:
    - start-streaming {encoding, sampleRate, languageCode, interimResults}
    - audio-data <base64 string | data URL | byte array>
    - stop-streaming
    - ping

    Binary frames are treated as raw audio chunks for the active session.
    Server events are sent back in the same envelope.
    """
    await websocket.accept()
    settings = get_settings()
    connection_id = uuid.uuid4().hex[:12]

    async def ws_sink(payload):
        await websocket.send_json(payload)

    handler = SessionProtocolHandler(
        connection_id,
        registry=get_session_registry(),
        bridge=get_transcription_bridge(),
        mapper=get_mapping_invoker(),
        sink=ws_sink,
        settings=settings,
    )
    handler.open()
    log.info("Client connected: %s", connection_id)

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            try:
                if frame.get("bytes") is not None:
                    handler.send_audio(decode_audio_payload(frame["bytes"], settings.MAX_AUDIO_CHUNK_BYTES))
                else:
                    event, data = parse_client_message(frame.get("text"))
                    _dispatch(handler, event, data, settings.MAX_AUDIO_CHUNK_BYTES)
            except SignStreamError as e:
                log.info("Connection %s sent a rejected message: %s", connection_id, e)
                handler.reject(e)
    except Exception:
        log.exception("WebSocket error on connection %s", connection_id)
    finally:
        await handler.disconnect()
        log.info("Client disconnected: %s", connection_id)
