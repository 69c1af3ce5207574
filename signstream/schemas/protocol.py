"""
Wire protocol for the `/ws/stream` WebSocket.

Text frames carry JSON envelopes `{"event": "<name>", "data": <payload>}` in
both directions. Binary frames from the client are raw audio chunks.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from signstream.core.errors import InvalidClientMessage, InvalidStreamingConfig
from signstream.schemas.streaming import StreamingConfig


class ClientEvent(str, Enum):
    START_STREAMING = "start-streaming"
    AUDIO_DATA = "audio-data"
    STOP_STREAMING = "stop-streaming"
    PING = "ping"


class ServerEvent(str, Enum):
    STREAMING_STARTED = "streaming-started"
    TRANSCRIPT_UPDATE = "transcript-update"
    SIGNS_UPDATE = "signs-update"
    MAPPING_ERROR = "mapping-error"
    STREAMING_ERROR = "streaming-error"
    STREAMING_ENDED = "streaming-ended"
    STREAMING_STOPPED = "streaming-stopped"
    ERROR = "error"
    PONG = "pong"


def parse_client_message(raw: Optional[str]) -> Tuple[ClientEvent, Any]:
    """Decode a text frame into (event, data)."""
    if not raw:
        raise InvalidClientMessage("Empty message")
    try:
        message = json.loads(raw)
    except ValueError as exc:
        raise InvalidClientMessage("Message is not valid JSON") from exc
    if not isinstance(message, dict):
        raise InvalidClientMessage("Message must be a JSON object")

    name = message.get("event") or message.get("type")
    try:
        event = ClientEvent(name)
    except ValueError:
        raise InvalidClientMessage(f"Unknown event: {name!r}") from None
    return event, message.get("data")


def parse_streaming_config(data: Any) -> StreamingConfig:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidStreamingConfig("start-streaming payload must be an object")
    try:
        return StreamingConfig.model_validate(data)
    except ValidationError as exc:
        raise InvalidStreamingConfig(f"Invalid streaming configuration: {exc.errors()[0]['msg']}") from exc


def server_message(event: ServerEvent, data: Any = None) -> Dict[str, Any]:
    return {"event": event.value, "data": data}
