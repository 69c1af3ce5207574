"""
Transport-level audio decoding.

Clients send audio as binary WebSocket frames, base64 strings (optionally
as `data:audio/...;base64,` URLs) or JSON byte arrays. Everything is turned
into raw bytes here, before it reaches the streaming core.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any

from signstream.core.errors import AudioTooLarge, InvalidAudioPayload


def _strip_data_url(value: str) -> str:
    value = value.strip()
    if value.startswith("data:") and "," in value:
        return value.split(",", 1)[1]
    return value


def decode_audio_payload(payload: Any, max_bytes: int) -> bytes:
    if isinstance(payload, (bytes, bytearray, memoryview)):
        audio = bytes(payload)
    elif isinstance(payload, str):
        try:
            audio = base64.b64decode(_strip_data_url(payload), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidAudioPayload("Audio chunk is not valid base64") from exc
    elif isinstance(payload, list):
        try:
            audio = bytes(payload)
        except (TypeError, ValueError) as exc:
            raise InvalidAudioPayload("Audio byte array must contain integers 0-255") from exc
    else:
        raise InvalidAudioPayload(f"Unsupported audio payload type: {type(payload).__name__}")

    if not audio:
        raise InvalidAudioPayload("Empty audio chunk")
    if len(audio) > max_bytes:
        raise AudioTooLarge(f"Audio chunk of {len(audio)} bytes exceeds limit of {max_bytes} bytes")
    return audio
