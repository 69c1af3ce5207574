import time
from typing import Any, Dict

from fastapi import APIRouter, Request
from starlette.datastructures import UploadFile

from signstream.core.config import get_settings
from signstream.core.errors import InvalidAudioPayload
from signstream.core.logger import get_logger
from signstream.core.monitoring import get_metrics
from signstream.schemas.mapping import MapRequest, MappingResult
from signstream.schemas.protocol import parse_streaming_config
from signstream.schemas.speech import Transcription
from signstream.schemas.streaming import utcnow
from signstream.services.audio_payload import decode_audio_payload
from signstream.services.dictionary import get_dictionary_store
from signstream.services.mapping_service import get_mapping_invoker
from signstream.services.session_registry import get_session_registry
from signstream.services.speech_service import get_speech_service

router = APIRouter()
log = get_logger(__name__)

_CONFIG_FIELDS = ("encoding", "sampleRate", "languageCode")


async def _read_audio_request(request: Request):
    """Pull audio bytes and recognition options from a multipart, form or JSON body."""
    max_bytes = get_settings().MAX_UPLOAD_BYTES
    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            body = await request.json()
        except ValueError as e:
            raise InvalidAudioPayload("Request body is not valid JSON") from e
        if not isinstance(body, dict):
            raise InvalidAudioPayload("Request body must be a JSON object")
        fields: Dict[str, Any] = body
    else:
        fields = dict(await request.form())

    payload = fields.get("audio")
    if isinstance(payload, UploadFile):
        payload = await payload.read()
    if payload is None or payload == "":
        raise InvalidAudioPayload("No audio data provided")

    audio = decode_audio_payload(payload, max_bytes)
    config = parse_streaming_config({k: fields[k] for k in _CONFIG_FIELDS if k in fields})
    return audio, config


async def _map(text: str) -> MappingResult:
    started = time.perf_counter()
    result = await get_mapping_invoker().map_text_async(text)
    get_metrics().record_processing("mapping", (time.perf_counter() - started) * 1000)
    return result


def _signs_payload(result: MappingResult) -> Dict[str, Any]:
    return {
        "mappedSigns": [s.model_dump() for s in result.signs],
        "captions": list(result.captions),
        "confidence": result.confidence,
        "matchedPhrases": list(result.matched_phrases),
    }


@router.post("/transcribe")
async def transcribe(request: Request):
    """Transcribe an uploaded clip (field `audio`: file, base64 string or data URL)."""
    audio, config = await _read_audio_request(request)
    transcription: Transcription = await get_speech_service().transcribe(audio, config)
    log.info("Transcription completed via %s: %r", transcription.service, transcription.transcript[:50])
    return {
        "transcript": transcription.transcript,
        "confidence": transcription.confidence,
        "service": transcription.service,
        "timestamp": utcnow().isoformat(),
    }


@router.post("/map")
async def map_text(body: MapRequest):
    result = await _map(body.text)
    return {"originalText": result.original_text, **_signs_payload(result), "timestamp": utcnow().isoformat()}


@router.post("/speech-to-signs")
async def speech_to_signs(request: Request):
    """Transcribe then map in one request."""
    started = time.perf_counter()
    audio, config = await _read_audio_request(request)
    transcription = await get_speech_service().transcribe(audio, config)
    result = await _map(transcription.transcript)
    return {
        "transcript": transcription.transcript,
        **_signs_payload(result),
        "processingTime": round((time.perf_counter() - started) * 1000),
        "timestamp": utcnow().isoformat(),
    }


@router.get("/vocabulary")
def vocabulary():
    entries = get_dictionary_store().snapshot().vocabulary
    return {
        "vocabulary": [e.to_wire() for e in entries],
        "count": len(entries),
        "timestamp": utcnow().isoformat(),
    }


@router.get("/streaming/stats")
async def streaming_stats():
    stats = await get_session_registry().stats()
    return {**stats, "timestamp": utcnow().isoformat()}
