"""
Error taxonomy shared by the streaming core and the REST surface.

Every error carries:
- `kind`: the coarse category that decides how the session reacts
  (configuration / transport / mapping / resource / invalid_state).
- `code`: a short machine-readable identifier sent to clients.
- `status_code`: HTTP status used by the REST exception handler.
- `user_message`: human-readable text safe to show in the UI.

Streaming code converts these into `{message, error, kind, code}` event
payloads with `describe_error`; REST routes let them propagate to the
FastAPI exception handler registered in `signstream.main`.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration"
    TRANSPORT = "transport"
    MAPPING = "mapping"
    RESOURCE = "resource"
    INVALID_STATE = "invalid_state"


class SignStreamError(Exception):
    kind: ErrorKind = ErrorKind.TRANSPORT
    code: str = "internal_error"
    status_code: int = 500
    user_message: str = "Something unexpected happened. Please try again or contact support if the problem persists."

    def __init__(self, message: Optional[str] = None, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message or self.user_message)
        self.details = details or {}

    @property
    def message(self) -> str:
        return str(self)


# Configuration errors: fail the start attempt, nothing is registered.
class ProviderUnavailable(SignStreamError):
    kind = ErrorKind.CONFIGURATION
    code = "provider_unavailable"
    status_code = 503
    user_message = "Speech recognition service is temporarily unavailable. Please try again in a few moments."


class ProviderRejectedConfig(SignStreamError):
    kind = ErrorKind.CONFIGURATION
    code = "provider_rejected_config"
    status_code = 400
    user_message = "Invalid audio format. Please ensure your microphone is working properly."


class InvalidStreamingConfig(SignStreamError):
    kind = ErrorKind.CONFIGURATION
    code = "invalid_config"
    status_code = 422
    user_message = "Invalid streaming configuration."


# Transport errors: terminate only the affected session.
class ProviderTimeout(SignStreamError):
    kind = ErrorKind.TRANSPORT
    code = "provider_timeout"
    status_code = 504
    user_message = "Request timed out. Please try again."


class ProviderTransportError(SignStreamError):
    kind = ErrorKind.TRANSPORT
    code = "provider_error"
    status_code = 502
    user_message = "Connection to the speech recognition service failed. Please try again."


class QuotaExceeded(SignStreamError):
    kind = ErrorKind.TRANSPORT
    code = "quota_exceeded"
    status_code = 429
    user_message = "You've reached the usage limit. Please try again later."


class TranscriptionFailed(SignStreamError):
    kind = ErrorKind.TRANSPORT
    code = "transcription_failed"
    status_code = 500
    user_message = "We couldn't understand your speech. Please speak clearly and try again."


class BridgeClosed(SignStreamError):
    kind = ErrorKind.TRANSPORT
    code = "bridge_closed"
    status_code = 409
    user_message = "Streaming session ended"


# Recoverable per-utterance errors.
class MappingError(SignStreamError):
    kind = ErrorKind.MAPPING
    code = "mapping_failed"
    status_code = 400
    user_message = "Translation error occurred. Please try rephrasing your message."


# Resource errors: reject the offending message only.
class InvalidAudioPayload(SignStreamError):
    kind = ErrorKind.RESOURCE
    code = "invalid_audio"
    status_code = 400
    user_message = "Invalid audio data."


class AudioTooLarge(SignStreamError):
    kind = ErrorKind.RESOURCE
    code = "audio_too_large"
    status_code = 413
    user_message = "Your audio recording is too long. Please keep recordings under 1 minute."


class NoSpeechDetected(SignStreamError):
    kind = ErrorKind.RESOURCE
    code = "no_speech_detected"
    status_code = 400
    user_message = "No speech detected. Please check your microphone and speak clearly."


class InvalidClientMessage(SignStreamError):
    kind = ErrorKind.RESOURCE
    code = "invalid_message"
    status_code = 400
    user_message = "Malformed message."


# Invariant violations: rejected explicitly, nothing is overwritten.
class DuplicateSession(SignStreamError):
    kind = ErrorKind.INVALID_STATE
    code = "duplicate_session"
    status_code = 409
    user_message = "A streaming session with this id already exists."


class NoActiveSession(SignStreamError):
    kind = ErrorKind.INVALID_STATE
    code = "no_active_session"
    status_code = 409
    user_message = "No active streaming session"


class StreamAlreadyActive(SignStreamError):
    kind = ErrorKind.INVALID_STATE
    code = "stream_already_active"
    status_code = 409
    user_message = "A streaming session is already active. Stop it before starting a new one."


RECOVERY_SUGGESTIONS: Dict[str, List[str]] = {
    TranscriptionFailed.code: [
        "Speak more slowly and clearly",
        "Move closer to your microphone",
        "Reduce background noise",
        "Try shorter phrases",
    ],
    NoSpeechDetected.code: [
        "Check that your microphone is not muted",
        "Speak for at least one second",
    ],
    ProviderTransportError.code: [
        "Check your internet connection",
        "Try again in a few minutes",
    ],
    MappingError.code: [
        "Try using simpler words",
        "Break down complex phrases",
        "Check the sign dictionary for available words",
    ],
}


def describe_error(message: str, exc: BaseException) -> Dict[str, Any]:
    """Build the client-facing payload for an error event."""
    if isinstance(exc, SignStreamError):
        kind, code = exc.kind.value, exc.code
    else:
        kind, code = ErrorKind.TRANSPORT.value, SignStreamError.code
    return {"message": message, "error": str(exc), "kind": kind, "code": code}
