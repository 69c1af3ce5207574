from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    CLOSING = "closing"
    CLOSED = "closed"


class StreamingConfig(BaseModel):
    """Audio settings requested by the client in `start-streaming`.

    Accepts both the camelCase wire names (`sampleRate`) and the Python
    field names. Frozen: a session's config never changes once streaming.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    encoding: str = Field(default="WEBM_OPUS", min_length=1)
    sample_rate: int = Field(default=48000, alias="sampleRate", gt=0)
    language_code: str = Field(default="en-US", alias="languageCode", min_length=2)
    interim_results: bool = Field(default=True, alias="interimResults")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class TranscriptEvent(BaseModel):
    """A single provider result; interim or final."""

    model_config = ConfigDict(frozen=True)

    text: str
    confidence: float = Field(ge=0.0, le=1.0)
    is_final: bool = False
    timestamp: datetime = Field(default_factory=utcnow)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "transcript": self.text,
            "confidence": self.confidence,
            "isFinal": self.is_final,
            "timestamp": self.timestamp.isoformat(),
        }
