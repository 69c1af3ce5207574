from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, Field

from signstream.schemas.streaming import utcnow


class SignVideo(BaseModel):
    url: str
    filename: str
    duration: int  # display duration in milliseconds


class MappingResult(BaseModel):
    original_text: str
    signs: List[SignVideo] = Field(min_length=1)
    captions: List[str] = Field(min_length=1)
    matched_phrases: List[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    processing_time_ms: float = 0.0

    @property
    def is_fallback(self) -> bool:
        return self.matched_phrases == ["fallback"]

    def to_event(self) -> Dict[str, Any]:
        """Payload of the `signs-update` streaming event."""
        return {
            "originalText": self.original_text,
            "mappedSigns": [s.model_dump() for s in self.signs],
            "captions": list(self.captions),
            "confidence": self.confidence,
            "timestamp": utcnow().isoformat(),
        }


class MapRequest(BaseModel):
    text: str = Field(min_length=1)
