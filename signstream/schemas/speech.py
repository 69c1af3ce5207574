from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class Transcription(BaseModel):
    """Result of a one-shot (non-streaming) recognition."""

    transcript: str
    confidence: Optional[float] = None
    language: Optional[str] = None
    service: str
