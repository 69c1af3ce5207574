"""
Mapping Invoker: finalized transcript text → sign videos + captions.

Algorithm:
1. Normalize the text.
2. Exact phrase match → that entry, confidence 1.0.
3. Greedy phrase matching, longest keys first (ties: lexicographic). Each key
   found as a substring of the remaining text is consumed once, weight 1.0.
4. Remaining words present in the dictionary, weight 0.8 each.
5. confidence = total weight / word count of the normalized text, clamped to
   [0, 1]. No match at all → the NOT-UNDERSTAND fallback at 0.1.

Pure over the dictionary snapshot taken at the start of each call.
"""

from __future__ import annotations

import asyncio
import time
from typing import List, Optional

from signstream.core.config import get_settings
from signstream.core.errors import MappingError
from signstream.core.logger import get_logger
from signstream.schemas.mapping import MappingResult, SignVideo
from signstream.services.dictionary import DictionaryStore, SignDictionary, get_dictionary_store, normalize_text

log = get_logger(__name__)

PHRASE_WEIGHT = 1.0
WORD_WEIGHT = 0.8
FALLBACK_VIDEO = "NOT-UNDERSTAND.mp4"
FALLBACK_CAPTION = "I don't understand"
FALLBACK_CONFIDENCE = 0.1


class MappingInvoker:
    def __init__(
        self,
        store: DictionaryStore,
        cdn_base_url: Optional[str] = None,
        default_duration_ms: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self._store = store
        self.cdn_base_url = cdn_base_url if cdn_base_url is not None else settings.CDN_BASE_URL
        self.default_duration_ms = default_duration_ms or settings.DEFAULT_VIDEO_DURATION_MS

    def map_text(self, text: str) -> MappingResult:
        if not isinstance(text, str):
            raise MappingError("Invalid text input")

        started = time.perf_counter()
        dictionary = self._store.snapshot()
        normalized = normalize_text(text)

        videos: List[str] = []
        captions: List[str] = []
        matched: List[str] = []

        if normalized in dictionary:
            videos = list(dictionary.videos_for(normalized))
            captions = [normalized]
            matched = [normalized]
            confidence = 1.0
        else:
            total_weight = 0.0
            remaining = normalized
            for phrase in dictionary.phrases:
                if phrase in remaining:
                    videos.extend(dictionary.videos_for(phrase))
                    captions.append(phrase)
                    matched.append(phrase)
                    remaining = remaining.replace(phrase, "", 1).strip()
                    total_weight += PHRASE_WEIGHT

            for word in remaining.split():
                if word in dictionary:
                    videos.extend(dictionary.videos_for(word))
                    captions.append(word)
                    matched.append(word)
                    total_weight += WORD_WEIGHT

            word_count = len(normalized.split(" "))
            confidence = min(1.0, total_weight / word_count) if matched else 0.0

        if not videos:
            videos = [FALLBACK_VIDEO]
            captions = [FALLBACK_CAPTION]
            matched = ["fallback"]
            confidence = FALLBACK_CONFIDENCE

        result = MappingResult(
            original_text=text,
            signs=[self._sign_video(dictionary, filename) for filename in videos],
            captions=captions,
            matched_phrases=matched,
            confidence=confidence,
            processing_time_ms=round((time.perf_counter() - started) * 1000, 3),
        )
        log.info(
            "Text mapping completed: text=%r signs=%d confidence=%.2f",
            normalized[:50],
            len(result.signs),
            result.confidence,
        )
        return result

    async def map_text_async(self, text: str) -> MappingResult:
        return await asyncio.to_thread(self.map_text, text)

    def _sign_video(self, dictionary: SignDictionary, filename: str) -> SignVideo:
        return SignVideo(
            url=self.cdn_base_url + filename,
            filename=filename,
            duration=dictionary.duration_for(filename, self.default_duration_ms),
        )


_invoker: Optional[MappingInvoker] = None


def get_mapping_invoker() -> MappingInvoker:
    global _invoker
    if _invoker is None:
        _invoker = MappingInvoker(get_dictionary_store())
    return _invoker
