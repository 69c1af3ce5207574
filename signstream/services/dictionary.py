"""
Sign dictionary: phrase → ordered list of sign video filenames.

Loaded once at startup from `mapping.json` and `vocabulary.csv` into an
immutable `SignDictionary`. Readers take a snapshot from `DictionaryStore`;
a reload replaces the whole snapshot atomically and never mutates one that
is already in use.
"""

from __future__ import annotations

import csv
import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from signstream.core.config import get_settings
from signstream.core.logger import get_logger

log = get_logger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")

FALLBACK_MAPPING: Dict[str, List[str]] = {
    "hello": ["HELLO.mp4"],
    "hi": ["HELLO.mp4"],
    "thank you": ["THANK-YOU.mp4"],
    "thanks": ["THANK-YOU.mp4"],
    "yes": ["YES.mp4"],
    "no": ["NO.mp4"],
    "please": ["PLEASE.mp4"],
    "sorry": ["SORRY.mp4"],
    "help": ["HELP.mp4"],
    "stop": ["STOP.mp4"],
    "water": ["NEED-WATER.mp4"],
    "bathroom": ["BATHROOM.mp4"],
    "emergency": ["EMERGENCY.mp4"],
}


def normalize_text(text: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace.

    Idempotent: normalize_text(normalize_text(x)) == normalize_text(x).
    """
    text = _PUNCTUATION.sub("", text.lower().strip())
    return _WHITESPACE.sub(" ", text).strip()


@dataclass(frozen=True)
class VocabularyEntry:
    phrase: str
    gloss: str
    category: str
    video_filename: str
    spoken_variants: Tuple[str, ...]
    duration_ms: int

    def to_wire(self) -> Dict[str, Any]:
        return {
            "phrase": self.phrase,
            "gloss": self.gloss,
            "category": self.category,
            "videoFile": self.video_filename,
            "spokenVariants": list(self.spoken_variants),
            "duration": self.duration_ms,
        }


@dataclass(frozen=True)
class SignDictionary:
    entries: Mapping[str, Tuple[str, ...]]
    # Keys by descending length, ties broken lexicographically.
    phrases: Tuple[str, ...]
    vocabulary: Tuple[VocabularyEntry, ...] = ()
    durations: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_data(
        cls, mapping: Mapping[str, Iterable[str]], vocabulary: Iterable[VocabularyEntry] = ()
    ) -> "SignDictionary":
        entries: Dict[str, Tuple[str, ...]] = {}
        for phrase, videos in mapping.items():
            key = normalize_text(str(phrase))
            if not key:
                log.warning("Skipping dictionary entry with empty phrase: %r", phrase)
                continue
            if isinstance(videos, str):
                videos = [videos]
            if not isinstance(videos, (list, tuple)) or not videos or not all(isinstance(v, str) and v for v in videos):
                log.warning("Skipping dictionary entry %r: expected a filename or non-empty list of filenames", phrase)
                continue
            entries[key] = tuple(videos)

        vocab = tuple(vocabulary)
        durations: Dict[str, int] = {}
        for item in vocab:
            # First entry wins, mirroring a front-to-back lookup.
            durations.setdefault(item.video_filename, item.duration_ms)

        return cls(
            entries=MappingProxyType(entries),
            phrases=tuple(sorted(entries, key=lambda k: (-len(k), k))),
            vocabulary=vocab,
            durations=MappingProxyType(durations),
        )

    @classmethod
    def fallback(cls) -> "SignDictionary":
        log.warning("Creating fallback mapping data")
        return cls.from_data(FALLBACK_MAPPING)

    def __contains__(self, phrase: object) -> bool:
        return phrase in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def videos_for(self, phrase: str) -> Tuple[str, ...]:
        return self.entries[phrase]

    def duration_for(self, filename: str, default: int) -> int:
        return self.durations.get(filename, default)

    def stats(self) -> Dict[str, Any]:
        return {
            "totalMappings": len(self.entries),
            "totalVocabulary": len(self.vocabulary),
            "categories": sorted({v.category for v in self.vocabulary if v.category}),
        }


def _parse_duration(raw: str, default: int) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def read_vocabulary(path: Path, default_duration_ms: int = 2000) -> List[VocabularyEntry]:
    entries: List[VocabularyEntry] = []
    with path.open(newline="", encoding="utf-8") as f:
        for row in csv.DictReader(f):
            row = {(k or "").strip(): (v or "").strip() for k, v in row.items()}
            phrase = row.get("phrase", "")
            variants = tuple(v.strip() for v in row.get("spoken_variants", "").split(",") if v.strip())
            entries.append(
                VocabularyEntry(
                    phrase=phrase,
                    gloss=row.get("gloss", ""),
                    category=row.get("category", ""),
                    video_filename=row.get("video_filename", ""),
                    spoken_variants=variants or (phrase,),
                    duration_ms=_parse_duration(row.get("duration_ms", ""), default_duration_ms),
                )
            )
    return entries


def load_sign_dictionary(directory: Optional[Path] = None, default_duration_ms: Optional[int] = None) -> SignDictionary:
    """Load mapping.json (required) and vocabulary.csv (optional) from `directory`.

    Falls back to the built-in dictionary when the mapping cannot be read.
    """
    settings = get_settings()
    directory = directory or settings.dictionary_dir
    default_duration_ms = default_duration_ms or settings.DEFAULT_VIDEO_DURATION_MS
    try:
        mapping = json.loads((directory / "mapping.json").read_text(encoding="utf-8"))
        if not isinstance(mapping, dict):
            raise ValueError("mapping.json must contain an object")
    except (OSError, ValueError):
        log.exception("Failed to load mapping data from %s", directory)
        return SignDictionary.fallback()

    vocab_path = directory / "vocabulary.csv"
    vocabulary: List[VocabularyEntry] = []
    if vocab_path.exists():
        try:
            vocabulary = read_vocabulary(vocab_path, default_duration_ms)
        except (OSError, csv.Error):
            log.exception("Failed to load vocabulary from %s", vocab_path)

    dictionary = SignDictionary.from_data(mapping, vocabulary)
    if not len(dictionary):
        log.error("mapping.json in %s has no usable entries", directory)
        return SignDictionary.fallback()
    log.info("Loaded %d mapping entries and %d vocabulary entries", len(dictionary), len(dictionary.vocabulary))
    return dictionary


class DictionaryStore:
    """Holds the current dictionary snapshot; swaps are a single reference assignment."""

    def __init__(self, dictionary: SignDictionary) -> None:
        self._current = dictionary

    def snapshot(self) -> SignDictionary:
        return self._current

    def swap(self, dictionary: SignDictionary) -> SignDictionary:
        previous, self._current = self._current, dictionary
        log.info("Sign dictionary replaced (%d → %d entries)", len(previous), len(dictionary))
        return previous


_store: Optional[DictionaryStore] = None


def get_dictionary_store() -> DictionaryStore:
    global _store
    if _store is None:
        _store = DictionaryStore(load_sign_dictionary())
    return _store
