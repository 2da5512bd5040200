from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Protocol

from .language import LanguagePair

__all__ = [
    "UNKNOWN_TRANSLATION",
    "DictionarySource",
    "DictionaryUnavailableError",
    "JsonDictionarySource",
    "MappingDictionarySource",
    "TranslationEntry",
    "dictionary_path",
]

logger = logging.getLogger(__name__)

UNKNOWN_TRANSLATION = "?"


class DictionaryUnavailableError(RuntimeError):
    """Raised when the dictionary for a language pair cannot be loaded."""


@dataclass(frozen=True, slots=True)
class TranslationEntry:
    translation: str
    part_of_speech: str | None = None

    @classmethod
    def unknown(cls) -> "TranslationEntry":
        return cls(translation=UNKNOWN_TRANSLATION, part_of_speech=None)

    @property
    def is_unknown(self) -> bool:
        return self.translation == UNKNOWN_TRANSLATION


class DictionarySource(Protocol):
    def load(self, pair: LanguagePair) -> None: ...

    def lookup(self, key: str) -> TranslationEntry | None: ...


def dictionary_path(directory: Path, pair: LanguagePair) -> Path:
    return directory / f"{pair.key}.json"


def _entries_from_payload(payload: object) -> dict[str, TranslationEntry]:
    entries: dict[str, TranslationEntry] = {}
    if isinstance(payload, list):
        for item in payload:
            if not isinstance(item, Mapping):
                continue
            word = item.get("word")
            translation = item.get("translation")
            if not isinstance(word, str) or not isinstance(translation, str) or not translation:
                continue
            pos = item.get("pos")
            entries[word.lower()] = TranslationEntry(
                translation=translation,
                part_of_speech=pos if isinstance(pos, str) and pos else None,
            )
        return entries
    if not isinstance(payload, Mapping):
        raise DictionaryUnavailableError("Dictionary payload must be a list or an object.")
    for word, value in payload.items():
        if not isinstance(word, str):
            continue
        if isinstance(value, str):
            translation: object = value
            pos: object = None
        elif isinstance(value, Mapping):
            # compact {"t", "p"} or verbose {"translation", "pos"}
            translation = value.get("t") or value.get("translation")
            pos = value.get("p") or value.get("pos")
        else:
            continue
        if not isinstance(translation, str) or not translation:
            continue
        entries[word.lower()] = TranslationEntry(
            translation=translation,
            part_of_speech=pos if isinstance(pos, str) and pos else None,
        )
    return entries


class JsonDictionarySource:
    """
    Dictionary files stored as ``<source>-<target>.json`` in one directory.

    Each pair is read from disk once and cached; ``load`` switches the pair
    that ``lookup`` answers for.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self._cache: dict[str, dict[str, TranslationEntry]] = {}
        self._active: dict[str, TranslationEntry] | None = None

    def load(self, pair: LanguagePair) -> None:
        cached = self._cache.get(pair.key)
        if cached is not None:
            self._active = cached
            return
        path = dictionary_path(self.directory, pair)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise DictionaryUnavailableError(f"Dictionary not found: {path}") from exc
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise DictionaryUnavailableError(f"Failed to read dictionary {path}: {exc}") from exc
        entries = _entries_from_payload(payload)
        logger.info("Dictionary loaded: %s (%d entries)", pair.key, len(entries))
        self._cache[pair.key] = entries
        self._active = entries

    def is_loaded(self, pair: LanguagePair) -> bool:
        return pair.key in self._cache

    def lookup(self, key: str) -> TranslationEntry | None:
        if self._active is None:
            return None
        return self._active.get(key.lower())

    def clear(self) -> None:
        self._cache.clear()
        self._active = None


class MappingDictionarySource:
    """In-memory dictionary source; the same mapping answers for every pair."""

    def __init__(self, entries: Mapping[str, TranslationEntry | str] | None = None) -> None:
        self._entries: dict[str, TranslationEntry] = {}
        for word, value in (entries or {}).items():
            if isinstance(value, str):
                value = TranslationEntry(translation=value)
            self._entries[word.lower()] = value
        self.loaded_pairs: list[LanguagePair] = []

    def load(self, pair: LanguagePair) -> None:
        self.loaded_pairs.append(pair)

    def lookup(self, key: str) -> TranslationEntry | None:
        return self._entries.get(key.lower())
