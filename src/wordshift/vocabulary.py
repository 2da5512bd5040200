from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol

from .document import utcnow
from .store import _atomic_write_text

__all__ = [
    "JsonVocabularyStore",
    "MemoryVocabularyStore",
    "VocabularyEntry",
    "VocabularyList",
    "VocabularyStore",
    "format_entries",
    "format_entry",
]

logger = logging.getLogger(__name__)

UNKNOWN_POS = "unknown"


@dataclass(slots=True)
class VocabularyEntry:
    original: str
    translation: str
    source_language: str
    target_language: str
    part_of_speech: str = UNKNOWN_POS
    text_id: str | None = None
    text_title: str | None = None
    is_phrase: bool = False
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=utcnow)

    def matches(self, original: str, source_language: str, target_language: str) -> bool:
        return (
            self.source_language == source_language
            and self.target_language == target_language
            and self.original.casefold() == original.casefold()
        )

    def as_payload(self) -> dict[str, object]:
        payload = asdict(self)
        payload["created_at"] = self.created_at.isoformat()
        return payload

    @classmethod
    def from_payload(cls, payload: object) -> "VocabularyEntry | None":
        if not isinstance(payload, Mapping):
            return None
        strings = {}
        for key in ("id", "original", "translation", "source_language", "target_language"):
            value = payload.get(key)
            if not isinstance(value, str) or not value:
                return None
            strings[key] = value
        pos = payload.get("part_of_speech")
        text_id = payload.get("text_id")
        text_title = payload.get("text_title")
        try:
            created_at = datetime.fromisoformat(str(payload.get("created_at")))
        except ValueError:
            created_at = utcnow()
        return cls(
            part_of_speech=pos if isinstance(pos, str) and pos else UNKNOWN_POS,
            text_id=text_id if isinstance(text_id, str) and text_id else None,
            text_title=text_title if isinstance(text_title, str) and text_title else None,
            is_phrase=bool(payload.get("is_phrase", False)),
            created_at=created_at,
            **strings,
        )


def format_entry(entry: VocabularyEntry) -> str:
    """Render ``original (pos) : translation``; the part of speech is left out when unknown."""
    pos = f" ({entry.part_of_speech})" if entry.part_of_speech != UNKNOWN_POS else ""
    return f"{entry.original}{pos} : {entry.translation}"


def format_entries(entries: Iterable[VocabularyEntry]) -> str:
    return "\n".join(format_entry(entry) for entry in entries)


class VocabularyStore(Protocol):
    async def load(self) -> list[dict[str, Any]]: ...

    async def dump(self, payloads: list[dict[str, Any]]) -> None: ...


class MemoryVocabularyStore:
    def __init__(self) -> None:
        self._payloads: list[dict[str, Any]] = []

    async def load(self) -> list[dict[str, Any]]:
        return [dict(payload) for payload in self._payloads]

    async def dump(self, payloads: list[dict[str, Any]]) -> None:
        self._payloads = [dict(payload) for payload in payloads]


class JsonVocabularyStore:
    """All saved entries in one JSON file, rewritten atomically on every change."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def _read(self) -> list[dict[str, Any]]:
        try:
            raw = json.loads(self.path.read_bytes())
        except FileNotFoundError:
            return []
        except ValueError as exc:
            logger.error("Vocabulary file %s is unreadable, starting empty: %s", self.path, exc)
            return []
        entries = raw.get("entries") if isinstance(raw, dict) else None
        return [entry for entry in entries if isinstance(entry, dict)] if isinstance(entries, list) else []

    def _write(self, payloads: list[dict[str, Any]]) -> None:
        _atomic_write_text(
            self.path,
            json.dumps({"entries": payloads}, ensure_ascii=False, indent=2),
        )

    async def load(self) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._read)

    async def dump(self, payloads: list[dict[str, Any]]) -> None:
        await asyncio.to_thread(self._write, payloads)


class VocabularyList:
    """
    Saved words and phrases, newest first.

    A word is saved at most once per language pair, compared
    case-insensitively. Listing can be narrowed to a language pair or to the
    text an entry was saved from.
    """

    def __init__(self, store: VocabularyStore) -> None:
        self.store = store
        self._lock = asyncio.Lock()

    async def _entries(self) -> list[VocabularyEntry]:
        entries = []
        for payload in await self.store.load():
            entry = VocabularyEntry.from_payload(payload)
            if entry is None:
                logger.warning("Skipping malformed vocabulary entry: %r", payload)
                continue
            entries.append(entry)
        return entries

    async def _dump(self, entries: list[VocabularyEntry]) -> None:
        await self.store.dump([entry.as_payload() for entry in entries])

    async def save_word(
        self,
        original: str,
        translation: str,
        *,
        source_language: str,
        target_language: str,
        part_of_speech: str | None = None,
        text_id: str | None = None,
        text_title: str | None = None,
        is_phrase: bool | None = None,
    ) -> VocabularyEntry | None:
        """Save a word or phrase; returns None when it is already saved for this pair."""
        original = original.strip()
        translation = translation.strip()
        if not original or not translation:
            raise ValueError("Both the original and its translation are required.")
        async with self._lock:
            entries = await self._entries()
            if any(entry.matches(original, source_language, target_language) for entry in entries):
                return None
            entry = VocabularyEntry(
                original=original,
                translation=translation,
                source_language=source_language,
                target_language=target_language,
                part_of_speech=part_of_speech or UNKNOWN_POS,
                text_id=text_id,
                text_title=text_title,
                is_phrase=len(original.split()) > 1 if is_phrase is None else is_phrase,
            )
            entries.append(entry)
            await self._dump(entries)
        logger.info("Saved %r to vocabulary (%s-%s)", original, source_language, target_language)
        return entry

    async def delete(self, entry_id: str) -> bool:
        async with self._lock:
            entries = await self._entries()
            kept = [entry for entry in entries if entry.id != entry_id]
            if len(kept) == len(entries):
                return False
            await self._dump(kept)
        return True

    async def exists(self, original: str, source_language: str, target_language: str) -> bool:
        original = original.strip()
        return any(
            entry.matches(original, source_language, target_language)
            for entry in await self._entries()
        )

    async def list_entries(
        self,
        *,
        source_language: str | None = None,
        target_language: str | None = None,
        text_id: str | None = None,
    ) -> list[VocabularyEntry]:
        # newest first; later saves win ties on equal timestamps
        entries = [
            entry
            for entry in reversed(await self._entries())
            if (source_language is None or entry.source_language == source_language)
            and (target_language is None or entry.target_language == target_language)
            and (text_id is None or entry.text_id == text_id)
        ]
        entries.sort(key=lambda entry: entry.created_at, reverse=True)
        return entries

    async def text_ids(self) -> list[str]:
        return sorted({entry.text_id for entry in await self._entries() if entry.text_id})

    async def clear(self) -> None:
        async with self._lock:
            await self.store.dump([])
