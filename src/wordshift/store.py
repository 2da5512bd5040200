from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Mapping, Protocol

from .codec import dumps_record, loads_record
from .document import utcnow
from .tokens import normalize_word

__all__ = [
    "DocumentStore",
    "JsonDirectoryStore",
    "MemoryStore",
    "StoredDocumentInfo",
    "metadata_from_record",
]

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".json"
METADATA_SUFFIX = ".meta.json"
_INVALID_ID_CHARS = set('<>:"/\\|?*')


@dataclass(slots=True)
class StoredDocumentInfo:
    id: str
    title: str
    source_language: str
    target_language: str
    word_count: int
    unique_word_count: int
    created_at: str
    updated_at: str

    def as_payload(self) -> dict[str, object]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: object) -> "StoredDocumentInfo | None":
        if not isinstance(payload, Mapping):
            return None
        doc_id = payload.get("id")
        if not isinstance(doc_id, str) or not doc_id:
            return None
        title = payload.get("title")
        word_count = payload.get("word_count")
        unique_count = payload.get("unique_word_count")
        return cls(
            id=doc_id,
            title=title if isinstance(title, str) else doc_id,
            source_language=str(payload.get("source_language") or ""),
            target_language=str(payload.get("target_language") or ""),
            word_count=word_count if isinstance(word_count, int) else 0,
            unique_word_count=unique_count if isinstance(unique_count, int) else 0,
            created_at=str(payload.get("created_at") or ""),
            updated_at=str(payload.get("updated_at") or ""),
        )


def metadata_from_record(record: Mapping[str, Any], updated_at: str) -> StoredDocumentInfo:
    """Summarize a current-version record without decoding it."""
    tokens = record.get("tokens")
    words = [
        entry[1]
        for entry in (tokens if isinstance(tokens, list) else [])
        if isinstance(entry, list) and len(entry) > 1 and entry[0] == 0 and isinstance(entry[1], str)
    ]
    return StoredDocumentInfo(
        id=str(record.get("id") or ""),
        title=str(record.get("title") or ""),
        source_language=str(record.get("source_language") or ""),
        target_language=str(record.get("target_language") or ""),
        word_count=len(words),
        unique_word_count=len({normalize_word(word) for word in words}),
        created_at=str(record.get("created_at") or ""),
        updated_at=updated_at,
    )


class DocumentStore(Protocol):
    async def get(self, doc_id: str) -> dict[str, Any] | None: ...

    async def put(self, doc_id: str, record: Mapping[str, Any]) -> None: ...

    async def delete(self, doc_id: str) -> bool: ...

    async def list_metadata(self) -> list[StoredDocumentInfo]: ...


def _now_iso() -> str:
    return utcnow().isoformat()


class MemoryStore:
    """Keeps encoded records in a dict; serializes them to catch non-JSON payloads early."""

    def __init__(self) -> None:
        self._records: dict[str, str] = {}
        self._metadata: dict[str, StoredDocumentInfo] = {}
        self.writes = 0

    async def get(self, doc_id: str) -> dict[str, Any] | None:
        payload = self._records.get(doc_id)
        if payload is None:
            return None
        return loads_record(payload)

    async def put(self, doc_id: str, record: Mapping[str, Any]) -> None:
        self._records[doc_id] = dumps_record(record)
        self._metadata[doc_id] = metadata_from_record(record, _now_iso())
        self.writes += 1

    async def delete(self, doc_id: str) -> bool:
        self._metadata.pop(doc_id, None)
        return self._records.pop(doc_id, None) is not None

    async def list_metadata(self) -> list[StoredDocumentInfo]:
        return list(self._metadata.values())


def _validate_id(doc_id: str) -> str:
    if not doc_id or doc_id in {".", ".."} or any(ch in _INVALID_ID_CHARS for ch in doc_id):
        raise ValueError(f"Invalid document id: {doc_id!r}")
    return doc_id


def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class JsonDirectoryStore:
    """
    One JSON record per document plus a small metadata sidecar.

    Writes go to a temporary file first and are swapped into place, so a crash
    mid-write leaves the previous record intact. File access runs in a worker
    thread to keep the event loop responsive.
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def _record_path(self, doc_id: str) -> Path:
        return self.root / f"{_validate_id(doc_id)}{RECORD_SUFFIX}"

    def _metadata_path(self, doc_id: str) -> Path:
        return self.root / f"{_validate_id(doc_id)}{METADATA_SUFFIX}"

    def _read(self, doc_id: str) -> dict[str, Any] | None:
        path = self._record_path(doc_id)
        try:
            payload = path.read_bytes()
        except FileNotFoundError:
            return None
        # undecodable bytes surface as CorruptedRecordError
        return loads_record(payload)

    def _write(self, doc_id: str, record: Mapping[str, Any]) -> None:
        _atomic_write_text(self._record_path(doc_id), dumps_record(record))
        info = metadata_from_record(record, _now_iso())
        _atomic_write_text(
            self._metadata_path(doc_id),
            json.dumps(info.as_payload(), ensure_ascii=False, indent=2),
        )

    def _remove(self, doc_id: str) -> bool:
        record_path = self._record_path(doc_id)
        existed = record_path.exists()
        record_path.unlink(missing_ok=True)
        self._metadata_path(doc_id).unlink(missing_ok=True)
        return existed

    def _scan_metadata(self) -> list[StoredDocumentInfo]:
        if not self.root.exists():
            return []
        entries: list[StoredDocumentInfo] = []
        for path in sorted(self.root.glob(f"*{METADATA_SUFFIX}")):
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("Skipping unreadable metadata %s: %s", path.name, exc)
                continue
            info = StoredDocumentInfo.from_payload(raw)
            if info is not None:
                entries.append(info)
        return entries

    async def get(self, doc_id: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._read, doc_id)

    async def put(self, doc_id: str, record: Mapping[str, Any]) -> None:
        await asyncio.to_thread(self._write, doc_id, record)

    async def delete(self, doc_id: str) -> bool:
        return await asyncio.to_thread(self._remove, doc_id)

    async def list_metadata(self) -> list[StoredDocumentInfo]:
        return await asyncio.to_thread(self._scan_metadata)

