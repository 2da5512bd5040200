from __future__ import annotations

import logging

from .codec import CorruptedRecordError, decode, encode
from .document import Document
from .store import DocumentStore, StoredDocumentInfo

__all__ = ["DocumentLibrary"]

logger = logging.getLogger(__name__)


class DocumentLibrary:
    """Saves, loads and lists documents on top of a :class:`DocumentStore`."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def save(self, document: Document) -> None:
        record = encode(document)
        await self.store.put(document.id, record)
        logger.debug(
            "Saved %s: %d word tokens, %d unique translations",
            document.id,
            document.word_count,
            len(document.dictionary),
        )

    async def load(self, doc_id: str) -> Document | None:
        try:
            record = await self.store.get(doc_id)
        except CorruptedRecordError as exc:
            logger.error("Stored document %s is corrupted: %s", doc_id, exc)
            return None
        if record is None:
            return None
        try:
            return decode(record)
        except CorruptedRecordError as exc:
            logger.error("Stored document %s could not be reconstructed: %s", doc_id, exc)
            return None

    async def delete(self, doc_id: str) -> bool:
        return await self.store.delete(doc_id)

    async def list_documents(self, sort: str = "recent") -> list[StoredDocumentInfo]:
        normalized = sort.lower().strip()
        if normalized not in {"recent", "title"}:
            normalized = "recent"
        entries = await self.store.list_metadata()
        if normalized == "title":
            entries.sort(key=lambda info: (info.title.casefold(), info.id))
        else:
            entries.sort(key=lambda info: (info.updated_at, info.id), reverse=True)
        return entries
