from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from .dictionary import TranslationEntry
from .language import LanguagePair
from .tokens import Token, TokenKind, normalize_word, tokens_to_text

__all__ = [
    "DEFAULT_FONT_SIZE_PX",
    "DisplayMode",
    "Document",
    "new_document_id",
    "utcnow",
]

DEFAULT_FONT_SIZE_PX = 18


class DisplayMode(str, Enum):
    SCROLL = "scroll"
    PAGE = "page"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_document_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Document:
    """
    A processed text ready for reading.

    ``dictionary`` holds one entry per normalized word, never one per
    occurrence. Entries may be replaced individually after ingestion; the
    token list is fixed once the document exists.
    """

    id: str
    title: str
    source_language: str
    target_language: str
    tokens: list[Token]
    dictionary: dict[str, TranslationEntry] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    last_opened_at: datetime = field(default_factory=utcnow)
    last_read_token_index: int = 0
    font_size_px: int = DEFAULT_FONT_SIZE_PX
    display_mode: DisplayMode = DisplayMode.SCROLL

    @property
    def language_pair(self) -> LanguagePair:
        return LanguagePair(source=self.source_language, target=self.target_language)

    @property
    def text(self) -> str:
        return tokens_to_text(self.tokens)

    @property
    def word_count(self) -> int:
        return sum(1 for token in self.tokens if token.kind is TokenKind.WORD)

    @property
    def unique_word_count(self) -> int:
        return len({normalize_word(t.value) for t in self.tokens if t.kind is TokenKind.WORD})

    def translation_for(self, token: Token) -> TranslationEntry | None:
        if token.kind is not TokenKind.WORD:
            return None
        return self.dictionary.get(normalize_word(token.value))

    def pending_keys(self) -> list[str]:
        """Word keys that have no dictionary entry yet (dynamic ingestion)."""
        pending: list[str] = []
        seen: set[str] = set()
        for token in self.tokens:
            if token.kind is not TokenKind.WORD:
                continue
            key = normalize_word(token.value)
            if key in seen or key in self.dictionary:
                continue
            seen.add(key)
            pending.append(key)
        return pending
