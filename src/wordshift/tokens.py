from __future__ import annotations

import unicodedata
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

__all__ = [
    "Token",
    "TokenKind",
    "extract_words",
    "normalize_word",
    "tokenize",
    "tokens_to_text",
    "unique_word_keys",
    "word_context",
]

_APOSTROPHES = ("'", "’")


class TokenKind(Enum):
    WORD = "word"
    PUNCTUATION = "punctuation"
    WHITESPACE = "whitespace"

    @property
    def code(self) -> int:
        return _KIND_CODES[self]

    @classmethod
    def from_code(cls, code: int) -> "TokenKind":
        try:
            return _KINDS_BY_CODE[code]
        except KeyError:
            raise ValueError(f"Unknown token kind code: {code!r}") from None


_KIND_CODES = {
    TokenKind.WORD: 0,
    TokenKind.PUNCTUATION: 1,
    TokenKind.WHITESPACE: 2,
}
_KINDS_BY_CODE = {code: kind for kind, code in _KIND_CODES.items()}


@dataclass(frozen=True, slots=True)
class Token:
    """
    One lexical unit of a document.

    ``index`` is the token's position in the token list and ``char_start`` /
    ``char_end`` are offsets into the source text, so the value always equals
    ``text[char_start:char_end]``.
    """

    kind: TokenKind
    value: str
    index: int
    char_start: int
    char_end: int

    @property
    def is_word(self) -> bool:
        return self.kind is TokenKind.WORD

    @property
    def newline_count(self) -> int:
        if self.kind is not TokenKind.WHITESPACE:
            return 0
        return self.value.count("\n")


def _is_mark(ch: str) -> bool:
    return unicodedata.category(ch).startswith("M")


def _scan_letters(text: str, pos: int) -> int:
    end = pos
    length = len(text)
    while end < length and (text[end].isalpha() or _is_mark(text[end])):
        end += 1
    return end


def _scan_word(text: str, pos: int) -> int:
    end = _scan_letters(text, pos)
    # one internal apostrophe keeps contractions such as "don't" together
    if end + 1 < len(text) and text[end] in _APOSTROPHES and text[end + 1].isalpha():
        end = _scan_letters(text, end + 1)
    return end


def _scan_whitespace(text: str, pos: int) -> int:
    end = pos
    length = len(text)
    while end < length and text[end].isspace():
        end += 1
    return end


def _scan_punctuation(text: str, pos: int) -> int:
    end = pos
    length = len(text)
    while end < length and not text[end].isalpha() and not text[end].isspace():
        end += 1
    return end


def tokenize(text: str) -> list[Token]:
    """
    Split ``text`` into word, punctuation and whitespace tokens.

    The tokens partition the input exactly: joining their values in order
    gives back ``text`` unchanged, for any mixture of scripts.
    """
    tokens: list[Token] = []
    pos = 0
    length = len(text)
    while pos < length:
        ch = text[pos]
        if ch.isalpha():
            kind = TokenKind.WORD
            end = _scan_word(text, pos)
        elif ch.isspace():
            kind = TokenKind.WHITESPACE
            end = _scan_whitespace(text, pos)
        else:
            kind = TokenKind.PUNCTUATION
            end = _scan_punctuation(text, pos)
        tokens.append(
            Token(
                kind=kind,
                value=text[pos:end],
                index=len(tokens),
                char_start=pos,
                char_end=end,
            )
        )
        pos = end
    return tokens


def tokens_to_text(tokens: Iterable[Token]) -> str:
    return "".join(token.value for token in tokens)


def normalize_word(value: str) -> str:
    return value.lower()


def extract_words(tokens: Iterable[Token]) -> list[Token]:
    return [token for token in tokens if token.kind is TokenKind.WORD]


def unique_word_keys(
    tokens: Sequence[Token],
    start: int = 0,
    end: int | None = None,
) -> list[str]:
    """Return the normalized keys of words in ``tokens[start:end]`` in first-seen order."""
    seen: set[str] = set()
    keys: list[str] = []
    for token in tokens[start:end]:
        if token.kind is not TokenKind.WORD:
            continue
        key = normalize_word(token.value)
        if key in seen:
            continue
        seen.add(key)
        keys.append(key)
    return keys


def word_context(tokens: Sequence[Token], token_index: int, window: int = 5) -> str:
    words = extract_words(tokens)
    position = next(
        (idx for idx, token in enumerate(words) if token.index == token_index),
        -1,
    )
    if position == -1:
        return ""
    start = max(0, position - window)
    end = min(len(words), position + window + 1)
    return " ".join(token.value for token in words[start:end])
