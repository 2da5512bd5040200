from __future__ import annotations

from dataclasses import dataclass

__all__ = [
    "DEFAULT_LANGUAGE",
    "LANGUAGE_NAMES",
    "LanguagePair",
    "detect_language",
    "detect_language_from_sample",
    "language_name",
]

DEFAULT_LANGUAGE = "en"
LANGUAGE_NAMES = {
    "en": "English",
    "ru": "Russian",
    "ko": "Korean",
}
_SAMPLE_CHARS = 1000


@dataclass(frozen=True, slots=True)
class LanguagePair:
    source: str
    target: str

    @property
    def key(self) -> str:
        return f"{self.source}-{self.target}"

    @classmethod
    def parse(cls, value: str) -> "LanguagePair":
        source, sep, target = value.partition("-")
        if not sep or not source or not target:
            raise ValueError(f"Language pair must look like 'en-ru': {value!r}")
        return cls(source=source.strip().lower(), target=target.strip().lower())


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, code)


def _is_cyrillic(code: int) -> bool:
    return 0x0400 <= code <= 0x04FF


def _is_hangul(code: int) -> bool:
    return 0xAC00 <= code <= 0xD7AF or 0x1100 <= code <= 0x11FF


def _is_basic_latin_letter(code: int) -> bool:
    return 0x41 <= code <= 0x5A or 0x61 <= code <= 0x7A


def detect_language(text: str) -> str:
    """
    Guess the source language from the dominant script.

    Cyrillic maps to Russian, Hangul to Korean and basic Latin to English. A
    script needs more than half of the counted letters to win outright; mixed
    text falls back to the largest count, and text without letters is English.
    """
    cyrillic = hangul = latin = 0
    for ch in text:
        code = ord(ch)
        if _is_cyrillic(code):
            cyrillic += 1
        elif _is_hangul(code):
            hangul += 1
        elif _is_basic_latin_letter(code):
            latin += 1
    total = cyrillic + hangul + latin
    if total == 0:
        return DEFAULT_LANGUAGE
    if cyrillic / total > 0.5:
        return "ru"
    if hangul / total > 0.5:
        return "ko"
    if latin / total > 0.5:
        return "en"
    if cyrillic >= hangul and cyrillic >= latin:
        return "ru"
    if hangul >= cyrillic and hangul >= latin:
        return "ko"
    return DEFAULT_LANGUAGE


def detect_language_from_sample(text: str) -> str:
    return detect_language(text[:_SAMPLE_CHARS])
