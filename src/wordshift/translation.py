from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import requests

from .dictionary import TranslationEntry
from .document import Document
from .language import LanguagePair, language_name
from .resolver import update_entry
from .tokens import TokenKind, word_context

if TYPE_CHECKING:
    from .config import ReaderSettings

__all__ = [
    "GROQ_CHAT_URL",
    "OPENAI_CHAT_URL",
    "MockBackend",
    "OllamaBackend",
    "OpenAICompatibleBackend",
    "TranslationBackend",
    "TranslationBackendError",
    "TranslationResult",
    "TranslationService",
    "create_backend",
]

logger = logging.getLogger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
GROQ_CHAT_URL = "https://api.groq.com/openai/v1/chat/completions"

_EDGE_QUOTES = "\"'“”‘’«»"
_POS_SPLIT = re.compile(r"[/,\s]")

_WORD_EXAMPLES = {
    "ru-en": "книга → book|noun",
    "ru-ko": "книга → 책|noun",
    "en-ru": "book → книга|noun",
    "en-ko": "book → 책|noun",
    "ko-en": "책 → book|noun",
    "ko-ru": "책 → книга|noun",
}
_PHRASE_EXAMPLES = {
    "ru-en": "доброе утро → good morning",
    "ru-ko": "доброе утро → 좋은 아침",
    "en-ru": "good morning → доброе утро",
    "en-ko": "good morning → 좋은 아침",
    "ko-en": "좋은 아침 → good morning",
    "ko-ru": "좋은 아침 → доброе утро",
}


class TranslationBackendError(RuntimeError):
    """Raised when a translation backend cannot produce an answer."""


@dataclass(frozen=True, slots=True)
class TranslationResult:
    original: str
    translation: str
    part_of_speech: str

    def as_entry(self) -> TranslationEntry:
        pos = self.part_of_speech if self.part_of_speech and self.part_of_speech != "unknown" else None
        return TranslationEntry(translation=self.translation, part_of_speech=pos)


class TranslationBackend(Protocol):
    name: str

    def translate_word(self, word: str, context: str, pair: LanguagePair) -> TranslationResult: ...

    def translate_phrase(self, phrase: str, pair: LanguagePair) -> TranslationResult: ...

    def is_available(self) -> bool: ...


def clean_translation(text: str) -> str:
    return text.strip().strip(_EDGE_QUOTES).strip()


def parse_word_answer(original: str, raw: str) -> TranslationResult:
    """Parse a ``translation|pos`` answer; anything else is taken as a bare translation."""
    cleaned = (raw or "").strip()
    parts = [part.strip() for part in cleaned.split("|") if part.strip()]
    if len(parts) >= 2:
        pos = _POS_SPLIT.split(parts[1])[0].lower()
        return TranslationResult(
            original=original,
            translation=clean_translation(parts[0]),
            part_of_speech=pos or "unknown",
        )
    return TranslationResult(
        original=original,
        translation=clean_translation(cleaned),
        part_of_speech="unknown",
    )


class MockBackend:
    """Echoes the word back in brackets; handy for trying the reader without a model."""

    name = "mock"

    def translate_word(self, word: str, context: str, pair: LanguagePair) -> TranslationResult:
        return TranslationResult(original=word, translation=f"[{word}]", part_of_speech="noun")

    def translate_phrase(self, phrase: str, pair: LanguagePair) -> TranslationResult:
        return TranslationResult(original=phrase, translation=f"[{phrase}]", part_of_speech="phrase")

    def is_available(self) -> bool:
        return True


class OllamaBackend:
    """
    Thin wrapper around a local Ollama server's ``/api/generate`` endpoint.
    """

    name = "ollama"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3.2",
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._session = requests.Session()

    def _generate(self, prompt: str) -> str:
        try:
            resp = self._session.post(
                f"{self.base_url}/api/generate",
                json={"model": self.model, "prompt": prompt, "stream": False},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TranslationBackendError(
                f"Failed to contact Ollama at {self.base_url}"
            ) from exc
        if resp.status_code != 200:
            raise TranslationBackendError(
                f"/api/generate failed with status {resp.status_code}: {resp.text}"
            )
        try:
            payload = resp.json()
        except json.JSONDecodeError as exc:
            raise TranslationBackendError("Ollama returned invalid JSON") from exc
        answer = payload.get("response") if isinstance(payload, dict) else None
        return answer if isinstance(answer, str) else ""

    def translate_word(self, word: str, context: str, pair: LanguagePair) -> TranslationResult:
        example = _WORD_EXAMPLES.get(pair.key, "hello → translation|noun")
        prompt = (
            f"{language_name(pair.source)}→{language_name(pair.target)}: {word}\n\n"
            f"{example}\n\n"
            "ONE word answer. No explanation. Format: word|pos"
        )
        return parse_word_answer(word, self._generate(prompt))

    def translate_phrase(self, phrase: str, pair: LanguagePair) -> TranslationResult:
        example = _PHRASE_EXAMPLES.get(pair.key, "hello world → translated phrase")
        prompt = (
            f'{language_name(pair.source)}→{language_name(pair.target)}: "{phrase}"\n\n'
            f"{example}\n\n"
            "Translation only. No explanation."
        )
        return TranslationResult(
            original=phrase,
            translation=clean_translation(self._generate(prompt)),
            part_of_speech="phrase",
        )

    def is_available(self) -> bool:
        try:
            resp = self._session.get(f"{self.base_url}/api/tags", timeout=min(self.timeout, 5.0))
        except requests.RequestException:
            return False
        return resp.status_code == 200


class OpenAICompatibleBackend:
    """Chat-completions client for OpenAI and OpenAI-compatible hosts such as Groq."""

    def __init__(
        self,
        api_key: str | None,
        *,
        model: str = "gpt-4o-mini",
        endpoint: str = OPENAI_CHAT_URL,
        timeout: float = 15.0,
        name: str = "openai",
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.model = model
        self.endpoint = endpoint
        self.timeout = timeout
        self.name = name
        self._session = requests.Session()

    def _chat(self, user_prompt: str) -> str:
        if not self.api_key:
            raise TranslationBackendError(f"{self.name} API key is missing")
        body = {
            "model": self.model,
            "messages": [
                {
                    "role": "system",
                    "content": (
                        "You are a translator. Follow the requested output format exactly. "
                        "Do not include extra commentary."
                    ),
                },
                {"role": "user", "content": user_prompt},
            ],
            "temperature": 0.2,
        }
        try:
            resp = self._session.post(
                self.endpoint,
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TranslationBackendError(f"Failed to contact {self.endpoint}") from exc
        if resp.status_code != 200:
            raise TranslationBackendError(
                f"{self.name} request failed with status {resp.status_code}: {resp.text}"
            )
        try:
            payload = resp.json()
        except json.JSONDecodeError as exc:
            raise TranslationBackendError(f"{self.name} returned invalid JSON") from exc
        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            return ""
        return content.strip() if isinstance(content, str) else ""

    def translate_word(self, word: str, context: str, pair: LanguagePair) -> TranslationResult:
        prompt = "\n".join(
            [
                f"Translate the following word from {language_name(pair.source)} to {language_name(pair.target)}.",
                f'Context: "{context}"',
                f'Word: "{word}"',
                "",
                "Respond with ONLY: translation|partOfSpeech",
                "Where partOfSpeech is one of: noun, verb, adj, adv, prep, conj, pron, interj, det, part, phrase, unknown",
            ]
        )
        return parse_word_answer(word, self._chat(prompt))

    def translate_phrase(self, phrase: str, pair: LanguagePair) -> TranslationResult:
        prompt = "\n".join(
            [
                f"Translate the following phrase from {language_name(pair.source)} to {language_name(pair.target)}.",
                f'Phrase: "{phrase}"',
                "",
                "Respond with ONLY the translation (no quotes).",
            ]
        )
        return TranslationResult(original=phrase, translation=self._chat(prompt), part_of_speech="phrase")

    def is_available(self) -> bool:
        return bool(self.api_key)


def create_backend(settings: "ReaderSettings") -> TranslationBackend:
    provider = settings.provider.lower().strip()
    if provider == "mock":
        return MockBackend()
    if provider == "ollama":
        return OllamaBackend(settings.ollama_url, settings.ollama_model, settings.request_timeout)
    if provider == "openai":
        return OpenAICompatibleBackend(
            settings.openai_api_key,
            model=settings.openai_model,
            endpoint=settings.openai_url,
            timeout=settings.request_timeout,
        )
    if provider == "groq":
        return OpenAICompatibleBackend(
            settings.groq_api_key,
            model=settings.groq_model,
            endpoint=settings.groq_url,
            timeout=settings.request_timeout,
            name="groq",
        )
    raise ValueError(f"Unknown translation provider: {settings.provider!r}")


class TranslationService:
    """
    On-demand translation for an open document.

    Backend calls block on network I/O, so they run in a worker thread.
    """

    def __init__(self, backend: TranslationBackend) -> None:
        self.backend = backend

    async def is_available(self) -> bool:
        return await asyncio.to_thread(self.backend.is_available)

    async def retry_word(self, document: Document, token_index: int) -> TranslationEntry:
        """Ask the backend again for one word and replace only that word's entry."""
        if not 0 <= token_index < len(document.tokens):
            raise IndexError(f"Token index {token_index} out of range")
        token = document.tokens[token_index]
        if token.kind is not TokenKind.WORD:
            raise ValueError(f"Token {token_index} is not a word")
        context = word_context(document.tokens, token_index)
        result = await asyncio.to_thread(
            self.backend.translate_word, token.value, context, document.language_pair
        )
        entry = result.as_entry()
        if not entry.translation:
            raise TranslationBackendError(f"Empty translation for {token.value!r}")
        update_entry(document.dictionary, token.value, entry)
        logger.info(
            "Retranslated %r in %s via %s: %s",
            token.value,
            document.id,
            getattr(self.backend, "name", "backend"),
            entry.translation,
        )
        return entry

    async def translate_phrase(self, document: Document, phrase: str) -> TranslationResult:
        phrase = phrase.strip()
        if not phrase:
            raise ValueError("Phrase is empty")
        return await asyncio.to_thread(self.backend.translate_phrase, phrase, document.language_pair)
