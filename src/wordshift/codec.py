from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from .dictionary import UNKNOWN_TRANSLATION, TranslationEntry
from .document import DEFAULT_FONT_SIZE_PX, DisplayMode, Document, new_document_id, utcnow
from .tokens import Token, TokenKind, normalize_word, tokenize

__all__ = [
    "RECORD_VERSION",
    "CorruptedRecordError",
    "decode",
    "dumps_record",
    "encode",
    "loads_record",
]

logger = logging.getLogger(__name__)

RECORD_VERSION = 3

Record = dict[str, Any]


class CorruptedRecordError(ValueError):
    """Raised when a stored record cannot be turned back into a Document."""


def _format_timestamp(value: datetime) -> str:
    return value.isoformat()


def _parse_timestamp(value: object, fallback: datetime | None = None) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # legacy records kept epoch milliseconds
        try:
            return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return fallback if fallback is not None else utcnow()
    if isinstance(value, str) and value:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            parsed = None
        if parsed is not None:
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed
    return fallback if fallback is not None else utcnow()


def encode(document: Document) -> Record:
    """
    Encode ``document`` into the current compact record.

    Tokens become positional lists ``[kind, value, index, start, end]`` and the
    dictionary is written once per unique key as ``[translation, pos]``.
    """
    return {
        "version": RECORD_VERSION,
        "id": document.id,
        "title": document.title,
        "source_language": document.source_language,
        "target_language": document.target_language,
        "created_at": _format_timestamp(document.created_at),
        "last_opened_at": _format_timestamp(document.last_opened_at),
        "last_read_token_index": document.last_read_token_index,
        "font_size_px": document.font_size_px,
        "display_mode": document.display_mode.value,
        "tokens": [
            [token.kind.code, token.value, token.index, token.char_start, token.char_end]
            for token in document.tokens
        ],
        "dictionary": {
            key: [entry.translation, entry.part_of_speech or ""]
            for key, entry in document.dictionary.items()
        },
    }


def dumps_record(record: Mapping[str, Any]) -> str:
    return json.dumps(record, ensure_ascii=False, separators=(",", ":"))


def loads_record(payload: str | bytes) -> Record:
    try:
        raw = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise CorruptedRecordError(f"Stored record is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise CorruptedRecordError("Stored record must be a JSON object.")
    return raw


def _token_from_compact(entry: object, position: int, cursor: int) -> Token | None:
    if not isinstance(entry, (list, tuple)) or len(entry) < 2:
        return None
    kind_code, value = entry[0], entry[1]
    if not isinstance(kind_code, int) or not isinstance(value, str):
        return None
    try:
        kind = TokenKind.from_code(kind_code)
    except ValueError:
        return None
    start = entry[3] if len(entry) > 3 and isinstance(entry[3], int) else cursor
    return Token(kind=kind, value=value, index=position, char_start=start, char_end=start + len(value))


def _token_from_mapping(entry: object, position: int, cursor: int) -> Token | None:
    if not isinstance(entry, Mapping):
        return None
    value = entry.get("value")
    kind_name = entry.get("type", entry.get("kind"))
    if not isinstance(value, str) or not isinstance(kind_name, str):
        return None
    try:
        kind = TokenKind(kind_name)
    except ValueError:
        return None
    start = entry.get("charStart", entry.get("char_start"))
    if not isinstance(start, int):
        start = cursor
    return Token(kind=kind, value=value, index=position, char_start=start, char_end=start + len(value))


def _decode_tokens(payload: object) -> list[Token]:
    if not isinstance(payload, list):
        raise CorruptedRecordError("Record tokens must be a list.")
    tokens: list[Token] = []
    cursor = 0
    for entry in payload:
        if isinstance(entry, Mapping):
            token = _token_from_mapping(entry, len(tokens), cursor)
        else:
            token = _token_from_compact(entry, len(tokens), cursor)
        if token is None or not token.value:
            raise CorruptedRecordError(f"Malformed token at position {len(tokens)}.")
        tokens.append(token)
        cursor = token.char_end
    return tokens


def _entry_from_value(value: object) -> TranslationEntry | None:
    if isinstance(value, (list, tuple)) and value and isinstance(value[0], str):
        pos = value[1] if len(value) > 1 and isinstance(value[1], str) and value[1] else None
        return TranslationEntry(translation=value[0], part_of_speech=pos)
    if isinstance(value, Mapping):
        translation = value.get("translation")
        if not isinstance(translation, str):
            return None
        pos = value.get("partOfSpeech", value.get("part_of_speech"))
        return TranslationEntry(
            translation=translation,
            part_of_speech=pos if isinstance(pos, str) and pos else None,
        )
    if isinstance(value, str):
        return TranslationEntry(translation=value)
    return None


def _decode_dictionary(payload: object) -> dict[str, TranslationEntry]:
    if not isinstance(payload, Mapping):
        raise CorruptedRecordError("Record dictionary must be an object.")
    dictionary: dict[str, TranslationEntry] = {}
    for key, value in payload.items():
        if not isinstance(key, str):
            continue
        entry = _entry_from_value(value)
        if entry is not None:
            dictionary[key] = entry
    return dictionary


def _dictionary_from_occurrences(words: object) -> dict[str, TranslationEntry]:
    """Collapse a per-occurrence word list into one entry per key; first occurrence wins."""
    if not isinstance(words, list):
        raise CorruptedRecordError("Legacy word list must be a list.")
    dictionary: dict[str, TranslationEntry] = {}
    for word in words:
        if not isinstance(word, Mapping):
            continue
        key = word.get("normalized")
        if not isinstance(key, str) or not key:
            original = word.get("original")
            key = normalize_word(original) if isinstance(original, str) and original else None
        if not key or key in dictionary:
            continue
        translation = word.get("translation")
        pos = word.get("partOfSpeech")
        dictionary[key] = TranslationEntry(
            translation=translation if isinstance(translation, str) and translation else UNKNOWN_TRANSLATION,
            part_of_speech=pos if isinstance(pos, str) and pos else None,
        )
    return dictionary


def _optional_int(value: object, default: int) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return default


def _display_mode(value: object) -> DisplayMode:
    if isinstance(value, str):
        try:
            return DisplayMode(value)
        except ValueError:
            pass
    return DisplayMode.SCROLL


def _build_document(
    record: Mapping[str, Any],
    tokens: list[Token],
    dictionary: dict[str, TranslationEntry],
    *,
    camel_case: bool,
) -> Document:
    def field(snake: str, camel: str) -> object:
        if camel_case:
            return record.get(camel, record.get(snake))
        return record.get(snake, record.get(camel))

    doc_id = record.get("id")
    if not isinstance(doc_id, str) or not doc_id:
        doc_id = new_document_id()
    title = record.get("title")
    created_at = _parse_timestamp(field("created_at", "createdAt"))
    last_index = _optional_int(field("last_read_token_index", "lastReadTokenIndex"), 0)
    if tokens:
        last_index = max(0, min(last_index, len(tokens) - 1))
    else:
        last_index = 0
    return Document(
        id=doc_id,
        title=title if isinstance(title, str) else "Untitled",
        source_language=str(field("source_language", "sourceLanguage") or "en"),
        target_language=str(field("target_language", "targetLanguage") or "en"),
        tokens=tokens,
        dictionary=dictionary,
        created_at=created_at,
        last_opened_at=_parse_timestamp(field("last_opened_at", "lastOpenedAt"), created_at),
        last_read_token_index=last_index,
        font_size_px=_optional_int(field("font_size_px", "fontSize"), DEFAULT_FONT_SIZE_PX),
        display_mode=_display_mode(field("display_mode", "displayMode")),
    )


def _decode_v3(record: Mapping[str, Any]) -> Document:
    tokens = _decode_tokens(record.get("tokens"))
    # records written by the browser reader use wordDict and camelCase fields
    camel_case = "dictionary" not in record and "wordDict" in record
    payload = record.get("wordDict") if camel_case else record.get("dictionary")
    dictionary = _decode_dictionary(payload)
    return _build_document(record, tokens, dictionary, camel_case=camel_case)


def _decode_v2(record: Mapping[str, Any]) -> Document:
    tokens = _decode_tokens(record.get("tokens"))
    payload = record.get("dictionary", record.get("wordDict"))
    dictionary = _decode_dictionary(payload) if payload is not None else {}
    return _build_document(record, tokens, dictionary, camel_case=True)


def _decode_v1(record: Mapping[str, Any]) -> Document:
    tokens = _decode_tokens(record.get("tokens"))
    dictionary = _dictionary_from_occurrences(record.get("words", []))
    return _build_document(record, tokens, dictionary, camel_case=True)


def _decode_untagged(record: Mapping[str, Any]) -> Document:
    """
    Best-effort reconstruction of records without a usable version tag.

    Tokens may be compact lists or dicts; when absent the text is
    re-tokenized from ``originalContent``. The dictionary comes from
    ``wordDict``/``dictionary`` or, failing that, from a flat per-occurrence
    ``words`` list collapsed to unique keys.
    """
    raw_tokens = record.get("tokens")
    if raw_tokens is not None:
        tokens = _decode_tokens(raw_tokens)
    else:
        content = record.get("originalContent", record.get("original_content"))
        if not isinstance(content, str):
            raise CorruptedRecordError("Record has neither tokens nor original content.")
        tokens = tokenize(content)
    payload = record.get("wordDict", record.get("dictionary"))
    if payload is not None:
        dictionary = _decode_dictionary(payload)
    elif record.get("words") is not None:
        dictionary = _dictionary_from_occurrences(record.get("words"))
    else:
        dictionary = {}
    return _build_document(record, tokens, dictionary, camel_case=True)


_DECODERS: dict[int, Callable[[Mapping[str, Any]], Document]] = {
    1: _decode_v1,
    2: _decode_v2,
    3: _decode_v3,
}


def decode(record: Mapping[str, Any]) -> Document:
    """
    Rebuild a Document from a stored record.

    Dispatches on the ``version`` tag to one decoder per version. Records
    without a known tag go through the single untagged fallback. Raises
    :class:`CorruptedRecordError` when nothing sensible can be recovered.
    """
    if not isinstance(record, Mapping):
        raise CorruptedRecordError("Stored record must be a mapping.")
    version = record.get("version")
    decoder = _DECODERS.get(version) if isinstance(version, int) else None
    if decoder is None:
        if version is not None:
            logger.warning("Unrecognized record version %r, attempting best-effort load", version)
        else:
            logger.info("Loading untagged legacy record; it will be upgraded on next save")
        decoder = _decode_untagged
    try:
        return decoder(record)
    except CorruptedRecordError:
        raise
    except (TypeError, ValueError, AttributeError, OverflowError) as exc:
        raise CorruptedRecordError(f"Failed to decode record: {exc}") from exc
