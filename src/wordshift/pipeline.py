from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

from .dictionary import DictionarySource
from .document import DisplayMode, Document, new_document_id, utcnow
from .extract import IngestionError, UnsupportedFormatError, extract_text
from .language import LanguagePair, detect_language_from_sample
from .resolver import load_source, resolve_dictionary_async
from .tokens import tokenize

__all__ = [
    "DEFAULT_INITIAL_BATCH_TOKENS",
    "IngestionError",
    "ProcessingMode",
    "ProcessingState",
    "ProcessingStatus",
    "UnsupportedFormatError",
    "ingest_file",
    "ingest_text",
]

logger = logging.getLogger(__name__)

DEFAULT_INITIAL_BATCH_TOKENS = 2000

# translation progress is reported inside this slice of the overall bar
_TRANSLATION_PROGRESS_START = 15
_TRANSLATION_PROGRESS_SPAN = 80


class ProcessingMode(str, Enum):
    FULL = "full"
    DYNAMIC = "dynamic"


class ProcessingStatus(str, Enum):
    PARSING = "parsing"
    DETECTING = "detecting"
    TOKENIZING = "tokenizing"
    TRANSLATING = "translating"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ProcessingState:
    status: ProcessingStatus
    progress: int
    current_step: str
    error: str | None = None


StateCallback = Callable[[ProcessingState], None]


def _emit(
    on_state: StateCallback | None,
    status: ProcessingStatus,
    progress: int,
    step: str,
    error: str | None = None,
) -> None:
    if on_state is not None:
        on_state(ProcessingState(status=status, progress=progress, current_step=step, error=error))


def _overall_progress(translation_progress: int) -> int:
    return _TRANSLATION_PROGRESS_START + round(translation_progress * _TRANSLATION_PROGRESS_SPAN / 100)


async def _build_document(
    text: str,
    *,
    title: str,
    target_language: str,
    source_language: str | None,
    source: DictionarySource | None,
    mode: ProcessingMode,
    initial_batch_tokens: int,
    on_state: StateCallback | None,
) -> Document:
    if not text.strip():
        raise IngestionError("Document contains no readable text.")

    if source_language is None:
        _emit(on_state, ProcessingStatus.DETECTING, 5, "Detecting language...")
        source_language = detect_language_from_sample(text)
        logger.info("Detected source language: %s", source_language)
    pair = LanguagePair(source=source_language, target=target_language)

    _emit(on_state, ProcessingStatus.TOKENIZING, 10, "Tokenizing text...")
    tokens = tokenize(text)

    _emit(on_state, ProcessingStatus.TRANSLATING, _TRANSLATION_PROGRESS_START, "Translating words...")

    def report(progress: int) -> None:
        _emit(
            on_state,
            ProcessingStatus.TRANSLATING,
            _overall_progress(progress),
            f"Translating... {progress}%",
        )

    loaded = load_source(source, pair)
    if mode is ProcessingMode.DYNAMIC:
        resolved_span = tokens[: max(0, initial_batch_tokens)]
    else:
        resolved_span = tokens
    dictionary = await resolve_dictionary_async(resolved_span, loaded, on_progress=report)

    now = utcnow()
    document = Document(
        id=new_document_id(),
        title=title,
        source_language=pair.source,
        target_language=pair.target,
        tokens=tokens,
        dictionary=dictionary,
        created_at=now,
        last_opened_at=now,
        display_mode=DisplayMode.SCROLL,
    )
    logger.info(
        "Ingested %r: %d tokens, %d unique words (%d resolved, mode=%s)",
        title,
        len(tokens),
        document.unique_word_count,
        len(dictionary),
        mode.value,
    )
    return document


async def ingest_text(
    text: str,
    *,
    title: str,
    target_language: str,
    source_language: str | None = None,
    source: DictionarySource | None = None,
    mode: ProcessingMode | str = ProcessingMode.FULL,
    initial_batch_tokens: int = DEFAULT_INITIAL_BATCH_TOKENS,
    on_state: StateCallback | None = None,
) -> Document:
    """
    Turn raw text into a Document.

    The source language is detected from the text when not given. In FULL
    mode every unique word is resolved before returning; in DYNAMIC mode only
    the words of the first ``initial_batch_tokens`` tokens are, and the rest
    is left for a reading session's background resolution. Either a complete
    Document is returned or :class:`IngestionError` is raised.
    """
    mode = ProcessingMode(mode)
    try:
        document = await _build_document(
            text,
            title=title,
            target_language=target_language,
            source_language=source_language,
            source=source,
            mode=mode,
            initial_batch_tokens=initial_batch_tokens,
            on_state=on_state,
        )
    except IngestionError as exc:
        _emit(on_state, ProcessingStatus.ERROR, 0, "Processing failed", str(exc))
        raise
    _emit(on_state, ProcessingStatus.COMPLETE, 100, "Complete!")
    return document


async def ingest_file(
    path: Path,
    *,
    target_language: str,
    title: str | None = None,
    source_language: str | None = None,
    source: DictionarySource | None = None,
    mode: ProcessingMode | str = ProcessingMode.FULL,
    initial_batch_tokens: int = DEFAULT_INITIAL_BATCH_TOKENS,
    on_state: StateCallback | None = None,
) -> Document:
    """Extract the text of ``path`` and ingest it; the title defaults to the book title or file stem."""
    _emit(on_state, ProcessingStatus.PARSING, 0, "Reading file...")
    try:
        extracted = extract_text(path)
    except IngestionError as exc:
        _emit(on_state, ProcessingStatus.ERROR, 0, "Processing failed", str(exc))
        raise
    return await ingest_text(
        extracted.text,
        title=title or extracted.title or path.stem,
        target_language=target_language,
        source_language=source_language,
        source=source,
        mode=mode,
        initial_batch_tokens=initial_batch_tokens,
        on_state=on_state,
    )
