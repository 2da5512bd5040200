from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Sequence

from .dictionary import DictionarySource, TranslationEntry
from .language import LanguagePair
from .tokens import Token, normalize_word, unique_word_keys

__all__ = [
    "DEFAULT_BACKGROUND_BATCH_TOKENS",
    "DEFAULT_PROGRESS_INTERVAL",
    "ResolutionReport",
    "load_source",
    "lookup_entry",
    "resolve_dictionary",
    "resolve_dictionary_async",
    "resolve_remaining",
    "update_entry",
]

logger = logging.getLogger(__name__)

DEFAULT_PROGRESS_INTERVAL = 100
DEFAULT_ASYNC_BATCH_KEYS = 2000
DEFAULT_BACKGROUND_BATCH_TOKENS = 5000

ProgressCallback = Callable[[int], None]


@dataclass
class ResolutionReport:
    batches_applied: int = 0
    batches_failed: int = 0
    keys_resolved: int = 0
    cancelled: bool = False


class _ProgressReporter:
    """Reports whole percentages of unique keys processed, never going backwards."""

    def __init__(self, total: int, callback: ProgressCallback | None, interval: int) -> None:
        self.total = total
        self.callback = callback
        self.interval = max(1, interval)
        self.last = -1

    def advance(self, done: int) -> None:
        if self.callback is None:
            return
        if done < self.total and done % self.interval != 0:
            return
        if self.total == 0:
            value = 100
        else:
            value = (done * 100) // self.total
        if value <= self.last:
            return
        self.last = value
        self.callback(value)

    def finish(self) -> None:
        if self.callback is not None and self.last < 100:
            self.last = 100
            self.callback(100)


def load_source(source: DictionarySource | None, pair: LanguagePair) -> DictionarySource | None:
    """Load ``pair`` into ``source``; a failure degrades to no source at all."""
    if source is None:
        return None
    try:
        source.load(pair)
    except Exception as exc:
        logger.warning(
            "Dictionary %s unavailable, every word will be unknown: %s", pair.key, exc
        )
        return None
    return source


def lookup_entry(source: DictionarySource | None, key: str) -> TranslationEntry:
    if source is None:
        return TranslationEntry.unknown()
    try:
        entry = source.lookup(key)
    except Exception as exc:
        logger.debug("Dictionary lookup failed for %r: %s", key, exc)
        return TranslationEntry.unknown()
    return entry if entry is not None else TranslationEntry.unknown()


def _resolve_keys(
    keys: Sequence[str],
    source: DictionarySource | None,
    dictionary: dict[str, TranslationEntry],
    reporter: _ProgressReporter,
    offset: int,
) -> int:
    misses = 0
    for idx, key in enumerate(keys, start=offset + 1):
        entry = lookup_entry(source, key)
        if entry.is_unknown:
            misses += 1
        dictionary[key] = entry
        reporter.advance(idx)
    return misses


def resolve_dictionary(
    tokens: Sequence[Token],
    source: DictionarySource | None,
    *,
    pair: LanguagePair | None = None,
    on_progress: ProgressCallback | None = None,
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
) -> dict[str, TranslationEntry]:
    """
    Build the translation dictionary for ``tokens``.

    Words are lowercased and deduplicated before any lookup, so the source is
    queried once per unique key. Misses are stored as the unknown entry. When
    ``pair`` is given the source is loaded first; if that fails every key
    resolves to unknown instead of raising.
    """
    if pair is not None:
        source = load_source(source, pair)
    keys = unique_word_keys(tokens)
    reporter = _ProgressReporter(len(keys), on_progress, progress_interval)
    dictionary: dict[str, TranslationEntry] = {}
    misses = _resolve_keys(keys, source, dictionary, reporter, 0)
    reporter.finish()
    logger.info(
        "Resolved %d unique words (%d occurrences): %d found, %d unknown",
        len(keys),
        sum(1 for token in tokens if token.is_word),
        len(keys) - misses,
        misses,
    )
    return dictionary


async def resolve_dictionary_async(
    tokens: Sequence[Token],
    source: DictionarySource | None,
    *,
    pair: LanguagePair | None = None,
    on_progress: ProgressCallback | None = None,
    batch_size: int = DEFAULT_ASYNC_BATCH_KEYS,
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
) -> dict[str, TranslationEntry]:
    """Same result as :func:`resolve_dictionary`, yielding to the loop between key batches."""
    if pair is not None:
        source = load_source(source, pair)
    keys = unique_word_keys(tokens)
    reporter = _ProgressReporter(len(keys), on_progress, progress_interval)
    dictionary: dict[str, TranslationEntry] = {}
    step = max(1, batch_size)
    for offset in range(0, len(keys), step):
        _resolve_keys(keys[offset : offset + step], source, dictionary, reporter, offset)
        await asyncio.sleep(0)
    reporter.finish()
    return dictionary


def update_entry(
    dictionary: dict[str, TranslationEntry],
    word: str,
    entry: TranslationEntry,
) -> None:
    """Replace the entry of a single word; every other key stays as it is."""
    dictionary[normalize_word(word)] = entry


async def resolve_remaining(
    tokens: Sequence[Token],
    dictionary: dict[str, TranslationEntry],
    source: DictionarySource | None,
    *,
    start_index: int = 0,
    batch_size: int = DEFAULT_BACKGROUND_BATCH_TOKENS,
    should_apply: Callable[[], bool] = lambda: True,
) -> ResolutionReport:
    """
    Resolve words that have no entry yet, one token range at a time.

    Each batch owns the disjoint range ``[start, start + batch_size)`` and
    batches are applied strictly in index order. Only keys still missing from
    ``dictionary`` are written, so a batch never overwrites an earlier result.
    A failing batch is logged and skipped. ``should_apply`` is checked before
    every batch is applied; once it returns False the remaining work is
    discarded.
    """
    report = ResolutionReport()
    step = max(1, batch_size)
    for start in range(max(0, start_index), len(tokens), step):
        end = min(len(tokens), start + step)
        try:
            keys = [
                key for key in unique_word_keys(tokens, start, end) if key not in dictionary
            ]
            resolved: dict[str, TranslationEntry] = {}
            for key in keys:
                entry = source.lookup(key) if source is not None else None
                resolved[key] = entry if entry is not None else TranslationEntry.unknown()
        except Exception as exc:
            report.batches_failed += 1
            logger.warning("Resolution batch for tokens %d-%d failed: %s", start, end, exc)
            await asyncio.sleep(0)
            continue
        await asyncio.sleep(0)
        if not should_apply():
            report.cancelled = True
            logger.debug("Discarding resolution batch %d-%d for inactive document", start, end)
            return report
        for key, entry in resolved.items():
            dictionary.setdefault(key, entry)
        report.batches_applied += 1
        report.keys_resolved += len(resolved)
    return report
