from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable

from .dictionary import DictionarySource
from .document import DisplayMode, Document, utcnow
from .pagination import DEFAULT_STYLE, LayoutMetrics, PaginationStyle, Paginator
from .resolver import (
    DEFAULT_BACKGROUND_BATCH_TOKENS,
    ResolutionReport,
    load_source,
    resolve_remaining,
)
from .tokens import Token

__all__ = [
    "DEFAULT_DEBOUNCE_SECONDS",
    "HighlightedRange",
    "ReadingPositionState",
    "ReadingSession",
    "SessionRegistry",
    "SingleSlotTask",
]

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 1.0

PersistCallback = Callable[[Document], Awaitable[None]]


class SingleSlotTask:
    """
    A debounced task with room for exactly one pending call.

    ``schedule`` replaces whatever is pending and restarts the quiet period;
    ``flush`` cancels the timer and runs the pending call right away.
    """

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self._handle: asyncio.TimerHandle | None = None
        self._fn: Callable[[], Awaitable[None]] | None = None
        self._running: set[asyncio.Future] = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self, fn: Callable[[], Awaitable[None]], delay: float | None = None) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._fn = fn
        self._handle = loop.call_later(self.delay if delay is None else delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._fn = None

    def _fire(self) -> None:
        fn = self._fn
        self._handle = None
        self._fn = None
        if fn is None:
            return
        future = asyncio.ensure_future(fn())
        self._running.add(future)
        future.add_done_callback(self._running.discard)

    async def flush(self) -> bool:
        fn = self._fn
        self.cancel()
        # a call that already fired must finish before the newer one starts
        await self.wait_idle()
        if fn is None:
            return False
        await fn()
        return True

    async def wait_idle(self) -> None:
        if self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)


@dataclass(frozen=True, slots=True)
class ReadingPositionState:
    current_token_index: int
    pending_flush_scheduled: bool


@dataclass(frozen=True, slots=True)
class HighlightedRange:
    """Selected tokens as a half-open range; rendering it is up to the presentation layer."""

    start: int
    end: int

    def contains(self, token_index: int) -> bool:
        return self.start <= token_index < self.end


class ReadingSession:
    """
    Tracks the live reading position of one open document.

    Scroll mode anchors on the first fully visible token, Page mode on the
    first token of the current page. Anchor updates are written through a
    single debounced slot; switching modes and tearing the session down flush
    immediately. The session is the only writer of
    ``Document.last_read_token_index`` and reads it once, in :meth:`start`.
    """

    def __init__(
        self,
        document: Document,
        persist: PersistCallback,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        layout: LayoutMetrics | None = None,
        style: PaginationStyle = DEFAULT_STYLE,
    ) -> None:
        self.document = document
        self._persist = persist
        self._flush_slot = SingleSlotTask(debounce_seconds)
        self._write_lock = asyncio.Lock()
        self._style = style
        self._layout = layout
        self._paginator = self._build_paginator()
        self._mode = document.display_mode
        self._anchor = 0
        self._current_page = 1
        self._highlight: HighlightedRange | None = None
        self._active = False
        self._closed = False
        self._background: asyncio.Task[ResolutionReport] | None = None

    # -- state -----------------------------------------------------------

    @property
    def mode(self) -> DisplayMode:
        return self._mode

    @property
    def anchor(self) -> int:
        return self._anchor

    @property
    def active(self) -> bool:
        return self._active

    @property
    def current_page(self) -> int:
        return self._current_page

    @property
    def paginator(self) -> Paginator:
        return self._paginator

    @property
    def layout(self) -> LayoutMetrics | None:
        return self._layout

    @property
    def highlight(self) -> HighlightedRange | None:
        return self._highlight

    @property
    def state(self) -> ReadingPositionState:
        return ReadingPositionState(
            current_token_index=self._anchor,
            pending_flush_scheduled=self._flush_slot.pending,
        )

    def page_tokens(self) -> list[Token]:
        start, end = self._paginator.page_range(self._current_page)
        return self.document.tokens[start:end]

    def _clamp_index(self, token_index: int) -> int:
        if not self.document.tokens:
            return 0
        return max(0, min(token_index, len(self.document.tokens) - 1))

    def _build_paginator(self) -> Paginator:
        if self._layout is None:
            return Paginator([0], len(self.document.tokens))
        return Paginator.for_layout(self.document.tokens, self._layout, self._style)

    # -- lifecycle -------------------------------------------------------

    async def start(self) -> int:
        """Restore the last saved position; returns the token index to show."""
        if self._active or self._closed:
            return self._anchor
        self._anchor = self._clamp_index(self.document.last_read_token_index)
        self._current_page = self._paginator.page_for_token(self._anchor)
        self.document.last_opened_at = utcnow()
        self._active = True
        logger.debug(
            "Session for %s restored to token %d in %s mode",
            self.document.id,
            self._anchor,
            self._mode.value,
        )
        return self._anchor

    async def teardown(self) -> None:
        """Stop background work and write the last anchor if a write is still pending."""
        if self._closed:
            return
        self._closed = True
        self._active = False
        if self._background is not None and not self._background.done():
            self._background.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._background
        if self._flush_slot.pending:
            await self._flush_slot.flush()
        await self._flush_slot.wait_idle()

    # -- persistence -----------------------------------------------------

    async def _write(self) -> None:
        # writes never overlap, so the newest anchor is always stored last
        async with self._write_lock:
            self.document.last_read_token_index = self._anchor
            try:
                await self._persist(self.document)
            except Exception as exc:
                logger.warning("Failed to persist document %s: %s", self.document.id, exc)

    def _schedule_write(self) -> None:
        self._flush_slot.schedule(self._write)

    def request_save(self) -> None:
        """Schedule a debounced write, e.g. after a dictionary entry changed."""
        if self._active:
            self._schedule_write()

    async def flush(self) -> None:
        self._flush_slot.cancel()
        await self._write()

    def _set_anchor(self, token_index: int) -> None:
        self._anchor = self._clamp_index(token_index)
        self._schedule_write()

    # -- scroll mode -----------------------------------------------------

    def update_scroll_anchor(self, token_index: int) -> bool:
        # events from the other mode can still arrive right after a switch
        if not self._active or self._mode is not DisplayMode.SCROLL:
            return False
        self._set_anchor(token_index)
        return True

    # -- page mode -------------------------------------------------------

    def go_to_page(self, page: int) -> int:
        if not self._active or self._mode is not DisplayMode.PAGE:
            return self._current_page
        self._current_page = self._paginator.clamp(page)
        self._set_anchor(self._paginator.page_start(self._current_page))
        return self._current_page

    def next_page(self) -> int:
        return self.go_to_page(self._paginator.next_page(self._current_page))

    def previous_page(self) -> int:
        return self.go_to_page(self._paginator.previous_page(self._current_page))

    def go_to_token(self, token_index: int) -> int:
        if self._mode is DisplayMode.PAGE:
            return self.go_to_page(self._paginator.page_for_token(token_index))
        self.update_scroll_anchor(token_index)
        return self._paginator.page_for_token(self._anchor)

    # -- mode and layout -------------------------------------------------

    async def switch_mode(self, mode: DisplayMode | str) -> int:
        """
        Flush the current anchor immediately, then change mode.

        Returns the token index the new mode should bring into view. The
        anchor is kept as is, so switching back and forth does not drift.
        """
        mode = DisplayMode(mode)
        if mode is self._mode or not self._active:
            return self._anchor
        previous = self._mode
        self.document.display_mode = mode
        await self.flush()
        self._mode = mode
        if mode is DisplayMode.PAGE:
            self._current_page = self._paginator.page_for_token(self._anchor)
        logger.debug(
            "Mode switch %s -> %s at token %d", previous.value, mode.value, self._anchor
        )
        return self._anchor

    def set_layout(self, layout: LayoutMetrics) -> int:
        """Recompute page breaks for new viewport metrics; returns the page holding the anchor."""
        self._layout = layout
        self._paginator = self._build_paginator()
        self._current_page = self._paginator.page_for_token(self._anchor)
        return self._current_page

    def set_font_size(self, font_size_px: int) -> None:
        self.document.font_size_px = font_size_px
        if self._layout is not None:
            font = replace(self._layout.font, font_size_px=font_size_px)
            self.set_layout(replace(self._layout, font=font))
        self.request_save()

    # -- selection -------------------------------------------------------

    def select_token(self, token_index: int) -> HighlightedRange:
        index = self._clamp_index(token_index)
        self._highlight = HighlightedRange(index, index + 1)
        return self._highlight

    def select_range(self, start: int, end: int) -> HighlightedRange:
        low, high = sorted((self._clamp_index(start), self._clamp_index(end)))
        self._highlight = HighlightedRange(low, high + 1)
        return self._highlight

    def clear_selection(self) -> None:
        self._highlight = None

    # -- background resolution ------------------------------------------

    def start_background_resolution(
        self,
        source: DictionarySource | None,
        *,
        start_index: int = 0,
        batch_size: int = DEFAULT_BACKGROUND_BATCH_TOKENS,
    ) -> asyncio.Task[ResolutionReport]:
        """
        Resolve the words still missing from the dictionary in the background.

        Results are only applied while this session is active; once it is
        torn down, batches still in flight are discarded.
        """
        if self._background is not None and not self._background.done():
            return self._background
        document = self.document

        async def run() -> ResolutionReport:
            loaded = load_source(source, document.language_pair)
            await asyncio.sleep(0)
            report = await resolve_remaining(
                document.tokens,
                document.dictionary,
                loaded,
                start_index=start_index,
                batch_size=batch_size,
                should_apply=lambda: self._active,
            )
            logger.info(
                "Background resolution for %s: %d batches applied, %d failed, %d words%s",
                document.id,
                report.batches_applied,
                report.batches_failed,
                report.keys_resolved,
                " (cancelled)" if report.cancelled else "",
            )
            if report.batches_applied and self._active:
                self.request_save()
            return report

        self._background = asyncio.create_task(run())
        return self._background


class SessionRegistry:
    """Holds the single active reading session; opening another document closes the previous one."""

    def __init__(self) -> None:
        self._active: ReadingSession | None = None

    @property
    def active(self) -> ReadingSession | None:
        return self._active

    def get(self, doc_id: str) -> ReadingSession | None:
        if self._active is not None and self._active.document.id == doc_id:
            return self._active
        return None

    async def open(
        self,
        document: Document,
        persist: PersistCallback,
        **options: object,
    ) -> ReadingSession:
        await self.close()
        session = ReadingSession(document, persist, **options)  # type: ignore[arg-type]
        await session.start()
        self._active = session
        return session

    async def close(self, doc_id: str | None = None) -> bool:
        session = self._active
        if session is None:
            return False
        if doc_id is not None and session.document.id != doc_id:
            return False
        self._active = None
        await session.teardown()
        return True
