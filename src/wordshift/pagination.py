from __future__ import annotations

import math
from bisect import bisect_right
from dataclasses import dataclass
from typing import Sequence

from .tokens import Token, TokenKind

__all__ = [
    "DEFAULT_STYLE",
    "FontMetrics",
    "LayoutMetrics",
    "PaginationStyle",
    "Paginator",
    "REFINEMENT_WINDOW",
    "compute_breaks",
    "estimate_chars_per_line",
    "estimate_lines_per_page",
]

REFINEMENT_WINDOW = 20
_SENTENCE_TERMINALS = frozenset(".!?。！？")


@dataclass(frozen=True, slots=True)
class PaginationStyle:
    """
    Tunable constants of the line-wrapping estimate.

    Glyph widths differ between scripts, so these are configuration rather
    than fixed values.
    """

    char_width_ratio: float = 0.55
    min_chars_per_line: int = 30
    max_chars_per_line: int = 75
    line_height_ratio: float = 1.75
    horizontal_padding_px: float = 48.0
    vertical_padding_px: float = 48.0
    safety_margin_lines: int = 1

    def __post_init__(self) -> None:
        if self.char_width_ratio <= 0:
            raise ValueError("char_width_ratio must be positive")
        if self.min_chars_per_line < 1:
            raise ValueError("min_chars_per_line must be at least 1")
        if self.max_chars_per_line < self.min_chars_per_line:
            raise ValueError("max_chars_per_line must not be below min_chars_per_line")
        if self.safety_margin_lines < 1:
            raise ValueError("safety_margin_lines must reserve at least one line")


DEFAULT_STYLE = PaginationStyle()


@dataclass(frozen=True, slots=True)
class FontMetrics:
    font_size_px: float
    line_height_px: float | None = None

    def effective_line_height(self, style: PaginationStyle = DEFAULT_STYLE) -> float:
        if self.line_height_px is not None and self.line_height_px > 0:
            return self.line_height_px
        return max(1.0, self.font_size_px * style.line_height_ratio)


@dataclass(frozen=True, slots=True)
class LayoutMetrics:
    viewport_height_px: float
    viewport_width_px: float
    font: FontMetrics


def estimate_chars_per_line(
    viewport_width_px: float,
    font: FontMetrics,
    style: PaginationStyle = DEFAULT_STYLE,
) -> int:
    avg_char_width = max(0.1, font.font_size_px * style.char_width_ratio)
    available = max(0.0, viewport_width_px - style.horizontal_padding_px)
    estimate = math.floor(available / avg_char_width)
    return max(style.min_chars_per_line, min(style.max_chars_per_line, estimate))


def estimate_lines_per_page(
    viewport_height_px: float,
    font: FontMetrics,
    style: PaginationStyle = DEFAULT_STYLE,
) -> int:
    available = max(0.0, viewport_height_px - style.vertical_padding_px)
    lines = math.floor(available / font.effective_line_height(style))
    return max(1, lines - style.safety_margin_lines)


def _is_break_candidate(token: Token) -> bool:
    if token.kind is TokenKind.WHITESPACE:
        return "\n" in token.value
    if token.kind is TokenKind.PUNCTUATION:
        return any(ch in _SENTENCE_TERMINALS for ch in token.value)
    return False


def _refine_break(tokens: Sequence[Token], overflow_index: int, floor_index: int) -> int:
    """Prefer breaking right after a newline or sentence end close to the overflow."""
    lowest = max(floor_index, overflow_index - REFINEMENT_WINDOW)
    for idx in range(overflow_index, lowest - 1, -1):
        if _is_break_candidate(tokens[idx]):
            return idx + 1
    return overflow_index + 1


class _LineCounter:
    def __init__(self, chars_per_line: int) -> None:
        self.chars_per_line = chars_per_line
        self.lines_used = 0
        self.line_length = 0

    def reset(self) -> None:
        self.lines_used = 0
        self.line_length = 0

    def add(self, token: Token) -> None:
        newlines = token.newline_count
        if newlines:
            self.lines_used += newlines
            self.line_length = 0
            return
        length = len(token.value)
        if self.line_length + length > self.chars_per_line:
            self.lines_used += 1
            self.line_length = length
        else:
            self.line_length += length


def compute_breaks(
    tokens: Sequence[Token],
    viewport_height_px: float,
    viewport_width_px: float,
    font_metrics: FontMetrics,
    style: PaginationStyle = DEFAULT_STYLE,
) -> list[int]:
    """
    Partition ``tokens`` into pages and return the index of each page's first token.

    Lines are estimated from an average glyph width, so the result only
    approximates what a renderer would draw. The function is pure: the same
    arguments always produce the same table, which is why callers recompute
    it on every resize, font change or token change instead of caching.
    """
    if not tokens:
        return [0]
    chars_per_line = estimate_chars_per_line(viewport_width_px, font_metrics, style)
    lines_per_page = estimate_lines_per_page(viewport_height_px, font_metrics, style)
    counter = _LineCounter(chars_per_line)
    breaks = [0]
    total = len(tokens)
    for idx, token in enumerate(tokens):
        counter.add(token)
        if counter.lines_used < lines_per_page:
            continue
        break_index = _refine_break(tokens, idx, breaks[-1] + 1)
        if break_index >= total:
            break
        breaks.append(break_index)
        counter.reset()
        # tokens pushed onto the new page by refinement still take up room there
        for carried in tokens[break_index : idx + 1]:
            counter.add(carried)
    return breaks


class Paginator:
    """Page lookups over a break table; page numbers are 1-based and clamped."""

    def __init__(self, breaks: Sequence[int], token_count: int) -> None:
        self.breaks = list(breaks) or [0]
        self.token_count = token_count

    @classmethod
    def for_layout(
        cls,
        tokens: Sequence[Token],
        layout: LayoutMetrics,
        style: PaginationStyle = DEFAULT_STYLE,
    ) -> "Paginator":
        breaks = compute_breaks(
            tokens,
            layout.viewport_height_px,
            layout.viewport_width_px,
            layout.font,
            style,
        )
        return cls(breaks, len(tokens))

    @property
    def total_pages(self) -> int:
        return max(1, len(self.breaks))

    def clamp(self, page: int) -> int:
        return max(1, min(page, self.total_pages))

    def page_range(self, page: int) -> tuple[int, int]:
        page = self.clamp(page)
        start = self.breaks[page - 1]
        end = self.breaks[page] if page < len(self.breaks) else self.token_count
        return start, end

    def page_start(self, page: int) -> int:
        return self.page_range(page)[0]

    def page_for_token(self, token_index: int) -> int:
        return self.clamp(bisect_right(self.breaks, max(0, token_index)))

    def next_page(self, page: int) -> int:
        return self.clamp(page + 1)

    def previous_page(self, page: int) -> int:
        return self.clamp(page - 1)
