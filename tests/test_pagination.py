from __future__ import annotations

import pytest

from wordshift.pagination import (
    FontMetrics,
    LayoutMetrics,
    PaginationStyle,
    Paginator,
    compute_breaks,
    estimate_chars_per_line,
    estimate_lines_per_page,
)
from wordshift.tokens import tokenize

FONT = FontMetrics(font_size_px=18)


def _sample_text(paragraphs: int = 40) -> str:
    sentence = "The quick brown fox jumps over the lazy dog. It was not amused! Why?"
    return "\n\n".join(" ".join([sentence] * 3) for _ in range(paragraphs))


def _assert_valid_breaks(breaks: list[int], token_count: int) -> None:
    assert breaks[0] == 0
    assert all(a < b for a, b in zip(breaks, breaks[1:]))
    assert breaks[-1] < max(1, token_count)


def test_empty_tokens_single_page() -> None:
    assert compute_breaks([], 800, 600, FONT) == [0]


def test_short_document_fits_one_page() -> None:
    tokens = tokenize("Hi there, you.")[:4]
    assert len(tokens) == 4
    assert compute_breaks(tokens, 100_000, 100_000, FONT) == [0]


@pytest.mark.parametrize(
    "height,width,font_size",
    [
        (600, 400, 16),
        (900, 1200, 18),
        (300, 320, 24),
        (120, 200, 30),
    ],
)
def test_breaks_are_structurally_valid(height: float, width: float, font_size: float) -> None:
    tokens = tokenize(_sample_text())
    breaks = compute_breaks(tokens, height, width, FontMetrics(font_size_px=font_size))
    _assert_valid_breaks(breaks, len(tokens))
    assert len(breaks) > 1


def test_breaks_are_deterministic() -> None:
    tokens = tokenize(_sample_text())
    first = compute_breaks(tokens, 700, 500, FONT)
    second = compute_breaks(tokens, 700, 500, FONT)
    assert first == second


def test_smaller_viewport_means_more_pages() -> None:
    tokens = tokenize(_sample_text())
    large = compute_breaks(tokens, 1400, 900, FONT)
    small = compute_breaks(tokens, 500, 400, FONT)
    assert len(small) > len(large)


def test_break_prefers_sentence_or_paragraph_end() -> None:
    tokens = tokenize(_sample_text())
    breaks = compute_breaks(tokens, 600, 400, FONT)
    for start in breaks[1:]:
        previous = tokens[start - 1]
        assert "\n" in previous.value or previous.value[-1] in ".!?"


def test_tiny_viewport_still_progresses() -> None:
    tokens = tokenize("word " * 200)
    breaks = compute_breaks(tokens, 1, 1, FONT)
    _assert_valid_breaks(breaks, len(tokens))


def test_run_without_terminals_breaks_after_overflow_token() -> None:
    # 30 chars per line and one line per page; "word " pairs fill a line after 12 tokens
    tokens = tokenize("word " * 200)
    breaks = compute_breaks(tokens, 1, 1, FONT)
    assert breaks[:3] == [0, 13, 26]
    assert tokens[12].value == "word"
    assert tokens[25].value == " "


def test_estimates_are_clamped() -> None:
    style = PaginationStyle()
    assert estimate_chars_per_line(10, FONT, style) == style.min_chars_per_line
    assert estimate_chars_per_line(100_000, FONT, style) == style.max_chars_per_line
    assert estimate_lines_per_page(1, FONT, style) == 1


def test_style_is_validated() -> None:
    with pytest.raises(ValueError):
        PaginationStyle(safety_margin_lines=0)
    with pytest.raises(ValueError):
        PaginationStyle(min_chars_per_line=50, max_chars_per_line=40)


def test_paginator_lookups() -> None:
    paginator = Paginator([0, 10, 25], token_count=40)
    assert paginator.total_pages == 3
    assert paginator.page_range(1) == (0, 10)
    assert paginator.page_range(3) == (25, 40)
    assert paginator.page_for_token(0) == 1
    assert paginator.page_for_token(9) == 1
    assert paginator.page_for_token(10) == 2
    assert paginator.page_for_token(39) == 3
    assert paginator.page_for_token(500) == 3
    assert paginator.clamp(0) == 1
    assert paginator.clamp(9) == 3
    assert paginator.next_page(3) == 3
    assert paginator.previous_page(1) == 1


def test_paginator_for_layout_matches_compute_breaks() -> None:
    tokens = tokenize(_sample_text(10))
    layout = LayoutMetrics(viewport_height_px=500, viewport_width_px=400, font=FONT)
    paginator = Paginator.for_layout(tokens, layout)
    assert paginator.breaks == compute_breaks(tokens, 500, 400, FONT)
    covered = sum(end - start for start, end in (paginator.page_range(p) for p in range(1, paginator.total_pages + 1)))
    assert covered == len(tokens)
