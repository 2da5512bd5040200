from __future__ import annotations

import asyncio

from wordshift.dictionary import MappingDictionarySource
from wordshift.document import DisplayMode, Document
from wordshift.pagination import FontMetrics, LayoutMetrics
from wordshift.session import ReadingSession, SessionRegistry, SingleSlotTask
from wordshift.tokens import tokenize

DEBOUNCE = 0.02
SETTLE = 0.15
SMALL_LAYOUT = LayoutMetrics(viewport_height_px=300, viewport_width_px=320, font=FontMetrics(font_size_px=18))


def _document(doc_id: str = "doc-1", paragraphs: int = 30, **overrides) -> Document:
    text = "\n\n".join(
        "Once upon a time there was a reader. She read every day! Did she stop?"
        for _ in range(paragraphs)
    )
    fields = dict(
        id=doc_id,
        title="Story",
        source_language="en",
        target_language="ru",
        tokens=tokenize(text),
        dictionary={},
    )
    fields.update(overrides)
    return Document(**fields)


class _Recorder:
    def __init__(self) -> None:
        self.writes: list[tuple[str, int, DisplayMode]] = []

    async def __call__(self, document: Document) -> None:
        self.writes.append((document.id, document.last_read_token_index, document.display_mode))


def test_single_slot_task_keeps_only_latest() -> None:
    calls: list[str] = []

    def _make(label: str):
        async def _run() -> None:
            calls.append(label)

        return _run

    async def scenario() -> None:
        task = SingleSlotTask(DEBOUNCE)
        task.schedule(_make("first"))
        task.schedule(_make("second"))
        assert task.pending
        await asyncio.sleep(SETTLE)
        assert calls == ["second"]
        assert not task.pending

        task.schedule(_make("third"))
        assert await task.flush() is True
        assert calls == ["second", "third"]
        assert await task.flush() is False
        await asyncio.sleep(SETTLE)
        assert calls == ["second", "third"]

    asyncio.run(scenario())


def test_rapid_scroll_updates_coalesce_into_one_write() -> None:
    recorder = _Recorder()

    async def scenario() -> None:
        session = ReadingSession(_document(), recorder, debounce_seconds=DEBOUNCE)
        await session.start()
        for index in range(10, 20):
            assert session.update_scroll_anchor(index)
        assert recorder.writes == []
        assert session.state.pending_flush_scheduled
        await asyncio.sleep(SETTLE)
        assert recorder.writes == [("doc-1", 19, DisplayMode.SCROLL)]
        assert not session.state.pending_flush_scheduled
        await session.teardown()

    asyncio.run(scenario())
    assert len(recorder.writes) == 1


def test_teardown_flushes_pending_anchor() -> None:
    recorder = _Recorder()

    async def scenario() -> ReadingSession:
        session = ReadingSession(_document(), recorder, debounce_seconds=10)
        await session.start()
        session.update_scroll_anchor(42)
        await session.teardown()
        return session

    session = asyncio.run(scenario())
    assert recorder.writes == [("doc-1", 42, DisplayMode.SCROLL)]
    assert session.document.last_read_token_index == 42
    assert not session.active


def test_teardown_is_idempotent_and_ignores_late_updates() -> None:
    recorder = _Recorder()

    async def scenario() -> None:
        session = ReadingSession(_document(), recorder, debounce_seconds=DEBOUNCE)
        await session.start()
        session.update_scroll_anchor(5)
        await session.teardown()
        await session.teardown()
        assert session.update_scroll_anchor(7) is False
        await asyncio.sleep(SETTLE)

    asyncio.run(scenario())
    assert recorder.writes == [("doc-1", 5, DisplayMode.SCROLL)]


def test_start_restores_and_clamps_saved_position() -> None:
    document = _document(last_read_token_index=10_000)

    async def scenario() -> int:
        session = ReadingSession(document, _Recorder(), debounce_seconds=DEBOUNCE)
        return await session.start()

    restored = asyncio.run(scenario())
    assert restored == len(document.tokens) - 1


def test_mode_switch_writes_immediately() -> None:
    recorder = _Recorder()

    async def scenario() -> None:
        session = ReadingSession(
            _document(), recorder, debounce_seconds=10, layout=SMALL_LAYOUT
        )
        await session.start()
        session.update_scroll_anchor(120)
        restored = await session.switch_mode(DisplayMode.PAGE)
        assert restored == 120
        assert recorder.writes == [("doc-1", 120, DisplayMode.PAGE)]
        assert not session.state.pending_flush_scheduled
        assert session.mode is DisplayMode.PAGE
        start, end = session.paginator.page_range(session.current_page)
        assert start <= 120 < end
        # scroll events arriving after the switch are ignored
        assert session.update_scroll_anchor(3) is False
        assert session.anchor == 120
        await session.teardown()

    asyncio.run(scenario())
    assert len(recorder.writes) == 1


def test_page_navigation_anchors_on_page_start() -> None:
    recorder = _Recorder()
    document = _document(display_mode=DisplayMode.PAGE)

    async def scenario() -> None:
        session = ReadingSession(document, recorder, debounce_seconds=DEBOUNCE, layout=SMALL_LAYOUT)
        await session.start()
        assert session.paginator.total_pages > 2
        assert session.current_page == 1
        assert session.next_page() == 2
        assert session.anchor == session.paginator.page_start(2)
        assert session.go_to_page(10_000) == session.paginator.total_pages
        assert session.previous_page() == session.paginator.total_pages - 1
        page = session.go_to_token(0)
        assert page == 1 and session.anchor == 0
        assert session.page_tokens()[0].index == 0
        await asyncio.sleep(SETTLE)
        await session.teardown()

    asyncio.run(scenario())
    assert recorder.writes == [("doc-1", 0, DisplayMode.PAGE)]


def test_relayout_keeps_anchor_on_its_page() -> None:
    async def scenario() -> None:
        session = ReadingSession(
            _document(display_mode=DisplayMode.PAGE),
            _Recorder(),
            debounce_seconds=DEBOUNCE,
            layout=LayoutMetrics(1200, 1000, FontMetrics(16)),
        )
        await session.start()
        session.go_to_token(300)
        anchor = session.anchor
        page = session.set_layout(SMALL_LAYOUT)
        assert session.anchor == anchor
        start, end = session.paginator.page_range(page)
        assert start <= anchor < end
        session.set_font_size(24)
        assert session.document.font_size_px == 24
        start, end = session.paginator.page_range(session.current_page)
        assert start <= anchor < end
        await session.teardown()

    asyncio.run(scenario())


def test_persist_failure_is_logged_not_raised(caplog) -> None:
    async def failing(document: Document) -> None:
        raise RuntimeError("disk full")

    async def scenario() -> ReadingSession:
        session = ReadingSession(_document(), failing, debounce_seconds=10)
        await session.start()
        session.update_scroll_anchor(8)
        await session.switch_mode("page")
        await session.teardown()
        return session

    session = asyncio.run(scenario())
    assert session.anchor == 8
    assert "disk full" in caplog.text


def test_selection_is_a_value() -> None:
    async def scenario() -> None:
        session = ReadingSession(_document(), _Recorder(), debounce_seconds=DEBOUNCE)
        await session.start()
        selected = session.select_range(9, 4)
        assert (selected.start, selected.end) == (4, 10)
        assert selected.contains(4) and not selected.contains(10)
        assert session.select_token(3).end == 4
        session.clear_selection()
        assert session.highlight is None
        await session.teardown()

    asyncio.run(scenario())


def test_background_resolution_applies_while_active() -> None:
    recorder = _Recorder()
    document = _document(paragraphs=3)
    source = MappingDictionarySource({"reader": "читатель"})

    async def scenario() -> None:
        session = ReadingSession(document, recorder, debounce_seconds=DEBOUNCE)
        await session.start()
        report = await session.start_background_resolution(source, batch_size=7)
        assert report.batches_applied > 1
        assert not report.cancelled
        await asyncio.sleep(SETTLE)
        await session.teardown()

    asyncio.run(scenario())
    assert document.pending_keys() == []
    assert document.dictionary["reader"].translation == "читатель"
    assert len(recorder.writes) == 1


def test_background_results_discarded_after_teardown() -> None:
    recorder = _Recorder()
    document = _document(paragraphs=3)

    async def scenario() -> None:
        session = ReadingSession(document, recorder, debounce_seconds=DEBOUNCE)
        await session.start()
        task = session.start_background_resolution(MappingDictionarySource({}), batch_size=7)
        await session.teardown()
        assert task.done()
        await asyncio.sleep(SETTLE)

    asyncio.run(scenario())
    assert document.dictionary == {}
    assert recorder.writes == []


def test_registry_tears_down_previous_session() -> None:
    recorder = _Recorder()

    async def scenario() -> None:
        registry = SessionRegistry()
        first = await registry.open(_document("a"), recorder, debounce_seconds=10)
        first.update_scroll_anchor(11)
        second = await registry.open(_document("b"), recorder, debounce_seconds=10)
        assert not first.active
        assert registry.active is second
        assert registry.get("a") is None
        assert await registry.close("a") is False
        assert await registry.close("b") is True
        assert registry.active is None

    asyncio.run(scenario())
    assert recorder.writes == [("a", 11, DisplayMode.SCROLL)]


def test_teardown_write_lands_after_a_slow_debounced_write() -> None:
    stored: list[int] = []

    async def slow_persist(document: Document) -> None:
        index = document.last_read_token_index
        if index == 4:
            await asyncio.sleep(0.2)
        stored.append(index)

    async def scenario() -> None:
        session = ReadingSession(_document(), slow_persist, debounce_seconds=DEBOUNCE)
        await session.start()
        session.update_scroll_anchor(4)
        await asyncio.sleep(DEBOUNCE * 3)
        session.update_scroll_anchor(12)
        await session.teardown()

    asyncio.run(scenario())
    assert stored == [4, 12]


def test_mode_switch_after_teardown_does_not_write() -> None:
    recorder = _Recorder()

    async def scenario() -> ReadingSession:
        session = ReadingSession(_document(), recorder, debounce_seconds=DEBOUNCE)
        await session.start()
        await session.teardown()
        await session.switch_mode(DisplayMode.PAGE)
        return session

    session = asyncio.run(scenario())
    assert recorder.writes == []
    assert session.mode is DisplayMode.SCROLL


def test_font_size_change_keeps_explicit_line_height() -> None:
    async def scenario() -> ReadingSession:
        session = ReadingSession(
            _document(),
            _Recorder(),
            debounce_seconds=DEBOUNCE,
            layout=LayoutMetrics(600, 400, FontMetrics(16, line_height_px=40)),
        )
        await session.start()
        session.set_font_size(22)
        await session.teardown()
        return session

    session = asyncio.run(scenario())
    assert session.layout.font == FontMetrics(22, line_height_px=40)
