from __future__ import annotations

import asyncio
import zipfile

import pytest

from wordshift.dictionary import MappingDictionarySource, TranslationEntry
from wordshift.extract import UnsupportedFormatError, extract_text, html_to_text
from wordshift.language import LanguagePair, detect_language, detect_language_from_sample
from wordshift.pipeline import (
    IngestionError,
    ProcessingMode,
    ProcessingState,
    ProcessingStatus,
    ingest_file,
    ingest_text,
)


def test_full_ingestion_resolves_every_word() -> None:
    states: list[ProcessingState] = []
    source = MappingDictionarySource({"hello": TranslationEntry("привет", "interj")})
    document = asyncio.run(
        ingest_text(
            "Hello, world! Hello again.",
            title="Greeting",
            target_language="ru",
            source=source,
            on_state=states.append,
        )
    )
    assert document.source_language == "en"
    assert document.text == "Hello, world! Hello again."
    assert set(document.dictionary) == {"hello", "world", "again"}
    assert document.dictionary["world"].is_unknown
    assert document.pending_keys() == []
    assert source.loaded_pairs == [LanguagePair("en", "ru")]

    statuses = [state.status for state in states]
    assert statuses[0] is ProcessingStatus.DETECTING
    assert ProcessingStatus.TOKENIZING in statuses
    assert statuses[-1] is ProcessingStatus.COMPLETE
    progress = [state.progress for state in states]
    assert progress == sorted(progress)
    translating = [s.progress for s in states if s.status is ProcessingStatus.TRANSLATING]
    assert min(translating) == 15
    assert max(translating) == 95


def test_dynamic_ingestion_leaves_the_rest_pending() -> None:
    text = "alpha beta gamma delta epsilon zeta"
    document = asyncio.run(
        ingest_text(
            text,
            title="Dynamic",
            target_language="ru",
            source_language="en",
            source=MappingDictionarySource({}),
            mode="dynamic",
            initial_batch_tokens=3,
        )
    )
    assert set(document.dictionary) == {"alpha", "beta"}
    assert document.pending_keys() == ["gamma", "delta", "epsilon", "zeta"]


def test_empty_text_is_rejected() -> None:
    states: list[ProcessingState] = []
    with pytest.raises(IngestionError):
        asyncio.run(ingest_text("  \n\t ", title="Blank", target_language="en", on_state=states.append))
    assert states[-1].status is ProcessingStatus.ERROR
    assert states[-1].error


def test_missing_dictionary_still_produces_document(tmp_path) -> None:
    from wordshift.dictionary import JsonDictionarySource

    document = asyncio.run(
        ingest_text(
            "Привет мир",
            title="Ru",
            target_language="en",
            source=JsonDictionarySource(tmp_path),
            mode=ProcessingMode.FULL,
        )
    )
    assert document.source_language == "ru"
    assert all(entry.is_unknown for entry in document.dictionary.values())


def test_ingest_file_uses_file_stem_as_title(tmp_path) -> None:
    path = tmp_path / "short story.txt"
    path.write_text("Один день. Другой день.", encoding="utf-8")
    document = asyncio.run(ingest_file(path, target_language="en"))
    assert document.title == "short story"
    assert document.source_language == "ru"


def test_txt_encoding_fallback(tmp_path) -> None:
    path = tmp_path / "cp1251.txt"
    path.write_bytes("Война и мир".encode("cp1251"))
    assert extract_text(path).text == "Война и мир"

    bom = tmp_path / "utf16.txt"
    bom.write_bytes("안녕하세요".encode("utf-16"))
    assert extract_text(bom).text == "안녕하세요"


def test_unsupported_formats(tmp_path) -> None:
    path = tmp_path / "book.pdf"
    path.write_bytes(b"%PDF-1.4")
    with pytest.raises(UnsupportedFormatError):
        extract_text(path)
    with pytest.raises(IngestionError):
        asyncio.run(ingest_file(path, target_language="en"))


def _write_epub(path) -> None:
    container = (
        '<?xml version="1.0"?>'
        '<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">'
        '<rootfiles><rootfile full-path="OEBPS/content.opf" '
        'media-type="application/oebps-package+xml"/></rootfiles></container>'
    )
    opf = (
        '<?xml version="1.0"?>'
        '<package xmlns="http://www.idpf.org/2007/opf" version="3.0">'
        '<metadata xmlns:dc="http://purl.org/dc/elements/1.1/"><dc:title>Tiny Book</dc:title></metadata>'
        "<manifest>"
        '<item id="c2" href="ch2.xhtml" media-type="application/xhtml+xml"/>'
        '<item id="c1" href="ch1.xhtml" media-type="application/xhtml+xml"/>'
        "</manifest>"
        '<spine><itemref idref="c1"/><itemref idref="c2"/></spine>'
        "</package>"
    )
    chapter_one = "<html><body><h1>One</h1><p>First line.<br/>Second line.</p></body></html>"
    chapter_two = "<html><head><style>p{}</style></head><body><div><p>Two.</p></div></body></html>"
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("mimetype", "application/epub+zip")
        zf.writestr("META-INF/container.xml", container)
        zf.writestr("OEBPS/content.opf", opf)
        zf.writestr("OEBPS/ch1.xhtml", chapter_one)
        zf.writestr("OEBPS/ch2.xhtml", chapter_two)


def test_epub_extraction_follows_spine(tmp_path) -> None:
    path = tmp_path / "tiny.epub"
    _write_epub(path)
    extracted = extract_text(path)
    assert extracted.title == "Tiny Book"
    assert extracted.text == "One\nFirst line.\nSecond line.\n\nTwo."


def test_html_to_text_breaks_blocks() -> None:
    html = "<div><p>a</p><p>b</p></div><ul><li>x</li><li>y</li></ul><script>bad()</script>"
    assert html_to_text(html) == "a\nb\n\nx\ny"


@pytest.mark.parametrize(
    "text,expected",
    [
        ("Привет, как дела?", "ru"),
        ("안녕하세요 여러분", "ko"),
        ("Hello there", "en"),
        ("12345 !!!", "en"),
        ("Привет hello 안녕", "ru"),
    ],
)
def test_detect_language(text: str, expected: str) -> None:
    assert detect_language(text) == expected


def test_detection_uses_a_sample() -> None:
    text = "a" * 1000 + "я" * 5000
    assert detect_language_from_sample(text) == "en"
