from __future__ import annotations

import asyncio
import os

import pytest

from wordshift import cli
from wordshift.vocabulary import JsonVocabularyStore, VocabularyList


@pytest.fixture(autouse=True)
def _isolated_data_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda **kwargs: None)
    for key in list(os.environ):
        if key.startswith("WORDSHIFT_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("WORDSHIFT_DATA_DIR", str(tmp_path / "data"))
    return tmp_path


def _ingest(tmp_path, capsys, text: str = "Hello there. General Kenobi!") -> str:
    path = tmp_path / "story.txt"
    path.write_text(text, encoding="utf-8")
    assert cli.main(["ingest", str(path), "--target", "ru"]) == 0
    out = capsys.readouterr().out
    first = out.splitlines()[0]
    assert first.startswith("Saved 'story' as ")
    return first.rsplit(" ", 1)[-1]


def test_no_arguments_prints_help(capsys) -> None:
    assert cli.main([]) == 0
    assert "usage: wordshift" in capsys.readouterr().out


def test_unknown_command_exits() -> None:
    with pytest.raises(SystemExit):
        cli.main(["frobnicate"])


def test_ingest_then_list(tmp_path, capsys) -> None:
    assert cli.main(["list"]) == 0
    assert "No documents saved yet." in capsys.readouterr().out

    doc_id = _ingest(tmp_path, capsys)
    assert (tmp_path / "data" / "documents" / f"{doc_id}.json").exists()

    assert cli.main(["ls", "--sort", "title"]) == 0
    out = capsys.readouterr().out
    assert doc_id in out
    assert "[en-ru]" in out
    assert "4 words" in out


def test_ingest_reports_counts(tmp_path, capsys) -> None:
    path = tmp_path / "story.txt"
    path.write_text("one two two", encoding="utf-8")
    assert cli.main(["ingest", str(path), "-t", "ru", "--title", "Numbers"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[0].startswith("Saved 'Numbers' as ")
    assert lines[1] == "en-ru: 3 words, 2 unique, 2 unknown, 0 pending"


def test_ingest_rejects_unsupported_files(tmp_path) -> None:
    path = tmp_path / "scan.pdf"
    path.write_bytes(b"%PDF-1.4")
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["ingest", str(path)])
    assert "pdf" in str(excinfo.value).lower()


def test_pages_prints_breaks_and_page_text(tmp_path, capsys) -> None:
    text = "\n".join(f"Line number {n} of a long story." for n in range(200))
    doc_id = _ingest(tmp_path, capsys, text)

    assert cli.main(["pages", doc_id, "--width", "320", "--height", "300"]) == 0
    out = capsys.readouterr().out.splitlines()
    assert out[0].startswith("story: ")
    total = int(out[0].split(": ")[1].split()[0])
    assert total > 1
    assert len(out) == total + 1
    assert out[1].split()[:2] == ["1", "tokens"]
    assert out[1].split()[2].startswith("0-")

    assert cli.main(["pages", doc_id, "--width", "320", "--height", "300", "--page", "1"]) == 0
    assert capsys.readouterr().out.startswith("Line number 0 of a long story.")


def test_delete_and_missing_documents(tmp_path, capsys) -> None:
    doc_id = _ingest(tmp_path, capsys)
    assert cli.main(["delete", doc_id]) == 0
    assert f"Deleted {doc_id}" in capsys.readouterr().out

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["rm", doc_id])
    assert str(excinfo.value) == f"Document not found: {doc_id}"

    with pytest.raises(SystemExit):
        cli.main(["pages", doc_id])


def test_invalid_config_exits(tmp_path) -> None:
    config = tmp_path / "bad.toml"
    config.write_text("debounce_seconds = [1]\n", encoding="utf-8")
    with pytest.raises(SystemExit):
        cli.main(["list", "--config", str(config)])


def test_vocab_prints_saved_entries(tmp_path, capsys) -> None:
    assert cli.main(["vocab"]) == 0
    assert "No saved words yet." in capsys.readouterr().out

    async def seed() -> None:
        vocabulary = VocabularyList(JsonVocabularyStore(tmp_path / "data" / "vocabulary.json"))
        await vocabulary.save_word(
            "Haus", "house", source_language="de", target_language="en", part_of_speech="noun"
        )
        await vocabulary.save_word("uno", "one", source_language="es", target_language="en")

    asyncio.run(seed())

    assert cli.main(["vocab", "--source", "de"]) == 0
    assert capsys.readouterr().out == "Haus (noun) : house\n"
