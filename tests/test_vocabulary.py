from __future__ import annotations

import asyncio
import json

import pytest

from wordshift.vocabulary import (
    JsonVocabularyStore,
    MemoryVocabularyStore,
    VocabularyEntry,
    VocabularyList,
    format_entries,
    format_entry,
)


def test_format_entry_skips_unknown_part_of_speech() -> None:
    noun = VocabularyEntry("Haus", "house", "de", "en", part_of_speech="noun")
    plain = VocabularyEntry("guten Tag", "good day", "de", "en")
    assert format_entry(noun) == "Haus (noun) : house"
    assert format_entry(plain) == "guten Tag : good day"
    assert format_entries([noun, plain]) == "Haus (noun) : house\nguten Tag : good day"


def test_save_word_is_unique_per_language_pair() -> None:
    vocabulary = VocabularyList(MemoryVocabularyStore())

    async def scenario() -> None:
        first = await vocabulary.save_word("Haus", "house", source_language="de", target_language="en")
        assert first is not None
        assert first.is_phrase is False
        assert await vocabulary.save_word("haus", "home", source_language="de", target_language="en") is None
        other_pair = await vocabulary.save_word("Haus", "дом", source_language="de", target_language="ru")
        assert other_pair is not None
        phrase = await vocabulary.save_word(
            " guten Tag ", "good day", source_language="de", target_language="en"
        )
        assert phrase is not None and phrase.is_phrase and phrase.original == "guten Tag"
        assert await vocabulary.exists("HAUS", "de", "en")
        assert not await vocabulary.exists("Haus", "en", "de")
        with pytest.raises(ValueError):
            await vocabulary.save_word("  ", "x", source_language="de", target_language="en")

    asyncio.run(scenario())


def test_list_filters_and_newest_first() -> None:
    vocabulary = VocabularyList(MemoryVocabularyStore())

    async def scenario() -> None:
        await vocabulary.save_word("eins", "one", source_language="de", target_language="en", text_id="a")
        await vocabulary.save_word("zwei", "two", source_language="de", target_language="en", text_id="b")
        await vocabulary.save_word("uno", "one", source_language="es", target_language="en", text_id="a")

        everything = await vocabulary.list_entries()
        assert [entry.original for entry in everything] == ["uno", "zwei", "eins"]
        german = await vocabulary.list_entries(source_language="de", target_language="en")
        assert [entry.original for entry in german] == ["zwei", "eins"]
        from_a = await vocabulary.list_entries(text_id="a")
        assert [entry.original for entry in from_a] == ["uno", "eins"]
        assert await vocabulary.text_ids() == ["a", "b"]

        target = german[0]
        assert await vocabulary.delete(target.id) is True
        assert await vocabulary.delete(target.id) is False
        assert len(await vocabulary.list_entries()) == 2
        await vocabulary.clear()
        assert await vocabulary.list_entries() == []

    asyncio.run(scenario())


def test_json_store_persists_entries(tmp_path) -> None:
    path = tmp_path / "vocab" / "vocabulary.json"

    async def scenario() -> list[VocabularyEntry]:
        await VocabularyList(JsonVocabularyStore(path)).save_word(
            "мир", "world", source_language="ru", target_language="en", part_of_speech="noun", text_title="Война"
        )
        return await VocabularyList(JsonVocabularyStore(path)).list_entries()

    entries = asyncio.run(scenario())
    assert [(e.original, e.translation, e.part_of_speech, e.text_title) for e in entries] == [
        ("мир", "world", "noun", "Война")
    ]
    assert json.loads(path.read_text(encoding="utf-8"))["entries"][0]["original"] == "мир"


def test_unreadable_vocabulary_file_starts_empty(tmp_path, caplog) -> None:
    path = tmp_path / "vocabulary.json"
    path.write_bytes(b"\xff\xfe not json")
    payload = {"entries": [{"id": "x", "original": ""}, "junk"]}
    other = tmp_path / "partial.json"
    other.write_text(json.dumps(payload), encoding="utf-8")

    async def scenario() -> tuple[list[VocabularyEntry], list[VocabularyEntry]]:
        return (
            await VocabularyList(JsonVocabularyStore(path)).list_entries(),
            await VocabularyList(JsonVocabularyStore(other)).list_entries(),
        )

    assert asyncio.run(scenario()) == ([], [])
    assert "unreadable" in caplog.text
