from __future__ import annotations

from pathlib import Path

import pytest

from wordshift.config import ReaderSettings, load_settings
from wordshift.pagination import DEFAULT_STYLE


def test_defaults_without_file(tmp_path) -> None:
    settings = load_settings(tmp_path / "missing.toml", env={})
    assert settings.provider == "mock"
    assert settings.pagination == DEFAULT_STYLE
    assert settings.debounce_seconds == ReaderSettings().debounce_seconds


def test_toml_file_and_pagination_table(tmp_path) -> None:
    config = tmp_path / "config.toml"
    config.write_text(
        "\n".join(
            [
                'store_root = "~/books"',
                'provider = "ollama"',
                "debounce_seconds = 0.5",
                "background_batch_tokens = 100",
                "",
                "[pagination]",
                "char_width_ratio = 0.6",
                "max_chars_per_line = 90",
            ]
        ),
        encoding="utf-8",
    )
    settings = load_settings(config, env={})
    assert settings.store_root == Path("~/books").expanduser()
    assert settings.provider == "ollama"
    assert settings.debounce_seconds == 0.5
    assert settings.background_batch_tokens == 100
    assert settings.pagination.char_width_ratio == 0.6
    assert settings.pagination.max_chars_per_line == 90
    assert settings.pagination.min_chars_per_line == DEFAULT_STYLE.min_chars_per_line


def test_environment_overrides_file(tmp_path) -> None:
    config = tmp_path / "config.toml"
    config.write_text('provider = "ollama"\n', encoding="utf-8")
    env = {
        "WORDSHIFT_PROVIDER": "groq",
        "WORDSHIFT_GROQ_API_KEY": "abc",
        "WORDSHIFT_INITIAL_BATCH_TOKENS": "50",
        "WORDSHIFT_PAGINATION_SAFETY_MARGIN_LINES": "2",
        "UNRELATED": "x",
    }
    settings = load_settings(config, env=env)
    assert settings.provider == "groq"
    assert settings.groq_api_key == "abc"
    assert settings.initial_batch_tokens == 50
    assert settings.pagination.safety_margin_lines == 2


def test_invalid_values_are_reported(tmp_path) -> None:
    config = tmp_path / "config.toml"
    config.write_text('debounce_seconds = "soon"\n', encoding="utf-8")
    with pytest.raises(ValueError):
        load_settings(config, env={})

    broken = tmp_path / "broken.toml"
    broken.write_text("provider = \n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_settings(broken, env={})


def test_invalid_pagination_style_is_rejected(tmp_path) -> None:
    config = tmp_path / "config.toml"
    config.write_text("[pagination]\nsafety_margin_lines = 0\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_settings(config, env={})
