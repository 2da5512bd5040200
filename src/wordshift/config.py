from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping

from .pagination import DEFAULT_STYLE, PaginationStyle
from .pipeline import DEFAULT_INITIAL_BATCH_TOKENS
from .resolver import DEFAULT_BACKGROUND_BATCH_TOKENS
from .session import DEFAULT_DEBOUNCE_SECONDS
from .translation import GROQ_CHAT_URL, OPENAI_CHAT_URL

__all__ = [
    "CONFIG_ENV",
    "ENV_PREFIX",
    "ReaderSettings",
    "default_config_path",
    "load_settings",
]

logger = logging.getLogger(__name__)

ENV_PREFIX = "WORDSHIFT_"
CONFIG_ENV = "WORDSHIFT_CONFIG"
_DATA_DIR_ENV = "WORDSHIFT_DATA_DIR"


def _data_dir() -> Path:
    env_dir = os.environ.get(_DATA_DIR_ENV)
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / ".wordshift"


def default_config_path() -> Path:
    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return _data_dir() / "config.toml"


@dataclass
class ReaderSettings:
    store_root: Path = field(default_factory=lambda: _data_dir() / "documents")
    dictionary_dir: Path = field(default_factory=lambda: _data_dir() / "dictionaries")
    vocabulary_path: Path = field(default_factory=lambda: _data_dir() / "vocabulary.json")
    target_language: str = "en"
    processing_mode: str = "full"
    debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS
    initial_batch_tokens: int = DEFAULT_INITIAL_BATCH_TOKENS
    background_batch_tokens: int = DEFAULT_BACKGROUND_BATCH_TOKENS
    provider: str = "mock"
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.2"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_url: str = OPENAI_CHAT_URL
    groq_api_key: str | None = None
    groq_model: str = "llama-3.1-8b-instant"
    groq_url: str = GROQ_CHAT_URL
    request_timeout: float = 15.0
    pagination: PaginationStyle = DEFAULT_STYLE


_PATH_FIELDS = {"store_root", "dictionary_dir", "vocabulary_path"}
_SCALAR_FIELDS = {f.name: f for f in fields(ReaderSettings) if f.name != "pagination"}
_PAGINATION_FIELDS = {f.name: f for f in fields(PaginationStyle)}


def _coerce(name: str, value: object, default: object) -> object:
    if name in _PATH_FIELDS:
        return Path(str(value)).expanduser()
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)
    if isinstance(default, int):
        return int(value)  # type: ignore[arg-type]
    if isinstance(default, float):
        return float(value)  # type: ignore[arg-type]
    return None if value == "" else str(value)


def _apply_values(
    settings: ReaderSettings,
    values: Mapping[str, Any],
    origin: str,
) -> ReaderSettings:
    updates: dict[str, object] = {}
    for key, value in values.items():
        name = key.replace("-", "_").lower()
        if name == "pagination":
            continue
        if name not in _SCALAR_FIELDS:
            logger.warning("Ignoring unknown setting %r from %s", key, origin)
            continue
        default = getattr(settings, name)
        try:
            updates[name] = _coerce(name, value, default)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid value for {key!r} in {origin}: {value!r}") from exc
    return replace(settings, **updates)


def _apply_pagination(
    style: PaginationStyle,
    values: Mapping[str, Any],
    origin: str,
) -> PaginationStyle:
    updates: dict[str, object] = {}
    for key, value in values.items():
        name = key.replace("-", "_").lower()
        if name not in _PAGINATION_FIELDS:
            logger.warning("Ignoring unknown pagination setting %r from %s", key, origin)
            continue
        default = getattr(style, name)
        try:
            updates[name] = _coerce(name, value, default)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid value for pagination.{key} in {origin}: {value!r}") from exc
    return replace(style, **updates)


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as fh:
            return tomllib.load(fh)
    except FileNotFoundError:
        return {}
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Invalid config file {path}: {exc}") from exc


def load_settings(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> ReaderSettings:
    """
    Build settings from defaults, an optional TOML file and the environment.

    Later sources win: ``WORDSHIFT_<FIELD>`` variables override the file, and
    ``WORDSHIFT_PAGINATION_<FIELD>`` override its ``[pagination]`` table.
    """
    environ = os.environ if env is None else env
    config_path = path if path is not None else default_config_path()
    settings = ReaderSettings()

    data = _read_toml(config_path)
    if data:
        logger.debug("Loaded settings from %s", config_path)
        settings = _apply_values(settings, data, str(config_path))
        pagination = data.get("pagination")
        if isinstance(pagination, Mapping):
            settings = replace(
                settings,
                pagination=_apply_pagination(settings.pagination, pagination, str(config_path)),
            )

    env_values: dict[str, str] = {}
    env_pagination: dict[str, str] = {}
    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX) or key in {CONFIG_ENV, _DATA_DIR_ENV}:
            continue
        name = key[len(ENV_PREFIX) :].lower()
        if name.startswith("pagination_"):
            env_pagination[name[len("pagination_") :]] = value
        elif name in _SCALAR_FIELDS:
            env_values[name] = value
    if env_values:
        settings = _apply_values(settings, env_values, "environment")
    if env_pagination:
        settings = replace(
            settings,
            pagination=_apply_pagination(settings.pagination, env_pagination, "environment"),
        )
    return settings
