from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ingestor.core.config import Settings
from ingestor.schemas.candidates import ModerationConfig


class ConfigError(Exception):
    """Raised when a required configuration file is missing or malformed."""


def load_queries(path: str | Path) -> list[str]:
    decoded = _read_json(path)
    if isinstance(decoded, dict):
        decoded = decoded.get("queries")
    queries = _string_list(decoded, path=path)
    if not queries:
        raise ConfigError(f"{path}: at least one search query is required")
    return queries


def load_moderation_config(path: str | Path) -> ModerationConfig:
    decoded = _read_json(path)
    if not isinstance(decoded, dict):
        raise ConfigError(f"{path}: expected an object with banned phrase and URL lists")
    try:
        return ModerationConfig.model_validate(decoded)
    except ValidationError as exc:
        raise ConfigError(f"{path}: {exc}") from exc


def load_allow_list(path: str | Path) -> frozenset[str]:
    decoded = _read_json(path)
    if isinstance(decoded, dict):
        decoded = decoded.get("authors") or decoded.get("official_accounts")
    return frozenset(_string_list(decoded, path=path))


def resolve_allow_list(settings: Settings) -> frozenset[str] | None:
    """The author gate is off unless enabled in settings."""
    if not settings.allow_list_enabled:
        return None
    if not settings.allow_list_path:
        raise ConfigError("SI_ALLOW_LIST_PATH is required when SI_ALLOW_LIST_ENABLED is set")
    return load_allow_list(settings.allow_list_path)


def _read_json(path: str | Path) -> Any:
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read config file {path}") from exc
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{path}: invalid JSON ({exc.msg} at line {exc.lineno})") from exc


def _string_list(value: Any, *, path: str | Path) -> list[str]:
    if not isinstance(value, list):
        raise ConfigError(f"{path}: expected a list of strings")
    items: list[str] = []
    for entry in value:
        if not isinstance(entry, str):
            raise ConfigError(f"{path}: expected a list of strings")
        stripped = entry.strip()
        if stripped:
            items.append(stripped)
    return items
