"""YAML configuration loader.

Sources, lowest priority first:
  1. Built-in defaults
  2. User-level ~/.chatbridge/settings.yaml
  3. Project-level .chatbridge/settings.yaml
  4. Environment variables (CHATBRIDGE_* prefix)

Settings are at most one section deep (``gemini``, ``stream``, ``vision``
plus top-level flags), so files are merged section by section.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any, Callable

import yaml
from pydantic import ValidationError

from chatbridge.config.settings import Settings

if TYPE_CHECKING:
    from pathlib import Path

CONFIG_DIR_NAME = ".chatbridge"
SETTINGS_FILE_NAME = "settings.yaml"


def _flag(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


# env var -> (section or None for top level, field, converter)
_ENV_OVERRIDES: dict[str, tuple[str | None, str, Callable[[str], Any]]] = {
    "CHATBRIDGE_MODEL": ("gemini", "model", str),
    "CHATBRIDGE_GENERATE_CONTENT_URL": ("gemini", "generate_content_url", str),
    "CHATBRIDGE_TEMPERATURE": ("gemini", "temperature", float),
    "CHATBRIDGE_NO_DATA_TIMEOUT": ("stream", "no_data_timeout_sec", float),
    "CHATBRIDGE_POLL_INTERVAL_MS": ("stream", "poll_interval_ms", int),
    "CHATBRIDGE_USE_FUNCTIONS": ("stream", "use_functions", _flag),
    "CHATBRIDGE_VISION": ("vision", "enabled", _flag),
    "CHATBRIDGE_DEBUG": (None, "debug", _flag),
}


def _read_settings_file(config_dir: Path) -> dict[str, Any]:
    """Return the mapping in *config_dir*/settings.yaml, or ``{}`` if absent."""
    path = config_dir / SETTINGS_FILE_NAME
    if not path.is_file():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected mapping in {path}, got {type(data).__name__}")
    return data


def _merge_into(target: dict[str, Any], layer: dict[str, Any]) -> None:
    for key, value in layer.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            target[key] = {**current, **value}
        else:
            target[key] = value


def _env_layer() -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for env_var, (section, field, convert) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_var)
        if raw is None:
            continue
        try:
            value = convert(raw)
        except ValueError as e:
            raise ValueError(f"Invalid value for {env_var}: {raw!r}") from e
        if section is None:
            layer[field] = value
        else:
            layer.setdefault(section, {})[field] = value
    return layer


async def load_settings(
    project_dir: Path | None = None,
    user_dir: Path | None = None,
) -> Settings:
    """Build :class:`Settings` from the user file, project file and environment.

    Raises
    ------
    ValueError
        On unreadable YAML, a non-mapping file, an unconvertible environment
        value, or settings that fail validation.
    """
    merged: dict[str, Any] = {}
    for base in (user_dir, project_dir):
        if base is not None:
            _merge_into(merged, _read_settings_file(base / CONFIG_DIR_NAME))
    _merge_into(merged, _env_layer())

    try:
        return Settings.model_validate(merged)
    except ValidationError as e:
        raise ValueError(f"Invalid settings: {e}") from e
