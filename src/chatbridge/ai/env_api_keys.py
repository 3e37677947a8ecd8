from __future__ import annotations

import os

# Probed in order; the first non-empty value wins.
_GEMINI_KEY_VARS: tuple[str, ...] = ("GOOGLE_API_KEY", "GEMINI_API_KEY")


def get_env_api_key() -> str | None:
    """Return the first non-empty Gemini API key found in the environment.

    Returns ``None`` when no matching variable is set.
    """
    for var in _GEMINI_KEY_VARS:
        val = os.environ.get(var)
        if val:
            return val
    return None


def resolve_api_key(configured: str | None) -> str:
    """Prefer the configured key, then the environment.

    Raises
    ------
    ValueError
        If neither source provides a key.
    """
    api_key = configured or get_env_api_key()
    if not api_key:
        raise ValueError(
            "No Gemini API key: set gemini.api_key, GOOGLE_API_KEY or GEMINI_API_KEY",
        )
    return api_key
