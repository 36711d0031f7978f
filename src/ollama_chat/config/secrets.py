"""Secret lookup with dotenv support.

Secrets never live in the YAML config. They come from:
1. Environment variables (os.environ)
2. A ``.env.secrets`` file in the working directory (cached)
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import dotenv_values

SECRETS_FILE = ".env.secrets"


@lru_cache(maxsize=1)
def _load_secrets(secrets_path: Path | None = None) -> dict[str, str | None]:
    path = secrets_path or Path(SECRETS_FILE)
    if path.exists():
        return dotenv_values(path)
    return {}


def fetch_secret(
    key: str,
    default: str | None = None,
    secrets_path: Path | None = None,
) -> str | None:
    """Fetch a secret from the environment or ``.env.secrets``.

    The environment wins so tests can use ``monkeypatch.setenv``/``delenv``.

    Example:
        >>> fetch_secret("OLLAMA_API_KEY")
        'ollama-...'
    """
    value = os.environ.get(key)
    if value is not None:
        return value

    secrets = _load_secrets(secrets_path)
    if secrets.get(key) is not None:
        return secrets[key]

    return default


def clear_secret_cache() -> None:
    """Forget the cached ``.env.secrets`` contents."""
    _load_secrets.cache_clear()
