"""Deep merge for layering configuration dicts.

Built-in defaults, system file, user file, an explicit ``-f`` file and the
environment are merged in that order; later layers win.
"""

from __future__ import annotations

from typing import Any


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries.

    Rules:
    - Nested dicts are merged recursively
    - Lists are replaced as a whole
    - ``None`` in ``override`` leaves the base value alone
    - Anything else replaces the base value

    Neither argument is mutated.
    """
    result = dict(base)

    for key, value in override.items():
        if value is None:
            continue
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = value

    return result


def merge_configs(*configs: dict[str, Any]) -> dict[str, Any]:
    """Merge config layers in order, later ones overriding earlier ones."""
    result: dict[str, Any] = {}
    for layer in configs:
        if layer:
            result = deep_merge(result, layer)
    return result
