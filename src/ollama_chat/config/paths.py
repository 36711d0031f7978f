"""Configuration and runtime path resolution.

- System: /etc/ollama_chat/config.yaml
- User: $XDG_CONFIG_HOME/ollama_chat/config.yaml or ~/.config/ollama_chat/config.yaml
- Runtime (socket): $XDG_RUNTIME_DIR or ~/.local/run
- Data (documents database): $XDG_DATA_HOME/ollama_chat or ~/.local/share/ollama_chat
"""

from __future__ import annotations

import os
from pathlib import Path

CONFIG_FILENAME = "config.yaml"
APP_NAME = "ollama_chat"


def get_system_config_path() -> Path:
    """Path of the system-wide config file (may not exist)."""
    return Path("/etc") / APP_NAME / CONFIG_FILENAME


def get_user_config_path() -> Path:
    """Path of the per-user config file (may not exist)."""
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config) / APP_NAME / CONFIG_FILENAME
    return Path.home() / ".config" / APP_NAME / CONFIG_FILENAME


def get_config_paths(config_file: str | None = None) -> list[Path]:
    """All config paths, lowest priority first.

    Args:
        config_file: Explicit file from ``-f``; it replaces the user file.
    """
    paths = [get_system_config_path()]
    if config_file:
        paths.append(Path(config_file).expanduser())
    else:
        paths.append(get_user_config_path())
    return paths


def get_runtime_dir(configured: str | None = None) -> Path:
    """Directory for the server socket."""
    if configured:
        return Path(configured).expanduser()
    xdg_runtime = os.environ.get("XDG_RUNTIME_DIR")
    if xdg_runtime:
        return Path(xdg_runtime)
    return Path.home() / ".local" / "run"


def get_data_dir() -> Path:
    """Directory for persistent data such as the documents database."""
    xdg_data = os.environ.get("XDG_DATA_HOME")
    if xdg_data:
        return Path(xdg_data) / APP_NAME
    return Path.home() / ".local" / "share" / APP_NAME
