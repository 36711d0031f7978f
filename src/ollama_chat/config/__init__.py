"""Configuration management for ollama-chat.

Hierarchical YAML configuration:
- Built-in defaults
- System-level config (/etc/ollama_chat/)
- User-level config (~/.config/ollama_chat/) or an explicit ``-f`` file
- Environment variable overrides (highest priority)

Example usage:
    from ollama_chat.config import load_config

    config = load_config()
    print(config.model.name)
"""

from ollama_chat.config.loader import dump_config, load_config
from ollama_chat.config.paths import (
    get_config_paths,
    get_runtime_dir,
    get_system_config_path,
    get_user_config_path,
)
from ollama_chat.config.schema import (
    DOCUMENT_POLICIES,
    THINK_MODES,
    Config,
    EmbeddingConfig,
    LoggingConfig,
    ModelConfig,
)
from ollama_chat.config.secrets import clear_secret_cache, fetch_secret

__all__ = [
    # Main API
    "Config",
    "load_config",
    "dump_config",
    # Schema types
    "EmbeddingConfig",
    "LoggingConfig",
    "ModelConfig",
    "DOCUMENT_POLICIES",
    "THINK_MODES",
    # Secret management
    "fetch_secret",
    "clear_secret_cache",
    # Path utilities
    "get_config_paths",
    "get_runtime_dir",
    "get_system_config_path",
    "get_user_config_path",
]
