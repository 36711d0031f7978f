"""Configuration file loading.

Handles:
- YAML file parsing
- Environment variable overrides
- Conversion from dict to the typed Config dataclass
- Validation of selector-valued settings

There is no cached global: every call to ``load_config`` builds a fresh
Config which callers pass on explicitly.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path
from typing import Any

import yaml

from ollama_chat.config.merge import merge_configs
from ollama_chat.config.paths import get_config_paths
from ollama_chat.config.schema import (
    DOCUMENT_POLICIES,
    SPLITTERS,
    THINK_MODES,
    CacheConfig,
    Config,
    EmbeddingConfig,
    EmbeddingModelConfig,
    HistoryConfig,
    LocationConfig,
    LoggingConfig,
    ModelConfig,
    PromptsConfig,
    ServerSocketConfig,
    SplitterConfig,
    ThinkConfig,
    TimeoutsConfig,
    ToolsConfig,
    VoiceConfig,
    WebSearchConfig,
)
from ollama_chat.errors import ConfigError

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("ollama_chat.config")

DEFAULTS: dict[str, Any] = {
    "model": {"name": "llama3.1", "options": {"num_ctx": 8192}},
    "document_policy": "importing",
    "think": {"mode": "disabled", "loud": True},
}

_KNOWN_KEYS = {f.name for f in dataclasses.fields(Config)} - {"extra", "source_path"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning an empty dict if missing or unreadable."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def env_overrides() -> dict[str, Any]:
    """Build a config layer from environment variables.

    API keys are NOT read here, see ``fetch_secret``.
    """
    overrides: dict[str, Any] = {}

    url = os.environ.get("OLLAMA_URL")
    host = os.environ.get("OLLAMA_HOST")
    if url:
        overrides["url"] = url
    elif host:
        overrides["url"] = host if "://" in host else f"http://{host}"

    if model := os.environ.get("OLLAMA_CHAT_MODEL"):
        overrides["model"] = {"name": model}
    if system := os.environ.get("OLLAMA_CHAT_SYSTEM"):
        overrides["system_prompts"] = {"default": system}
    if collection := os.environ.get("OLLAMA_CHAT_COLLECTION"):
        overrides["embedding"] = {"collection": collection}
    if searxng := os.environ.get("OLLAMA_SEARXNG_URL"):
        overrides["web_search"] = {"engines": {"searxng": searxng}}
    if os.environ.get("OLLAMA_CHAT_DEBUG") == "1":
        overrides["debug"] = True
    if history := os.environ.get("OLLAMA_CHAT_HISTORY"):
        overrides["history"] = {"file": history}
    if log_path := os.environ.get("OLLAMA_CHAT_LOG"):
        overrides["logging"] = {"file": log_path}

    return overrides


def _section(cls: type, data: Any) -> Any:
    """Build a flat dataclass section, ignoring unknown keys."""
    if not isinstance(data, dict):
        return cls()
    names = {f.name for f in dataclasses.fields(cls)}
    unknown = set(data) - names
    if unknown:
        _log.debug("Ignoring unknown %s keys: %s", cls.__name__, sorted(unknown))
    return cls(**{k: v for k, v in data.items() if k in names and v is not None})


def _think(data: Any) -> ThinkConfig:
    if isinstance(data, bool):
        return ThinkConfig(mode="enabled" if data else "disabled")
    think = _section(ThinkConfig, data)
    if think.mode is True:
        think.mode = "enabled"
    elif think.mode is False:
        think.mode = "disabled"
    if think.mode not in THINK_MODES:
        raise ConfigError(
            f"Invalid think mode {think.mode!r}, expected one of {', '.join(THINK_MODES)}"
        )
    return think


def _embedding(data: dict[str, Any]) -> EmbeddingConfig:
    model_data = data.get("model")
    if isinstance(model_data, str):
        model_data = {"name": model_data}
    splitter = _section(SplitterConfig, data.get("splitter"))
    if splitter.name not in SPLITTERS:
        raise ConfigError(
            f"Invalid splitter {splitter.name!r}, expected one of {', '.join(SPLITTERS)}"
        )
    flat = {k: v for k, v in data.items() if k not in ("model", "splitter")}
    embedding = _section(EmbeddingConfig, flat)
    embedding.model = _section(EmbeddingModelConfig, model_data)
    embedding.splitter = splitter
    return embedding


def _web_search(data: dict[str, Any]) -> WebSearchConfig:
    web = WebSearchConfig()
    for name, engine in (data.get("engines") or {}).items():
        # Accept both ``searxng: URL`` and ``searxng: {url: URL}``
        if isinstance(engine, dict):
            engine = engine.get("url")
        if engine:
            web.engines[name] = engine
    web.use = data.get("use", web.use)
    if web.use not in web.engines:
        raise ConfigError(
            f"Unknown web search engine {web.use!r}, expected one of {', '.join(web.engines)}"
        )
    return web


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert a merged dict to the typed Config dataclass.

    Raises:
        ConfigError: A selector-valued setting has a value outside its set.
    """
    document_policy = data.get("document_policy", "importing")
    if document_policy not in DOCUMENT_POLICIES:
        raise ConfigError(
            f"Invalid document_policy {document_policy!r}, "
            f"expected one of {', '.join(DOCUMENT_POLICIES)}"
        )

    prompts_data = dict(data.get("prompts") or {})
    if "import" in prompts_data:
        prompts_data["imported"] = prompts_data.pop("import")

    system_prompts: dict[str, str | None] = {"default": None}
    system_prompts.update(data.get("system_prompts") or {})

    return Config(
        url=data.get("url", "http://localhost:11434").rstrip("/"),
        proxy=data.get("proxy"),
        model=_section(ModelConfig, data.get("model")),
        location=_section(LocationConfig, data.get("location")),
        prompts=_section(PromptsConfig, prompts_data),
        system_prompts=system_prompts,
        voice=_section(VoiceConfig, data.get("voice")),
        markdown=bool(data.get("markdown", True)),
        stream=bool(data.get("stream", True)),
        document_policy=document_policy,
        think=_think(data.get("think")),
        embedding=_embedding(data.get("embedding") or {}),
        cache=_section(CacheConfig, data.get("cache")),
        web_search=_web_search(data.get("web_search") or {}),
        request_headers=dict(data.get("request_headers") or {}),
        ssl_no_verify=list(data.get("ssl_no_verify") or []),
        timeouts=_section(TimeoutsConfig, data.get("timeouts")),
        tools=_section(ToolsConfig, data.get("tools")),
        server_socket=_section(ServerSocketConfig, data.get("server_socket")),
        history=_section(HistoryConfig, data.get("history")),
        copy=data.get("copy", "pbcopy"),
        paste=data.get("paste"),
        debug=bool(data.get("debug", False)),
        logging=_section(LoggingConfig, data.get("logging")),
        extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
    )


def load_config(config_file: str | None = None) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Explicit ``config_file`` (``-f``), else the user config
    3. System config (/etc/ollama_chat/config.yaml)
    4. Built-in defaults

    Raises:
        ConfigError: The explicit file does not exist or a value is invalid.
    """
    if config_file and not Path(config_file).expanduser().exists():
        raise ConfigError(f"Config file {config_file!r} doesn't exist.")

    layers: list[dict[str, Any]] = [DEFAULTS]
    source_path: str | None = None

    for path in get_config_paths(config_file):
        data = load_yaml_file(path)
        if data:
            _log.debug("Loaded config from %s", path)
            layers.append(data)
            source_path = str(path)

    env_config = env_overrides()
    if env_config:
        layers.append(env_config)

    config = dict_to_config(merge_configs(*layers))
    config.source_path = source_path
    return config


def dump_config(config: Config) -> str:
    """Render a Config as YAML (for ``/config``)."""
    data = dataclasses.asdict(config)
    data.pop("extra", None)
    data.pop("source_path", None)
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
