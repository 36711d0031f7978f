"""Configuration schema dataclasses for ollama-chat.

Defines the typed structure of the merged configuration. Every field has a
default so that partial YAML files can be merged on top of the built-in
defaults (see ``loader.DEFAULTS``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DOCUMENT_POLICIES = ("embedding", "ignoring", "importing", "summarizing")
THINK_MODES = ("enabled", "disabled", "low", "medium", "high")
SPLITTERS = ("Character", "RecursiveCharacter", "Semantic")
SEARCH_ENGINES = ("searxng", "duckduckgo")


@dataclass
class ModelConfig:
    """Chat model selection."""

    name: str = "llama3.1"
    options: dict[str, Any] = field(default_factory=dict)  # num_ctx, temperature, ...


@dataclass
class LocationConfig:
    """Location/time decoration of the system prompt."""

    enabled: bool = False
    name: str = "Berlin"
    decimal_degrees: list[float] = field(default_factory=lambda: [52.514127, 13.475211])
    units: str = "SI (International System of Units)"


@dataclass
class PromptsConfig:
    """Prompt templates, filled with str.format style placeholders."""

    embed: str = "This source was now embedded: {source}"
    summarize: str = (
        "Generate an abstract summary of the content in this document using "
        "{words} words:\n\n{source_content}"
    )
    web: str = "Answer the the query {query} using these sources and summaries:\n\n{results}"
    location: str = (
        "You are at {location_name} ({location_decimal_degrees}), on {localtime}, "
        "preferring {units}"
    )
    imported: str = "Imported {source!r}:\n\n{source_content}\n\n"


@dataclass
class VoiceConfig:
    """Text-to-speech side channel."""

    enabled: bool = False
    default: str = "Samantha"
    list: list[str] = field(default_factory=list)
    command: list[str] = field(default_factory=lambda: ["say", "-v", "{voice}"])


@dataclass
class ThinkConfig:
    """Reasoning mode sent to the server and its visibility."""

    mode: str = "disabled"
    loud: bool = True


@dataclass
class SplitterConfig:
    """Chunking strategy for embedded documents."""

    name: str = "RecursiveCharacter"
    chunk_size: int = 1024
    chunk_overlap: int = 0
    breakpoint: str = "percentile"
    percentile: float = 95.0


@dataclass
class EmbeddingModelConfig:
    """Embedding model used by the retrieval store."""

    name: str = "mxbai-embed-large"
    options: dict[str, Any] = field(default_factory=dict)
    prompt: str | None = "Represent this sentence for searching relevant passages: {query}"


@dataclass
class EmbeddingConfig:
    """Retrieval store settings."""

    enabled: bool = True
    paused: bool = False
    model: EmbeddingModelConfig = field(default_factory=EmbeddingModelConfig)
    batch_size: int = 10
    collection: str = "default"
    database: str | None = None  # None: documents.db in the data dir, ":memory:" for none
    found_texts_size: int = 4096
    found_texts_count: int = 10
    splitter: SplitterConfig = field(default_factory=SplitterConfig)


@dataclass
class CacheConfig:
    """Response cache for fetched URLs. No url means an in-process cache."""

    url: str | None = None
    expire: int = 86400


@dataclass
class WebSearchConfig:
    """Web search engines."""

    use: str = "duckduckgo"
    engines: dict[str, str] = field(
        default_factory=lambda: {
            "searxng": "http://localhost:8088/search?q={query}&language=en&format=json",
            "duckduckgo": "https://www.duckduckgo.com/html/?q={query}",
        }
    )


@dataclass
class TimeoutsConfig:
    """HTTP timeouts in seconds."""

    connect: float = 10.0
    read: float = 300.0


@dataclass
class ToolsConfig:
    """Tool calling."""

    enabled: bool = True
    max_rounds: int = 5
    allowed: list[str] = field(default_factory=list)  # empty means all registered
    read_paths: list[str] = field(default_factory=lambda: ["."])  # read_file roots
    max_search_results: int = 10


@dataclass
class ServerSocketConfig:
    """Local IPC channel for ollama-chat-send."""

    runtime_dir: str | None = None  # default: $XDG_RUNTIME_DIR or ~/.local/run
    name: str = "ollama_chat.sock"


@dataclass
class HistoryConfig:
    """Prompt input history."""

    file: str = "~/.ollama_chat_history"


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0..4, wins over level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object, passed explicitly to every component."""

    url: str = "http://localhost:11434"
    proxy: str | None = None
    model: ModelConfig = field(default_factory=ModelConfig)
    location: LocationConfig = field(default_factory=LocationConfig)
    prompts: PromptsConfig = field(default_factory=PromptsConfig)
    system_prompts: dict[str, str | None] = field(default_factory=lambda: {"default": None})
    voice: VoiceConfig = field(default_factory=VoiceConfig)
    markdown: bool = True
    stream: bool = True
    document_policy: str = "importing"
    think: ThinkConfig = field(default_factory=ThinkConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    web_search: WebSearchConfig = field(default_factory=WebSearchConfig)
    request_headers: dict[str, str] = field(default_factory=dict)
    ssl_no_verify: list[str] = field(default_factory=list)
    timeouts: TimeoutsConfig = field(default_factory=TimeoutsConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    server_socket: ServerSocketConfig = field(default_factory=ServerSocketConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    copy: str = "pbcopy"
    paste: str | None = None  # None: read pasted text at the prompt
    debug: bool = False
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Path of the user config file this was loaded from (for /config)
    source_path: str | None = None

    # Unknown top-level keys, kept for extensibility
    extra: dict[str, Any] = field(default_factory=dict)
