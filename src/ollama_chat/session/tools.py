"""Tools the model may call.

Every tool has a JSON schema description that is offered to the server and
an async executor receiving the parsed arguments. Executors return a JSON
string; failures are returned as ``{"error": ..., "message": ...}`` so the
model sees them instead of the turn aborting.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ollama_chat.core.messages import Message, Role, ToolCall
from ollama_chat.documents.parser import parse_content
from ollama_chat.errors import FetchError, OllamaChatError
from ollama_chat.logging import get_logger

if TYPE_CHECKING:
    from ollama_chat.config.schema import Config
    from ollama_chat.documents.fetcher import Fetcher
    from ollama_chat.documents.policy import DocumentPolicy
    from ollama_chat.documents.websearch import WebSearch

log = get_logger("tools")


@dataclass
class ToolContext:
    """What executors may use."""

    config: Config
    fetcher: Fetcher
    policy: DocumentPolicy
    websearch: WebSearch


Executor = Callable[[ToolContext, dict[str, Any]], Awaitable[Any]]


@dataclass
class Tool:
    name: str
    description: str
    execute: Executor
    properties: dict[str, dict[str, Any]] = field(default_factory=dict)
    required: list[str] = field(default_factory=list)

    def schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": self.properties,
                    "required": self.required,
                },
            },
        }


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> Tool:
        self._tools[tool.name] = tool
        return tool

    def names(self) -> list[str]:
        return sorted(self._tools)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def enabled(self, allowed: list[str] | None = None) -> list[Tool]:
        """Registered tools, restricted to ``allowed`` when it is not empty."""
        return [t for name, t in sorted(self._tools.items()) if not allowed or name in allowed]

    def schemas(self, allowed: list[str] | None = None) -> list[dict[str, Any]]:
        return [t.schema() for t in self.enabled(allowed)]

    async def call(self, tool_call: ToolCall, context: ToolContext) -> Message:
        """Run one requested tool and wrap its result as a tool message."""
        name = tool_call.function.name
        tool = self.get(name)
        allowed = context.config.tools.allowed
        if tool is None or (allowed and name not in allowed):
            result: Any = {"error": "UnknownTool", "message": f"No tool named {name!r}"}
        else:
            log.info("Calling tool %s(%s)", name, tool_call.function.arguments)
            try:
                result = await tool.execute(context, tool_call.function.arguments)
            except (OllamaChatError, OSError, ValueError, KeyError, TypeError) as e:
                log.warning("Tool %s failed: %s", name, e)
                result = {"error": type(e).__name__, "message": str(e)}
        content = result if isinstance(result, str) else json.dumps(result)
        return Message(role=Role.TOOL, content=content, tool_name=name)


async def get_current_time(context: ToolContext, args: dict[str, Any]) -> dict[str, Any]:
    return {"time": datetime.now().astimezone().isoformat()}


async def get_location(context: ToolContext, args: dict[str, Any]) -> dict[str, Any]:
    location = context.config.location
    return {
        "location_name": location.name,
        "location_decimal_degrees": location.decimal_degrees,
        "units": location.units,
    }


def resolve_allowed_path(path: str, roots: list[str]) -> Path:
    """``path`` made absolute, if it lies below one of ``roots``."""
    target = Path(path).expanduser().resolve()
    for root in roots:
        base = Path(root).expanduser().resolve()
        if target == base or base in target.parents:
            return target
    raise PermissionError(f"{str(target)!r} is outside of the allowed directories")


async def read_file(context: ToolContext, args: dict[str, Any]) -> Any:
    path = resolve_allowed_path(args["path"], context.config.tools.read_paths)
    content = context.fetcher.read(path)
    text = parse_content(content)
    if text is None:
        return {"error": "ParseError", "path": str(path), "message": f"Cannot read {content.content_type}"}
    return text


async def import_url(context: ToolContext, args: dict[str, Any]) -> Any:
    url = args["url"]
    text = await context.policy.import_source(url)
    if text is None:
        raise FetchError(url, "nothing could be imported")
    return text


async def search_web(context: ToolContext, args: dict[str, Any]) -> dict[str, Any]:
    query = args["query"]
    limit = context.config.tools.max_search_results
    n = min(int(args.get("num_results") or 5), limit)
    urls = await context.websearch.search(query, n)
    for url in urls:
        context.policy.links.add(url)
    return {"query": query, "url": urls}


def default_registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(
        Tool("get_current_time", "Get the current time as an ISO8601 string", get_current_time)
    )
    registry.register(
        Tool(
            "get_location",
            "Get the user's configured location, coordinates and preferred units",
            get_location,
        )
    )
    registry.register(
        Tool(
            "read_file",
            "Read a file's content (must be within the allowed directories)",
            read_file,
            properties={"path": {"type": "string", "description": "The path to the file to read"}},
            required=["path"],
        )
    )
    registry.register(
        Tool(
            "import_url",
            "Fetch a web page or document and return its content as text",
            import_url,
            properties={"url": {"type": "string", "description": "The URL to import"}},
            required=["url"],
        )
    )
    registry.register(
        Tool(
            "search_web",
            "Search the web for information using a search query",
            search_web,
            properties={
                "query": {"type": "string", "description": "The search query to use for web search"},
                "num_results": {
                    "type": "integer",
                    "description": "Number of results to return (default: 5)",
                },
            },
            required=["query"],
        )
    )
    return registry
