"""Conversation wire types.

These are pydantic models because they are exchanged with the inference
server and written to conversation files as JSON. Field names follow the
server's JSON so ``model_dump`` output can be posted as-is.
"""

from __future__ import annotations

import base64
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ChatModel(BaseModel):
    """Base model for wire types; unknown server fields are ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Role(str, Enum):
    """Message role in a conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolFunction(ChatModel):
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolCall(ChatModel):
    """A tool invocation requested by the assistant."""

    function: ToolFunction


class Message(ChatModel):
    """One conversation message.

    Assistant messages are mutated in place while a response streams in,
    so the model is not frozen.

    Attributes:
        role: system, user, assistant or tool
        content: The message text
        images: Base64 encoded images attached to the message
        thinking: Reasoning text, when the model emitted any
        tool_calls: Tool invocations requested by the assistant
        tool_name: For role=tool, the tool that produced the result
    """

    role: Role
    content: str = ""
    images: list[str] = Field(default_factory=list)
    thinking: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_name: str | None = None

    def to_wire(self) -> dict[str, Any]:
        """Dict for the chat request body, without empty optional fields."""
        return self.model_dump(mode="json", exclude_none=True)


def encode_image(path: str | Path) -> str:
    """Read an image file and return it base64 encoded."""
    return base64.b64encode(Path(path).expanduser().read_bytes()).decode("ascii")


def encode_image_bytes(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class ChatResponse(ChatModel):
    """One event of a chat response stream (or the whole non-streamed answer).

    Durations are in nanoseconds, as reported by the server on the final
    event (``done`` is true).
    """

    model: str | None = None
    created_at: str | None = None
    message: Message | None = None
    done: bool = False
    done_reason: str | None = None
    total_duration: int | None = None
    load_duration: int | None = None
    prompt_eval_count: int | None = None
    prompt_eval_duration: int | None = None
    eval_count: int | None = None
    eval_duration: int | None = None
