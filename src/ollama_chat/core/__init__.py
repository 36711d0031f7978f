"""Core runtime modules."""

from ollama_chat.core.client import THINK_VALUES, OllamaClient
from ollama_chat.core.messages import (
    ChatResponse,
    Message,
    Role,
    ToolCall,
    ToolFunction,
    encode_image,
    encode_image_bytes,
)
from ollama_chat.core.switches import CombinedSwitch, StateSelector, Switch, Switches, Toggle

__all__ = [
    # Client
    "OllamaClient",
    "THINK_VALUES",
    # Messages
    "ChatResponse",
    "Message",
    "Role",
    "ToolCall",
    "ToolFunction",
    "encode_image",
    "encode_image_bytes",
    # Switches
    "CombinedSwitch",
    "StateSelector",
    "Switch",
    "Switches",
    "Toggle",
]
