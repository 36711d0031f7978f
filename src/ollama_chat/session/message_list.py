"""Ordered conversation history.

At most one system message is kept and it always sits at the head. The
location/time decoration of the system prompt is applied only to the
snapshot sent to the server, never to the stored messages.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import TypeAdapter, ValidationError

from ollama_chat.core.messages import Message, Role
from ollama_chat.errors import (
    ConversationFileError,
    FileExistsConflictError,
    FileMissingError,
    InvalidConversationError,
)
from ollama_chat.logging import get_logger
from ollama_chat.session.render import message_renderable

if TYPE_CHECKING:
    from rich.console import Console

    from ollama_chat.config.schema import Config
    from ollama_chat.core.switches import Switches

log = get_logger("messages")

_conversation = TypeAdapter(list[Message])


def location_text(config: Config) -> str:
    """The location prompt filled with the configured place and current time."""
    location = config.location
    return config.prompts.location.format(
        location_name=location.name,
        location_decimal_degrees=", ".join(str(d) for d in location.decimal_degrees),
        localtime=datetime.now().astimezone().isoformat(timespec="seconds"),
        units=location.units,
    )


class MessageList:
    """Messages of one chat session.

    Mutations hold an internal lock; the list may be read from the socket
    side while the main loop appends to it.
    """

    def __init__(self, config: Config, switches: Switches) -> None:
        self.config = config
        self.switches = switches
        self._messages: list[Message] = []
        self._lock = threading.RLock()
        self.system: str | None = None

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]

    @property
    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def pop_unanswered(self) -> Message | None:
        """Remove and return a trailing user message that got no answer."""
        with self._lock:
            if self._messages and self._messages[-1].role == Role.USER:
                return self._messages.pop()
        return None

    def append(self, message: Message) -> MessageList:
        with self._lock:
            self._messages.append(message)
        return self

    def set_system_prompt(self, text: str | None) -> MessageList:
        """Replace the whole conversation by a single system message.

        An empty ``text`` leaves the conversation empty and without system prompt.
        """
        with self._lock:
            self._messages.clear()
            self.system = text or None
            if self.system:
                self._messages.append(Message(role=Role.SYSTEM, content=self.system))
        return self

    def clear(self) -> MessageList:
        """Remove everything but the system message."""
        with self._lock:
            self._messages = [m for m in self._messages if m.role == Role.SYSTEM]
        return self

    def drop(self, n: int = 1) -> int:
        """Remove the last ``n`` exchanges and return how many went.

        A trailing user message without an answer counts as one exchange.
        Conversations with fewer than two non-system messages are left alone.
        """
        n = max(n, 1)
        with self._lock:
            indices = [i for i, m in enumerate(self._messages) if m.role != Role.SYSTEM]
            if len(indices) < 2:
                return 0
            dropped = 0
            if self._messages[indices[-1]].role == Role.USER:
                del self._messages[indices.pop()]
                dropped = 1
            while dropped < n and len(indices) >= 2:
                del self._messages[indices.pop()]
                del self._messages[indices.pop()]
                dropped += 1
            return dropped

    def at_location(self) -> str:
        """Location text when location is switched on, otherwise ''."""
        if not self.switches.location.is_on():
            return ""
        return location_text(self.config)

    def to_snapshot(self) -> list[Message]:
        """Messages to send, with the system prompt decorated by location."""
        location = self.at_location()
        with self._lock:
            messages = list(self._messages)
        if not location:
            return messages

        result = []
        decorated = False
        for message in messages:
            if message.role == Role.SYSTEM and not decorated:
                result.append(
                    message.model_copy(update={"content": f"{message.content}\n\n{location}"})
                )
                decorated = True
            else:
                result.append(message)
        if not decorated:
            prompt = self.config.system_prompts.get("assistant")
            content = "\n\n".join(p for p in (prompt, location) if p)
            result.insert(0, Message(role=Role.SYSTEM, content=content))
        return result

    def last_user_content(self) -> str | None:
        for message in reversed(self._messages):
            if message.role == Role.USER:
                return message.content
        return None

    def last_assistant_content(self) -> str | None:
        for message in reversed(self._messages):
            if message.role == Role.ASSISTANT:
                return message.content
        return None

    def list(self, console: Console, last_n: int | None = None) -> None:
        """Print the last ``last_n`` messages (all by default)."""
        messages = self._messages
        if last_n is not None:
            messages = messages[-last_n:] if last_n > 0 else []
        self._print(console, messages)

    def show_last(self, console: Console, n: int = 1) -> None:
        """Print the last ``n`` messages that were not written by the user."""
        messages = [m for m in self._messages if m.role != Role.USER]
        if n > 0:
            self._print(console, messages[-n:])

    def _print(self, console: Console, messages: list[Message]) -> None:
        markdown = self.switches.markdown.is_on()
        show_thinking = self.switches.think_loud.is_on()
        for message in messages:
            console.print(message_renderable(message, markdown, show_thinking))

    def save(self, path: str | Path, overwrite: bool = False) -> Path:
        """Write the conversation as a JSON array.

        Raises:
            FileExistsConflictError: ``path`` exists and ``overwrite`` is false
            ConversationFileError: the file could not be written
        """
        path = Path(path).expanduser()
        if path.exists() and not overwrite:
            raise FileExistsConflictError(str(path))
        temp_path = path.with_name(path.name + ".tmp")
        with self._lock:
            data = _conversation.dump_json(self._messages, indent=2, exclude_none=True)

        # Atomic write
        try:
            temp_path.write_bytes(data)
            os.replace(temp_path, path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise ConversationFileError(str(path), f"Failed to save conversation: {e}") from e
        log.debug("Saved %d messages to %s", len(self._messages), path)
        return path

    def load(self, path: str | Path) -> MessageList:
        """Replace the conversation by the one stored in ``path``.

        Nothing changes unless the whole file parses.

        Raises:
            FileMissingError: ``path`` does not exist
            InvalidConversationError: the file is not a valid message list
        """
        path = Path(path).expanduser()
        if not path.exists():
            raise FileMissingError(str(path))
        try:
            messages = _conversation.validate_json(path.read_bytes())
        except ValidationError as e:
            raise InvalidConversationError(
                str(path), f"File {str(path)!r} is not a valid conversation: {e.error_count()} errors"
            ) from e
        except OSError as e:
            raise ConversationFileError(str(path), f"Cannot read {str(path)!r}: {e}") from e

        with self._lock:
            self._messages = messages
            system = next((m for m in messages if m.role == Role.SYSTEM), None)
            self.system = system.content if system else None
        log.debug("Loaded %d messages from %s", len(messages), path)
        return self
