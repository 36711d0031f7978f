"""Following a streamed chat response.

``FollowChat`` consumes the response events of one model call. The first
assistant event appends an empty assistant message; every later fragment is
appended to it. ``<think>``/``</think>`` segments in the content are moved
into the message's ``thinking`` field. When the final event arrives the
performance statistics are printed.

With markdown on, the message is re-rendered on every fragment with
``rich.live.Live``; only the last screenful of source lines is rendered
while streaming. With markdown off, fragments are printed as they come.
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import AsyncIterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.markdown import Markdown

from ollama_chat.core.messages import ChatResponse, Message, Role, ToolCall
from ollama_chat.logging import get_logger
from ollama_chat.session.render import eval_stats, role_header, talk_annotate, think_annotate

if TYPE_CHECKING:
    from ollama_chat.core.switches import Switches
    from ollama_chat.session.message_list import MessageList

log = get_logger("follow")

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"


class ThinkTagSplitter:
    """Splits a fragment stream into thinking and spoken parts.

    Tags may be cut across fragments; a trailing partial tag is held back
    until the next fragment decides it.
    """

    def __init__(self) -> None:
        self.in_thought = False
        self._pending = ""

    def feed(self, fragment: str) -> tuple[str, str]:
        """Return ``(thinking, content)`` produced by ``fragment``."""
        text = self._pending + fragment
        self._pending = ""
        thinking: list[str] = []
        content: list[str] = []
        while text:
            tag = THINK_CLOSE if self.in_thought else THINK_OPEN
            sink = thinking if self.in_thought else content
            index = text.find(tag)
            if index >= 0:
                sink.append(text[:index])
                text = text[index + len(tag):]
                self.in_thought = not self.in_thought
                continue
            keep = self._partial_tag_length(text, tag)
            sink.append(text[: len(text) - keep])
            self._pending = text[len(text) - keep:]
            break
        return "".join(thinking), "".join(content)

    def flush(self) -> tuple[str, str]:
        pending, self._pending = self._pending, ""
        return (pending, "") if self.in_thought else ("", pending)

    @staticmethod
    def _partial_tag_length(text: str, tag: str) -> int:
        for length in range(min(len(tag) - 1, len(text)), 0, -1):
            if text.endswith(tag[:length]):
                return length
        return 0


class VoiceSink:
    """Feeds fragments to a text-to-speech command's stdin.

    Any failure switches the sink off for the rest of the turn.
    """

    def __init__(self, command: list[str]) -> None:
        self.command = command
        self._process: asyncio.subprocess.Process | None = None
        self.failed = False

    async def start(self) -> None:
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            log.warning("Cannot start voice output %r: %s", self.command, e)
            self.failed = True

    def say(self, fragment: str) -> None:
        if self.failed or self._process is None or self._process.stdin is None:
            return
        try:
            self._process.stdin.write(fragment.encode())
        except (OSError, RuntimeError) as e:
            log.warning("Voice output failed, disabling it for this turn: %s", e)
            self.failed = True

    async def close(self) -> None:
        if self._process is None:
            return
        if self._process.stdin is not None:
            try:
                self._process.stdin.close()
                await self._process.stdin.wait_closed()
            except (OSError, RuntimeError) as e:
                log.debug("Voice stdin close failed: %s", e)
        await self._process.wait()
        self._process = None


class State(enum.Enum):
    AWAITING_FIRST_TOKEN = "awaiting"
    STREAMING = "streaming"
    DONE = "done"


@dataclass
class FollowResult:
    """Outcome of one model call."""

    message: Message | None = None
    final: ChatResponse | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)


class FollowChat:
    """Handles the response events of a single model call."""

    def __init__(
        self,
        messages: MessageList,
        switches: Switches,
        console: Console,
        voice: VoiceSink | None = None,
        debug: bool = False,
    ) -> None:
        self.messages = messages
        self.switches = switches
        self.console = console
        self.voice = voice
        self.debug = debug
        self.state = State.AWAITING_FIRST_TOKEN
        self.result = FollowResult()
        self._splitter = ThinkTagSplitter()
        self._live: Live | None = None

    @property
    def _markdown(self) -> bool:
        return self.switches.markdown.is_on()

    @property
    def _show_thinking(self) -> bool:
        return self.switches.think_loud.is_on()

    def _ensure_assistant_message(self) -> Message:
        if self.state is State.AWAITING_FIRST_TOKEN:
            message = Message(role=Role.ASSISTANT, content="")
            self.messages.append(message)
            self.result.message = message
            self.state = State.STREAMING
            if self._markdown:
                self._live = Live(
                    console=self.console,
                    auto_refresh=False,
                    vertical_overflow="visible",
                )
                self._live.start()
            else:
                self.console.print(role_header("assistant"))
        assert self.result.message is not None
        return self.result.message

    def handle(self, response: ChatResponse) -> None:
        """Apply one response event."""
        if self.debug:
            log.debug("response event: %s", response.model_dump_json(exclude_none=True))

        delta = response.message
        if delta is not None and delta.role == Role.ASSISTANT:
            message = self._ensure_assistant_message()
            thinking, content = self._splitter.feed(delta.content)
            if response.done:
                rest_thinking, rest_content = self._splitter.flush()
                thinking += rest_thinking
                content += rest_content
            thinking = (delta.thinking or "") + thinking
            self._append(message, thinking, content)
            if delta.tool_calls:
                message.tool_calls = (message.tool_calls or []) + delta.tool_calls
                self.result.tool_calls.extend(delta.tool_calls)

        if response.done:
            self._finish(response)

    def _append(self, message: Message, thinking: str, content: str) -> None:
        if thinking:
            message.thinking = (message.thinking or "") + thinking
        message.content += content
        if self.voice and content:
            self.voice.say(content)

        if self._live is not None:
            self._live.update(self._renderable(message, truncate=True), refresh=True)
        else:
            if thinking and self._show_thinking:
                self.console.print(thinking, end="", style="dim italic", markup=False, highlight=False)
            if content:
                self.console.print(content, end="", markup=False, highlight=False)

    def _tail(self, text: str) -> str:
        """Last screenful of source lines."""
        max_lines = max(self.console.height - 2, 1)
        lines = text.splitlines()
        if len(lines) <= max_lines:
            return text
        return "\n".join(lines[-max_lines:])

    def _renderable(self, message: Message, truncate: bool = False) -> RenderableType:
        thinking = think_annotate(message.thinking) if self._show_thinking else None
        content = talk_annotate(message.content, thinking is not None) or ""
        if truncate:
            # The thought scrolls away once the answer needs the whole screen
            source = self._tail("\n".join(p for p in (thinking, content) if p))
            return Group(role_header("assistant", message.images), Markdown(source))
        parts: list[RenderableType] = [role_header("assistant", message.images)]
        if thinking:
            parts.append(Markdown(thinking))
        parts.append(Markdown(content))
        return Group(*parts)

    def _finish(self, response: ChatResponse) -> None:
        self.state = State.DONE
        self.result.final = response
        self.stop()
        self.console.print()
        self.console.print(eval_stats(response))

    def stop(self) -> None:
        """End live rendering, leaving the complete message on screen."""
        if self._live is not None:
            if self.result.message is not None:
                self._live.update(self._renderable(self.result.message), refresh=True)
            self._live.stop()
            self._live = None

    async def follow(self, events: AsyncIterable[ChatResponse]) -> FollowResult:
        """Consume ``events`` until the final one.

        A transport error mid-stream propagates after live rendering is
        stopped; the partial assistant message stays in the conversation.
        """
        if self.voice:
            await self.voice.start()
        try:
            async for response in events:
                self.handle(response)
        finally:
            self.stop()
            if self.voice:
                await self.voice.close()
        return self.result
