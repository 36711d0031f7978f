"""Terminal input that a socket message can interrupt.

``Terminal.read`` returns one of:

- ``TerminalInput``: a line typed by the user
- ``SocketInput``: a message from the server socket, which interrupted the read
- ``Interrupted``: Ctrl-C with nothing pending
- ``EndOfInput``: Ctrl-D
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.history import FileHistory, History, InMemoryHistory

from ollama_chat.logging import get_logger
from ollama_chat.session.server_socket import PendingMessage, PendingSlot

log = get_logger("terminal")


@dataclass(frozen=True)
class TerminalInput:
    text: str


@dataclass(frozen=True)
class SocketInput:
    pending: PendingMessage


@dataclass(frozen=True)
class Interrupted:
    pass


@dataclass(frozen=True)
class EndOfInput:
    pass


ReadResult = TerminalInput | SocketInput | Interrupted | EndOfInput


def make_history(history_file: str | None) -> History:
    if not history_file:
        return InMemoryHistory()
    path = Path(history_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return FileHistory(str(path))


class Terminal:
    """Line input from the user, racing against the socket slot."""

    def __init__(
        self,
        slot: PendingSlot,
        history_file: str | None = None,
        session: PromptSession | None = None,
    ) -> None:
        self.slot = slot
        self.session = session or PromptSession(
            history=make_history(history_file),
            auto_suggest=AutoSuggestFromHistory(),
        )
        self._read_task: asyncio.Future[str] | None = None

    def reset_history(self, history_file: str | None = None) -> None:
        """Forget the input history, on disk too."""
        if history_file:
            Path(history_file).expanduser().unlink(missing_ok=True)
        history = make_history(history_file)
        self.session.history = history
        self.session.default_buffer.history = history

    def interrupt(self) -> None:
        """Abort a read in progress. Called from the event loop thread."""
        if self._read_task is not None and not self._read_task.done():
            self._read_task.cancel()

    async def read(self, prompt: str = "📨 user: ") -> ReadResult:
        pending = self.slot.take()
        if pending is not None:
            return SocketInput(pending)

        self._read_task = asyncio.ensure_future(self.session.prompt_async(prompt))
        try:
            text = await self._read_task
        except asyncio.CancelledError:
            pending = self.slot.take()
            if pending is not None:
                return SocketInput(pending)
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            return Interrupted()
        except KeyboardInterrupt:
            return Interrupted()
        except EOFError:
            return EndOfInput()
        finally:
            self._read_task = None
        return TerminalInput(text)
