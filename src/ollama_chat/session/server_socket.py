"""Local socket through which other processes send input to a running chat.

Each connection carries one JSON line::

    {"content": "...", "type": "socket_input" | "socket_input_with_response", "parse": false}

The received message is put into a single ``PendingSlot`` and the terminal
read is interrupted. A message arriving while another one still waits
replaces it; the replaced sender's connection is closed unanswered and a
warning is logged. For ``socket_input_with_response`` the final assistant
content is written back as a JSON line before the connection is closed.
"""

from __future__ import annotations

import asyncio
import json
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ValidationError

from ollama_chat.config.paths import get_runtime_dir
from ollama_chat.errors import SocketError
from ollama_chat.logging import get_logger

log = get_logger("socket")

SocketInputType = Literal["socket_input", "socket_input_with_response"]


class SocketMessage(BaseModel):
    content: str
    type: SocketInputType = "socket_input"
    parse: bool = False

    @property
    def expects_response(self) -> bool:
        return self.type == "socket_input_with_response"


@dataclass
class PendingMessage:
    """A received message and the connection it came on."""

    message: SocketMessage
    writer: asyncio.StreamWriter | None = None

    async def reply(self, content: str | None) -> None:
        """Answer (when a response is expected) and close the connection."""
        if self.writer is None:
            return
        try:
            if self.message.expects_response and content is not None:
                payload = json.dumps({"role": "assistant", "content": content})
                self.writer.write(payload.encode() + b"\n")
                await self.writer.drain()
        except (ConnectionError, OSError) as e:
            log.warning("Cannot send reply over socket: %s", e)
        finally:
            await self.close()

    async def close(self) -> None:
        if self.writer is None:
            return
        writer, self.writer = self.writer, None
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError) as e:
            log.debug("Socket close failed: %s", e)


class PendingSlot:
    """Holds at most one pending socket message."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: PendingMessage | None = None

    def put(self, pending: PendingMessage) -> PendingMessage | None:
        """Store ``pending``; returns the message it replaced, if any."""
        with self._lock:
            replaced, self._pending = self._pending, pending
        return replaced

    def take(self) -> PendingMessage | None:
        with self._lock:
            pending, self._pending = self._pending, None
        return pending

    def peek(self) -> PendingMessage | None:
        with self._lock:
            return self._pending

    def clear(self) -> None:
        with self._lock:
            self._pending = None

    def discard(self, pending: PendingMessage) -> None:
        """Empty the slot if it still holds ``pending``."""
        with self._lock:
            if self._pending is pending:
                self._pending = None

    def __bool__(self) -> bool:
        return self.peek() is not None


def socket_path(runtime_dir: str | None = None, name: str = "ollama_chat.sock") -> Path:
    return get_runtime_dir(runtime_dir) / name


class ServerSocket:
    """Unix socket listener feeding a PendingSlot."""

    def __init__(
        self,
        path: Path,
        slot: PendingSlot,
        on_message: Callable[[], None] | None = None,
    ) -> None:
        self.path = path
        self.slot = slot
        self.on_message = on_message
        self._server: asyncio.AbstractServer | None = None

    async def _remove_stale(self) -> None:
        if not self.path.exists():
            return
        try:
            _, writer = await asyncio.open_unix_connection(str(self.path))
        except (ConnectionRefusedError, FileNotFoundError):
            log.info("Removing stale socket %s", self.path)
            self.path.unlink(missing_ok=True)
            return
        writer.close()
        raise SocketError(f"Path already exists and is in use: {str(self.path)!r}")

    async def start(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        await self._remove_stale()
        self._server = await asyncio.start_unix_server(self._handle, path=str(self.path))
        log.info("Listening on %s", self.path)

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        self.path.unlink(missing_ok=True)

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            data = await reader.readline()
            message = SocketMessage.model_validate_json(data)
        except (ValidationError, ValueError, ConnectionError) as e:
            log.warning("Ignoring invalid socket message: %s", e)
            writer.close()
            return

        log.debug("Received %s (%d chars)", message.type, len(message.content))
        replaced = self.slot.put(PendingMessage(message, writer))
        if replaced is not None:
            log.warning("Socket message replaced before it was processed: %r", replaced.message.content[:80])
            await replaced.close()
        if self.on_message:
            self.on_message()


async def send_to_server_socket(
    content: str,
    path: Path,
    type: SocketInputType = "socket_input",
    parse: bool = False,
) -> str | None:
    """Send ``content`` to a running chat; returns its reply when one was requested.

    Raises:
        SocketError: no chat is listening on ``path``
    """
    message = SocketMessage(content=content, type=type, parse=parse)
    try:
        reader, writer = await asyncio.open_unix_connection(str(path))
    except OSError as e:
        raise SocketError(f"Cannot connect to {str(path)!r}: {e}") from e
    try:
        writer.write(message.model_dump_json().encode() + b"\n")
        await writer.drain()
        if not message.expects_response:
            return None
        line = await reader.readline()
        if not line:
            return None
        return json.loads(line).get("content")
    finally:
        writer.close()
        await writer.wait_closed()
