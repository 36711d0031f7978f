"""Tests for the server socket and the pending message slot."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from ollama_chat.errors import SocketError
from ollama_chat.session.server_socket import (
    PendingMessage,
    PendingSlot,
    ServerSocket,
    SocketMessage,
    send_to_server_socket,
    socket_path,
)


def pending(content: str, type: str = "socket_input") -> PendingMessage:
    return PendingMessage(SocketMessage(content=content, type=type))


@pytest.fixture
def sock(tmp_path: Path) -> Path:
    # AF_UNIX paths are limited to ~100 bytes; pytest's tmp_path can be longer
    path = Path("/tmp") / f"ollama_chat_test_{tmp_path.name}.sock"
    yield path
    path.unlink(missing_ok=True)


class TestSocketMessage:
    def test_defaults(self) -> None:
        message = SocketMessage.model_validate_json('{"content": "hi"}')
        assert message.type == "socket_input"
        assert message.parse is False
        assert not message.expects_response

    def test_invalid_type(self) -> None:
        with pytest.raises(ValueError):
            SocketMessage(content="x", type="shout")


class TestPendingSlot:
    """Test the single-slot handoff."""

    def test_take_empties(self) -> None:
        slot = PendingSlot()
        message = pending("a")
        assert slot.put(message) is None
        assert slot
        assert slot.take() is message
        assert not slot
        assert slot.take() is None

    def test_newer_message_replaces(self) -> None:
        slot = PendingSlot()
        first, second = pending("a"), pending("b")
        slot.put(first)
        assert slot.put(second) is first
        assert slot.peek() is second

    def test_discard_only_same_message(self) -> None:
        slot = PendingSlot()
        first, second = pending("a"), pending("b")
        slot.put(first)
        slot.discard(second)
        assert slot.peek() is first
        slot.discard(first)
        assert not slot


class TestServerSocket:
    """Test the listener and the sending side."""

    async def test_fire_and_forget(self, sock: Path) -> None:
        slot = PendingSlot()
        received = asyncio.Event()
        server = ServerSocket(sock, slot, on_message=received.set)
        await server.start()
        try:
            assert await send_to_server_socket("hello", sock, parse=True) is None
            await asyncio.wait_for(received.wait(), 5)
            message = slot.take()
            assert message.message.content == "hello"
            assert message.message.parse is True
            await message.reply("ignored")
        finally:
            await server.stop()
        assert not sock.exists()

    async def test_request_response(self, sock: Path) -> None:
        slot = PendingSlot()
        server = ServerSocket(sock, slot)
        await server.start()

        async def answer() -> None:
            while not slot:
                await asyncio.sleep(0.01)
            message = slot.peek()
            await message.reply(f"echo: {message.message.content}")
            slot.discard(message)

        try:
            responder = asyncio.create_task(answer())
            reply = await asyncio.wait_for(
                send_to_server_socket("ping", sock, type="socket_input_with_response"), 5
            )
            await responder
        finally:
            await server.stop()
        assert reply == "echo: ping"
        assert not slot

    async def test_replaced_sender_is_closed(self, sock: Path) -> None:
        slot = PendingSlot()
        server = ServerSocket(sock, slot)
        await server.start()
        try:
            first = asyncio.create_task(
                send_to_server_socket("first", sock, type="socket_input_with_response")
            )
            while not slot:
                await asyncio.sleep(0.01)
            await send_to_server_socket("second", sock)
            while slot.peek().message.content != "second":
                await asyncio.sleep(0.01)
            assert await asyncio.wait_for(first, 5) is None
        finally:
            remaining = slot.take()
            if remaining is not None:
                await remaining.close()
            await server.stop()

    async def test_invalid_message_ignored(self, sock: Path) -> None:
        slot = PendingSlot()
        server = ServerSocket(sock, slot)
        await server.start()
        try:
            reader, writer = await asyncio.open_unix_connection(str(sock))
            writer.write(b"not json\n")
            await writer.drain()
            assert await asyncio.wait_for(reader.read(), 5) == b""
            writer.close()
        finally:
            await server.stop()
        assert not slot

    async def test_stale_socket_removed(self, sock: Path) -> None:
        sock.write_text("")
        server = ServerSocket(sock, PendingSlot())
        await server.start()
        await server.stop()

    async def test_socket_in_use(self, sock: Path) -> None:
        first = ServerSocket(sock, PendingSlot())
        await first.start()
        try:
            with pytest.raises(SocketError, match="in use"):
                await ServerSocket(sock, PendingSlot()).start()
        finally:
            await first.stop()

    async def test_nobody_listening(self, sock: Path) -> None:
        with pytest.raises(SocketError, match="Cannot connect"):
            await send_to_server_socket("x", sock)


def test_socket_path(tmp_path: Path) -> None:
    assert socket_path(str(tmp_path)) == tmp_path / "ollama_chat.sock"
    assert json.loads(SocketMessage(content="x").model_dump_json())["type"] == "socket_input"
