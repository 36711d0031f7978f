"""Tests for the inference server client and wire types."""

from __future__ import annotations

import base64
import json
from pathlib import Path

import httpx
import pytest

from ollama_chat.core.client import OllamaClient
from ollama_chat.core.messages import ChatResponse, Message, Role, encode_image
from ollama_chat.errors import (
    InferenceError,
    ModelNotFoundError,
    ServerConnectionError,
    ServerTimeoutError,
)

from tests.utils import FakeOllama, chat_events, ndjson


def make_client(handler) -> OllamaClient:
    return OllamaClient("http://ollama.test:11434/", transport=httpx.MockTransport(handler))


class TestMessage:
    """Test the Message wire type."""

    def test_to_wire_omits_empty_optionals(self) -> None:
        wire = Message(role=Role.USER, content="hi").to_wire()
        assert wire == {"role": "user", "content": "hi", "images": []}

    def test_tool_calls_parsed(self) -> None:
        message = Message.model_validate(
            {
                "role": "assistant",
                "content": "",
                "tool_calls": [{"function": {"name": "get_current_time", "arguments": {}}}],
            }
        )
        assert message.tool_calls[0].function.name == "get_current_time"

    def test_encode_image(self, tmp_path: Path) -> None:
        path = tmp_path / "pixel.png"
        path.write_bytes(b"\x89PNG data")
        assert base64.b64decode(encode_image(path)) == b"\x89PNG data"

    def test_response_ignores_unknown_fields(self) -> None:
        response = ChatResponse.model_validate({"done": True, "context": [1, 2, 3]})
        assert response.done is True


class TestChat:
    """Test the streaming chat call."""

    async def test_streams_events(self) -> None:
        fake = FakeOllama([chat_events("He", "llo")])
        async with make_client(fake) as client:
            events = [
                e async for e in client.chat("llama3.1", [Message(role=Role.USER, content="hi")])
            ]
        assert [e.message.content for e in events] == ["He", "llo", ""]
        assert events[-1].done is True
        assert events[-1].eval_count == 2

    async def test_request_body(self) -> None:
        fake = FakeOllama([chat_events("x")])
        async with make_client(fake) as client:
            async for _ in client.chat(
                "llama3.1",
                [Message(role=Role.USER, content="hi")],
                options={"temperature": 0.1},
                think="high",
                tools=[{"type": "function", "function": {"name": "t"}}],
            ):
                pass
        body = fake.chat_bodies()[0]
        assert body["model"] == "llama3.1"
        assert body["stream"] is True
        assert body["options"] == {"temperature": 0.1}
        assert body["think"] == "high"
        assert body["tools"][0]["function"]["name"] == "t"

    async def test_think_omitted_when_none(self) -> None:
        fake = FakeOllama([chat_events("x")])
        async with make_client(fake) as client:
            async for _ in client.chat("llama3.1", []):
                pass
        assert "think" not in fake.chat_bodies()[0]

    async def test_not_streamed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content)["stream"] is False
            return httpx.Response(
                200, json={"message": {"role": "assistant", "content": "whole"}, "done": True}
            )

        async with make_client(handler) as client:
            events = [e async for e in client.chat("m", [], stream=False)]
        assert len(events) == 1
        assert events[0].message.content == "whole"

    async def test_error_line_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=ndjson({"error": "out of memory"}))

        async with make_client(handler) as client:
            with pytest.raises(InferenceError, match="out of memory"):
                async for _ in client.chat("m", []):
                    pass

    async def test_model_not_found(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": "model 'm' not found"})

        async with make_client(handler) as client:
            with pytest.raises(ModelNotFoundError):
                async for _ in client.chat("m", []):
                    pass


class TestErrors:
    """Test mapping of transport failures."""

    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with make_client(handler) as client:
            with pytest.raises(ServerTimeoutError):
                await client.version()

    async def test_connection_refused(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(ServerConnectionError, match="cannot reach"):
                await client.version()

    async def test_server_error_status(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"error": "boom"})

        async with make_client(handler) as client:
            with pytest.raises(InferenceError) as excinfo:
                await client.show("m")
        assert excinfo.value.status == 500


class TestModels:
    """Test model management calls."""

    async def test_version_show_tags(self) -> None:
        fake = FakeOllama()
        async with make_client(fake) as client:
            assert await client.version() == "0.9.0"
            assert (await client.show("llama3.1"))["capabilities"] == ["completion", "tools"]
            assert await client.tags() == ["llama3.1", "mxbai-embed-large"]
            assert await client.model_present("llama3.1") is True
            assert await client.model_present("missing") is False

    async def test_pull_progress(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=ndjson({"status": "pulling"}, {"status": "success"}))

        async with make_client(handler) as client:
            statuses = [p["status"] async for p in client.pull("m")]
        assert statuses == ["pulling", "success"]

    async def test_embed(self) -> None:
        fake = FakeOllama()
        async with make_client(fake) as client:
            vectors = await client.embed("mxbai-embed-large", ["ab", "abcd"])
        assert vectors == [[2.0, 1.0], [4.0, 1.0]]

    def test_from_config_headers(self, config) -> None:
        config.request_headers = {"X-Team": "docs"}
        client = OllamaClient.from_config(config, api_key="secret")
        assert client._client.headers["Authorization"] == "Bearer secret"
        assert client._client.headers["X-Team"] == "docs"
