"""Inference server client.

Talks to the Ollama HTTP API directly with ``httpx`` so the per-response
counters (token counts, nanosecond durations) reach the stats line intact.
Chat responses stream as newline-delimited JSON.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Iterator, Sequence
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import httpx

from ollama_chat.core.messages import ChatResponse, Message
from ollama_chat.errors import (
    InferenceError,
    ModelNotFoundError,
    ServerConnectionError,
    ServerTimeoutError,
)
from ollama_chat.logging import TRACE, get_logger

if TYPE_CHECKING:
    from ollama_chat.config.schema import Config

log = get_logger("client")

# think_mode selector value -> request field
THINK_VALUES: dict[str, bool | str] = {
    "enabled": True,
    "disabled": False,
    "low": "low",
    "medium": "medium",
    "high": "high",
}


class OllamaClient:
    """Async client for the subset of the Ollama API the chat needs."""

    def __init__(
        self,
        base_url: str,
        *,
        connect_timeout: float = 10.0,
        read_timeout: float = 300.0,
        headers: dict[str, str] | None = None,
        api_key: str | None = None,
        proxy: str | None = None,
        verify: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        request_headers = {"Accept": "application/json", **(headers or {})}
        if api_key:
            request_headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=request_headers,
            timeout=httpx.Timeout(read_timeout, connect=connect_timeout),
            proxy=proxy,
            verify=verify,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls,
        config: Config,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> OllamaClient:
        host = httpx.URL(config.url).host
        return cls(
            config.url,
            connect_timeout=config.timeouts.connect,
            read_timeout=config.timeouts.read,
            headers=config.request_headers,
            api_key=api_key,
            proxy=config.proxy,
            verify=host not in config.ssl_no_verify,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> OllamaClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    @contextmanager
    def _translate_errors(self, what: str) -> Iterator[None]:
        """Map transport failures onto the package's error taxonomy."""
        try:
            yield
        except httpx.TimeoutException as e:
            raise ServerTimeoutError(f"{what}: request to {self.base_url} timed out") from e
        except httpx.TransportError as e:
            raise ServerConnectionError(f"{what}: cannot reach {self.base_url}: {e}") from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, what: str) -> None:
        if response.status_code < 400:
            return
        try:
            detail = response.json().get("error", response.text)
        except (ValueError, AttributeError):
            detail = response.text
        if response.status_code == 404:
            raise ModelNotFoundError(f"{what}: {detail}", status=404)
        raise InferenceError(f"{what}: {detail}", status=response.status_code)

    async def _post(self, path: str, body: dict[str, Any], what: str) -> dict[str, Any]:
        with self._translate_errors(what):
            response = await self._client.post(path, json=body)
        self._raise_for_status(response, what)
        return response.json()

    async def chat(
        self,
        model: str,
        messages: Sequence[Message],
        *,
        options: dict[str, Any] | None = None,
        stream: bool = True,
        think: bool | str | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[ChatResponse]:
        """Send a chat request and yield its response events.

        Without streaming a single event (``done`` true) is yielded.

        Raises:
            ServerTimeoutError, ServerConnectionError: transient, the turn may be retried
            InferenceError: the server answered with an error
        """
        body: dict[str, Any] = {
            "model": model,
            "messages": [m.to_wire() for m in messages],
            "stream": stream,
        }
        if options:
            body["options"] = options
        if think is not None:
            body["think"] = think
        if tools:
            body["tools"] = tools
        log.log(TRACE, "chat request: %s", json.dumps(body)[:10000])

        if not stream:
            yield ChatResponse.model_validate(await self._post("/api/chat", body, "chat"))
            return

        with self._translate_errors("chat"):
            async with self._client.stream("POST", "/api/chat", json=body) as response:
                if response.status_code >= 400:
                    await response.aread()
                    self._raise_for_status(response, "chat")
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    data = json.loads(line)
                    if "error" in data:
                        raise InferenceError(f"chat: {data['error']}")
                    yield ChatResponse.model_validate(data)

    async def version(self) -> str:
        """Server version string."""
        with self._translate_errors("version"):
            response = await self._client.get("/api/version")
        self._raise_for_status(response, "version")
        return response.json()["version"]

    async def show(self, model: str) -> dict[str, Any]:
        """Model details (``system``, ``capabilities``, ``model_info``, ...).

        Raises:
            ModelNotFoundError: the model is not present locally
        """
        return await self._post("/api/show", {"model": model}, f"show {model}")

    async def model_present(self, model: str) -> bool:
        try:
            await self.show(model)
        except ModelNotFoundError:
            return False
        return True

    async def pull(self, model: str) -> AsyncIterator[dict[str, Any]]:
        """Pull a model from the registry, yielding progress events."""
        what = f"pull {model}"
        with self._translate_errors(what):
            async with self._client.stream(
                "POST", "/api/pull", json={"model": model, "stream": True}
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    self._raise_for_status(response, what)
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    data = json.loads(line)
                    if "error" in data:
                        raise ModelNotFoundError(f"{what}: {data['error']}")
                    yield data

    async def tags(self) -> list[str]:
        """Names of the locally available models."""
        with self._translate_errors("tags"):
            response = await self._client.get("/api/tags")
        self._raise_for_status(response, "tags")
        return sorted(m["name"] for m in response.json().get("models", []))

    async def embed(
        self,
        model: str,
        inputs: Sequence[str],
        options: dict[str, Any] | None = None,
    ) -> list[list[float]]:
        """Embedding vectors for ``inputs``, in order."""
        body: dict[str, Any] = {"model": model, "input": list(inputs)}
        if options:
            body["options"] = options
        data = await self._post("/api/embed", body, f"embed with {model}")
        return data["embeddings"]
