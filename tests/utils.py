"""Shared test utilities: a fake Ollama server for httpx.MockTransport."""

from __future__ import annotations

import json

import httpx


def ndjson(*events: dict) -> bytes:
    return b"".join(json.dumps(event).encode() + b"\n" for event in events)


def chat_events(*fragments: str, model: str = "llama3.1", tool_calls: list[dict] | None = None) -> list[dict]:
    """Streamed chat events for ``fragments``, followed by the final event."""
    events = [
        {"model": model, "message": {"role": "assistant", "content": fragment}, "done": False}
        for fragment in fragments
    ]
    final_message: dict = {"role": "assistant", "content": ""}
    if tool_calls:
        final_message["tool_calls"] = tool_calls
    events.append(
        {
            "model": model,
            "message": final_message,
            "done": True,
            "done_reason": "stop",
            "total_duration": 2_000_000_000,
            "load_duration": 1_000_000,
            "prompt_eval_count": 10,
            "prompt_eval_duration": 100_000_000,
            "eval_count": len(fragments),
            "eval_duration": 500_000_000,
        }
    )
    return events


class FakeOllama:
    """Ollama API stand-in.

    ``chat_replies`` holds one list of events per expected ``/api/chat`` call,
    or a ready httpx.Response to answer that call with.
    """

    def __init__(self, chat_replies: list[list[dict]] | None = None) -> None:
        self.chat_replies = list(chat_replies or [])
        self.requests: list[tuple[str, dict]] = []
        self.models = {"llama3.1": ["completion", "tools"], "mxbai-embed-large": ["embedding"]}
        self.pullable = True

    def chat_bodies(self) -> list[dict]:
        return [body for path, body in self.requests if path == "/api/chat"]

    def embed_inputs(self) -> list[list[str]]:
        return [body["input"] for path, body in self.requests if path == "/api/embed"]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        path = request.url.path
        self.requests.append((path, body))
        if path == "/api/version":
            return httpx.Response(200, json={"version": "0.9.0"})
        if path == "/api/show":
            capabilities = self.models.get(body.get("model"))
            if capabilities is None:
                return httpx.Response(404, json={"error": "model not found"})
            return httpx.Response(200, json={"capabilities": capabilities})
        if path == "/api/pull":
            if self.pullable:
                self.models.setdefault(body["model"], ["completion"])
            return httpx.Response(200, content=ndjson({"status": "success"}))
        if path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": n} for n in self.models]})
        if path == "/api/embed":
            return httpx.Response(
                200,
                json={"embeddings": [[float(len(text)), 1.0] for text in body["input"]]},
            )
        if path == "/api/chat":
            events = self.chat_replies.pop(0) if self.chat_replies else chat_events("ok")
            if isinstance(events, httpx.Response):
                return events
            return httpx.Response(200, content=ndjson(*events))
        return httpx.Response(404, json={"error": f"unexpected {path}"})
