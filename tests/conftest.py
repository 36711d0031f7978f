"""Root pytest configuration for all tests."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest
from rich.console import Console

from ollama_chat.config.loader import dict_to_config
from ollama_chat.config.schema import Config
from ollama_chat.core.client import OllamaClient
from ollama_chat.core.switches import Switches
from ollama_chat.session.chat import Session

from tests.utils import FakeOllama

pytest_plugins = ("pytest_asyncio",)

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Config with plain output and every file below tmp_path."""
    return dict_to_config(
        {
            "markdown": False,
            "history": {"file": str(tmp_path / "history")},
            "server_socket": {"runtime_dir": str(tmp_path / "run")},
            "embedding": {"database": ":memory:", "splitter": {"chunk_size": 64}},
            "tools": {"read_paths": [str(tmp_path)]},
            "copy": "cat > /dev/null",
        }
    )


@pytest.fixture
def switches(config: Config) -> Switches:
    return Switches(config)


@pytest.fixture
def console() -> Console:
    """A console that records instead of styling output."""
    return Console(record=True, width=120, color_system=None, force_terminal=False)


@pytest.fixture
def fake_ollama() -> FakeOllama:
    return FakeOllama()


@pytest.fixture
def client(config: Config, fake_ollama: FakeOllama) -> OllamaClient:
    return OllamaClient.from_config(config, transport=httpx.MockTransport(fake_ollama))


@pytest.fixture
def session(config: Config, client: OllamaClient, console: Console) -> Session:
    return Session(config, client, console=console)
