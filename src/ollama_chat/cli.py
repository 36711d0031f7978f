"""Command-line interface for ollama-chat and ollama-chat-send."""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence

from rich.console import Console

from ollama_chat import __version__
from ollama_chat.errors import ConfigError, InferenceError, SocketError
from ollama_chat.logging import get_logger, setup_logging

log = get_logger("cli")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for ``ollama-chat``."""
    parser = argparse.ArgumentParser(
        prog="ollama-chat",
        description="Chat with an Ollama server, using documents, web search and tools",
    )
    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-f", "--config",
        metavar="CONFIG",
        help="Config file to read instead of the user config",
    )
    parser.add_argument(
        "-u", "--url",
        help="Ollama server URL (default from config)",
    )
    parser.add_argument(
        "-m", "--model",
        help="Chat model to use",
    )
    parser.add_argument(
        "-s", "--system",
        help="System prompt: a file path, a named prompt from the config or the text itself",
    )
    parser.add_argument(
        "-c", "--conversation",
        metavar="FILE",
        help="Load the conversation from FILE",
    )
    parser.add_argument(
        "-C", "--collection",
        help="Name of the collection used in this session",
    )
    parser.add_argument(
        "-D", "--document",
        dest="documents",
        action="append",
        default=[],
        metavar="DOCUMENT",
        help="Document to embed, can be repeated ('' clears the collection)",
    )
    parser.add_argument(
        "-M", "--memory-cache",
        action="store_true",
        help="Cache fetched URLs in memory, even if a cache URL is configured",
    )
    parser.add_argument(
        "-E", "--no-embedding",
        action="store_true",
        help="Disable embedding completely",
    )
    parser.add_argument(
        "-S", "--server-socket",
        action="store_true",
        help="Accept input from ollama-chat-send",
    )
    parser.add_argument(
        "-d", "--debug",
        action="store_true",
        help="Log debug output and the requests sent to the server",
    )
    return parser


def create_send_parser() -> argparse.ArgumentParser:
    """Create the argument parser for ``ollama-chat-send``."""
    parser = argparse.ArgumentParser(
        prog="ollama-chat-send",
        description="Send input to a running ollama-chat started with -S",
    )
    parser.add_argument("content", nargs="*", help="Content to send (default: read stdin)")
    parser.add_argument(
        "-r", "--reply",
        action="store_true",
        help="Wait for the answer and print it",
    )
    parser.add_argument(
        "-p", "--parse",
        action="store_true",
        help="Let the chat resolve references in the content",
    )
    parser.add_argument(
        "-f", "--config",
        metavar="CONFIG",
        help="Config file to read the socket location from",
    )
    return parser


def apply_arguments(config, parsed: argparse.Namespace) -> None:
    """Let command line options override the loaded config."""
    if parsed.url:
        config.url = parsed.url
    if parsed.model:
        config.model.name = parsed.model
    if parsed.collection:
        config.embedding.collection = parsed.collection
    if parsed.memory_cache:
        config.cache.url = None
    if parsed.no_embedding:
        config.embedding.enabled = False
    if parsed.debug:
        config.debug = True


async def run_chat(config, parsed: argparse.Namespace) -> int:
    from ollama_chat.config.secrets import fetch_secret
    from ollama_chat.core.client import OllamaClient
    from ollama_chat.session.chat import Session, StartupOptions

    console = Console()
    options = StartupOptions(
        conversation=parsed.conversation,
        system=parsed.system,
        documents=parsed.documents,
        server_socket=parsed.server_socket,
    )
    async with OllamaClient.from_config(config, api_key=fetch_secret("OLLAMA_API_KEY")) as client:
        session = Session(config, client, console=console)
        try:
            await session.start(options)
        except (InferenceError, SocketError, ConfigError) as e:
            log.error("Startup failed: %s", e)
            console.print(f"[red]{e}[/red]")
            await session.close()
            return 1
        await session.run()
    return 0


def run_cli(args: Sequence[str]) -> int:
    """Run ``ollama-chat`` with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    from ollama_chat.config import load_config

    try:
        config = load_config(parsed.config)
    except ConfigError as e:
        print(f"ollama-chat: {e}", file=sys.stderr)
        return 1
    apply_arguments(config, parsed)
    setup_logging(config.logging, debug=config.debug)

    try:
        return asyncio.run(run_chat(config, parsed))
    except KeyboardInterrupt:
        return 130


def run_send(args: Sequence[str]) -> int:
    """Run ``ollama-chat-send`` with the given arguments."""
    parser = create_send_parser()
    parsed = parser.parse_args(args)

    from ollama_chat.config import load_config
    from ollama_chat.session.server_socket import send_to_server_socket, socket_path

    try:
        config = load_config(parsed.config)
    except ConfigError as e:
        print(f"ollama-chat-send: {e}", file=sys.stderr)
        return 1
    setup_logging(config.logging, debug=config.debug)

    content = " ".join(parsed.content) if parsed.content else sys.stdin.read()
    path = socket_path(config.server_socket.runtime_dir, config.server_socket.name)
    message_type = "socket_input_with_response" if parsed.reply else "socket_input"
    try:
        reply = asyncio.run(
            send_to_server_socket(content, path, type=message_type, parse=parsed.parse)
        )
    except SocketError as e:
        print(f"ollama-chat-send: {e}", file=sys.stderr)
        return 1
    if reply is not None:
        print(reply)
    return 0
