"""Interactive chat session.

``Session`` owns the conversation state (messages, toggles, links, pending
images, socket slot) and the collaborators (client, fetcher, retrieval
store, document policy, tools) and runs the read/dispatch/respond loop.

One iteration:

1. read a line, or take the socket message that interrupted the read
2. run a slash command locally, or
3. resolve references, add retrieved chunks, append the user message and
   stream the response, running requested tools for a bounded number of
   rounds
4. answer the socket sender (if it asked for a reply) and close its connection
"""

from __future__ import annotations

import asyncio
import re
import signal
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.markup import escape

from ollama_chat.core.client import THINK_VALUES
from ollama_chat.core.messages import Message, Role
from ollama_chat.core.switches import Switches
from ollama_chat.documents.fetcher import Fetcher, is_url, make_cache
from ollama_chat.documents.policy import DocumentPolicy, Links
from ollama_chat.documents.store import Record, RetrievalStore, make_store
from ollama_chat.documents.websearch import WebSearch
from ollama_chat.errors import FetchError, InferenceError, ModelNotFoundError
from ollama_chat.logging import get_logger
from ollama_chat.session.commands import ChatTurn, CommandHandler
from ollama_chat.session.follow_chat import FollowChat, VoiceSink
from ollama_chat.session.message_list import MessageList
from ollama_chat.session.server_socket import PendingSlot, ServerSocket, socket_path
from ollama_chat.session.terminal import (
    EndOfInput,
    Interrupted,
    SocketInput,
    Terminal,
    TerminalInput,
)
from ollama_chat.session.tools import ToolContext, ToolRegistry, default_registry

if TYPE_CHECKING:
    from ollama_chat.config.schema import Config
    from ollama_chat.core.client import OllamaClient

log = get_logger("chat")

CHUNKS_HEADER = "\nConsider these chunks for your answer:\n\n"
_CHUNKS_RE = re.compile(r"\nConsider these chunks for your answer.*\Z", re.DOTALL)


@dataclass
class StartupOptions:
    """Command line choices that shape a session's start."""

    conversation: str | None = None
    system: str | None = None
    documents: list[str] = field(default_factory=list)
    server_socket: bool = False


def strip_chunks(content: str) -> str:
    """Content without previously appended retrieval context."""
    return _CHUNKS_RE.sub("", content)


def format_chunks(records: list[Record]) -> str:
    return CHUNKS_HEADER + "\n\n---\n\n".join(
        f"{record.text}\n{' '.join('#' + tag for tag in sorted(record.tags))}" for record in records
    )


class Session:
    """One interactive chat, from startup to exit."""

    def __init__(
        self,
        config: Config,
        client: OllamaClient,
        *,
        console: Console | None = None,
        fetcher: Fetcher | None = None,
        store: RetrievalStore | None = None,
        tools: ToolRegistry | None = None,
        terminal: Terminal | None = None,
    ) -> None:
        self.config = config
        self.client = client
        self.console = console or Console()

        self.switches = Switches(config)
        self.messages = MessageList(config, self.switches)
        self.links = Links()
        self.images: list[str] = []
        self.slot = PendingSlot()

        self.model = config.model.name
        self.model_options: dict[str, Any] = dict(config.model.options)
        self.model_system: str | None = None
        self.capabilities: set[str] | None = None
        self.server_version: str | None = None

        self.fetcher = fetcher or Fetcher(config, make_cache(config))
        self.store: RetrievalStore = store or make_store(config, client)
        self.policy = DocumentPolicy(
            config,
            self.switches,
            self.fetcher,
            self.store,
            client=client,
            links=self.links,
            console=self.console,
        )
        self.websearch = WebSearch(config, self.fetcher)
        self.tools = tools or default_registry()
        self.tools_enabled = config.tools.enabled

        self.terminal = terminal
        self.server_socket: ServerSocket | None = None
        self.commands = CommandHandler(self)
        self.running = False

    # Startup

    async def ensure_model(self, model: str) -> dict[str, Any]:
        """Details of ``model``, pulling it first when it is missing.

        Raises:
            ModelNotFoundError: the model is still missing after the pull
        """
        try:
            return await self.client.show(model)
        except ModelNotFoundError:
            self.console.print(
                f"Model [bold]{escape(model)}[/bold] not found locally, "
                "attempting to pull it from remote now…"
            )
        async for progress in self.client.pull(model):
            log.debug("pull %s: %s", model, progress.get("status"))
        try:
            return await self.client.show(model)
        except ModelNotFoundError as e:
            raise ModelNotFoundError(f"Model {model!r} not found remotely.", status=404) from e

    async def use_model(self, model: str) -> None:
        details = await self.ensure_model(model)
        self.model = model
        self.model_system = details.get("system") or None
        capabilities = details.get("capabilities")
        self.capabilities = set(capabilities) if capabilities is not None else None

    def resolve_system_prompt(self, value: str | None) -> str | None:
        """System prompt from a file path, a named prompt or literal text."""
        if value is None:
            return self.config.system_prompts.get("default") or self.model_system
        path = Path(value).expanduser()
        if value.startswith(("/", "./", "../", "~")) and path.is_file():
            return path.read_text(encoding="utf-8")
        if value in self.config.system_prompts:
            return self.config.system_prompts[value]
        return value

    async def start(self, options: StartupOptions) -> None:
        """Connect to the server and prepare the conversation.

        Raises:
            InferenceError: server unreachable or a required model missing
        """
        self.server_version = await self.client.version()
        log.info("Connected to %s (version %s)", self.client.base_url, self.server_version)
        await self.use_model(self.model)
        if self.switches.embedding_enabled.is_on():
            await self.ensure_model(self.config.embedding.model.name)
            await self.store.open()

        if options.conversation and Path(options.conversation).expanduser().exists():
            self.messages.load(options.conversation)
            self.messages.list(self.console, 2)
        else:
            self.messages.set_system_prompt(self.resolve_system_prompt(options.system))

        if options.documents:
            await self.add_documents(options.documents)

        if options.server_socket:
            path = socket_path(
                self.config.server_socket.runtime_dir, self.config.server_socket.name
            )
            self.server_socket = ServerSocket(path, self.slot, on_message=self._interrupt_read)
            await self.server_socket.start()

    async def add_documents(self, documents: list[str]) -> None:
        """Embed startup documents; a single empty name clears the collection."""
        if documents == [""]:
            await self.store.clear()
            self.console.print(f"Cleared collection [bold]{escape(self.store.collection)}[/bold].")
            return
        if not self.switches.embedding.is_on():
            self.console.print("[yellow]Embedding is off, not adding documents.[/yellow]")
            return
        for count, document in enumerate(documents, 1):
            await self.policy.embed_source(document, count=count)

    def _interrupt_read(self) -> None:
        if self.terminal is not None:
            self.terminal.interrupt()

    # Turns

    def think_value(self) -> bool | str | None:
        if self.capabilities is not None and "thinking" not in self.capabilities:
            return None
        return THINK_VALUES[self.switches.think_mode.selected]

    def tool_schemas(self) -> list[dict[str, Any]] | None:
        if not self.tools_enabled:
            return None
        if self.capabilities is not None and "tools" not in self.capabilities:
            return None
        return self.tools.schemas(self.config.tools.allowed) or None

    def _voice(self) -> VoiceSink | None:
        if not self.switches.voice.is_on():
            return None
        voice = self.switches.voices.selected or self.config.voice.default
        return VoiceSink([part.format(voice=voice) for part in self.config.voice.command])

    def tool_context(self) -> ToolContext:
        return ToolContext(self.config, self.fetcher, self.policy, self.websearch)

    async def retrieve(self, content: str, tags: set[str]) -> list[Record]:
        embedding = self.config.embedding
        try:
            return await self.store.find_where(
                content.lower(),
                tags=tags,
                text_size=embedding.found_texts_size,
                text_count=embedding.found_texts_count,
            )
        except (InferenceError, FetchError) as e:
            log.warning("Retrieval failed: %s", e)
            self.console.print(f"[red]Retrieval failed: {escape(str(e))}[/red]")
            return []

    async def respond(self) -> Message | None:
        """Call the model until it stops asking for tools or rounds run out."""
        rounds = 0
        last: Message | None = None
        while True:
            follow = FollowChat(
                self.messages,
                self.switches,
                self.console,
                voice=self._voice(),
                debug=self.config.debug,
            )
            events = self.client.chat(
                self.model,
                self.messages.to_snapshot(),
                options=self.model_options,
                stream=self.switches.stream.is_on(),
                think=self.think_value(),
                tools=self.tool_schemas(),
            )
            result = await follow.follow(events)
            last = result.message or last
            if not result.tool_calls:
                return last
            if rounds >= self.config.tools.max_rounds:
                self.console.print(
                    f"[yellow]Stopping after {rounds} tool rounds, "
                    f"the model still asked for {len(result.tool_calls)} more calls.[/yellow]"
                )
                return last
            rounds += 1
            context = self.tool_context()
            for call in result.tool_calls:
                self.console.print(f"[dim]Calling tool {escape(call.function.name)}…[/dim]")
                self.messages.append(await self.tools.call(call, context))

    async def chat(self, content: str, parse: bool = True) -> str | None:
        """Run one chat turn; returns the final assistant content."""
        tags: set[str] = set()
        if parse:
            resolved = await self.policy.resolve(content, self.images)
            content, tags = resolved.content, resolved.tags

        records: list[Record] = []
        if self.switches.embedding.is_on() and content:
            records = await self.retrieve(content, tags)
            if records:
                content += format_chunks(records)

        self.messages.append(Message(role=Role.USER, content=content, images=list(self.images)))
        self.images.clear()

        try:
            message = await self.respond()
        except InferenceError as e:
            log.warning("Turn abandoned: %s", e)
            self.console.print(f"[red]{escape(str(e))}[/red] (the turn can be retried with /regenerate)")
            return None

        if records:
            self.console.print("[bold]Sources:[/bold]")
            for source in dict.fromkeys(r.source for r in records):
                self.console.print(f"  {escape(self._source_link(source))}")
        return message.content if message else None

    @staticmethod
    def _source_link(source: str) -> str:
        if is_url(source):
            return source
        path = Path(source).expanduser()
        if path.exists():
            return path.resolve().as_uri()
        return source

    async def handle_input(self, text: str, parse: bool = True) -> str | None:
        """Dispatch one line: command or chat turn."""
        text = text.strip()
        if not text:
            self.console.print("Type /quit to quit.")
            return None
        if text.startswith("/"):
            turn = await self.commands.handle(text)
            if not isinstance(turn, ChatTurn):
                return None
            text, parse = turn.content, turn.parse
        return await self.chat(text, parse)

    async def iteration(self) -> None:
        """Read one input and process it."""
        assert self.terminal is not None
        result = await self.terminal.read()
        if isinstance(result, EndOfInput):
            self.running = False
            return
        if isinstance(result, Interrupted):
            self.console.print("Type /quit to quit.")
            return

        pending = None
        if isinstance(result, SocketInput):
            pending = result.pending
            text, parse = pending.message.content, pending.message.parse
            self.console.print(f"[dim]Received {pending.message.type} via socket.[/dim]")
        else:
            assert isinstance(result, TerminalInput)
            text, parse = result.text, True

        reply: str | None = None
        try:
            reply = await self.handle_input(text, parse)
        finally:
            if pending is not None:
                await pending.reply(reply)
                self.slot.discard(pending)

    async def run(self) -> None:
        if self.terminal is None:
            self.terminal = Terminal(self.slot, history_file=self.config.history.file)
        loop = asyncio.get_running_loop()
        # Ctrl-C while a response streams must not abort it
        loop.add_signal_handler(signal.SIGINT, lambda: log.debug("Interrupt ignored during turn"))
        self.running = True
        try:
            while self.running:
                await self.iteration()
        finally:
            loop.remove_signal_handler(signal.SIGINT)
            await self.close()
        self.console.print("Goodbye.")

    async def close(self) -> None:
        pending = self.slot.take()
        if pending is not None:
            await pending.close()
        if self.server_socket is not None:
            await self.server_socket.stop()
            self.server_socket = None
        await self.store.close()
