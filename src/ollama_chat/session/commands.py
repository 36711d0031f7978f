"""Slash command handlers for the chat session."""

from __future__ import annotations

import asyncio
import shlex
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from prompt_toolkit import PromptSession
from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table

from ollama_chat import __version__
from ollama_chat.config.loader import dump_config
from ollama_chat.config.schema import DOCUMENT_POLICIES, THINK_MODES
from ollama_chat.core.messages import Role
from ollama_chat.errors import (
    ConfigError,
    ConversationFileError,
    FetchError,
    InferenceError,
)
from ollama_chat.logging import get_logger

if TYPE_CHECKING:
    from ollama_chat.session.chat import Session

log = get_logger("commands")

DEFAULT_WEB_RESULTS = 1


@dataclass(frozen=True)
class ChatTurn:
    """A command's request to send ``content`` to the model."""

    content: str
    parse: bool = False


CommandResult = ChatTurn | None

COMMANDS = [
    ("/copy", "Copy the last response to the clipboard"),
    ("/paste", "Paste content and send it"),
    ("/markdown", "Toggle markdown output"),
    ("/stream", "Toggle streaming output"),
    ("/location", "Toggle location submission"),
    ("/voice [change NAME]", "Toggle voice output or change the voice"),
    ("/think [MODE]", "Show or set the think mode (" + "|".join(THINK_MODES) + ")"),
    ("/think_loud", "Toggle showing thinking annotations"),
    ("/list [n]", "List the last n exchanges, or the whole conversation"),
    ("/last [n]", "Show the last n system/assistant messages"),
    ("/clear [messages|links|history|all]", "Clear what is named, messages by default"),
    ("/clobber", "Clear conversation, collection, links and history"),
    ("/drop [n]", "Drop the last n exchanges"),
    ("/model [NAME]", "List available models or change the model"),
    ("/system [show|NAME|TEXT]", "Show or change the system prompt"),
    ("/regenerate", "Regenerate the last answer"),
    ("/collection [clear [TAG...]|change NAME]", "Show, clear or change the collection"),
    ("/info", "Show information about the current session"),
    ("/config", "Show the current configuration"),
    ("/document_policy [POLICY]", "Show or set the document policy (" + "|".join(DOCUMENT_POLICIES) + ")"),
    ("/import SOURCE", "Import a source's content"),
    ("/summarize [N] SOURCE", "Summarize a source using N words"),
    ("/embedding", "Toggle pausing of embedding"),
    ("/embed SOURCE", "Embed a source"),
    ("/web [N] QUERY", "Search the web and answer using N results"),
    ("/links [clear [N]]", "Show or clear the links used"),
    ("/save FILE [force]", "Save the conversation to FILE"),
    ("/load FILE", "Load a conversation from FILE"),
    ("/output FILE [force]", "Write the last response to FILE"),
    ("/pipe COMMAND", "Pipe the last response into COMMAND"),
    ("/tools [on|off]", "List the tools or switch tool calling"),
    ("/quit", "Quit the chat"),
    ("/help", "Show this help message"),
]


def split_args(text: str) -> list[str]:
    """Shell-like words of ``text``; plain whitespace split if quoting is broken."""
    try:
        return shlex.split(text)
    except ValueError:
        return text.split()


class CommandHandler:
    """Handles slash commands of a Session."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.handlers: dict[str, Callable[[str], Awaitable[CommandResult]]] = {
            "/copy": self._cmd_copy,
            "/paste": self._cmd_paste,
            "/markdown": self._cmd_markdown,
            "/stream": self._cmd_stream,
            "/location": self._cmd_location,
            "/voice": self._cmd_voice,
            "/think": self._cmd_think,
            "/think_loud": self._cmd_think_loud,
            "/list": self._cmd_list,
            "/last": self._cmd_last,
            "/clear": self._cmd_clear,
            "/clobber": self._cmd_clobber,
            "/drop": self._cmd_drop,
            "/model": self._cmd_model,
            "/system": self._cmd_system,
            "/regenerate": self._cmd_regenerate,
            "/collection": self._cmd_collection,
            "/info": self._cmd_info,
            "/config": self._cmd_config,
            "/document_policy": self._cmd_document_policy,
            "/import": self._cmd_import,
            "/summarize": self._cmd_summarize,
            "/embedding": self._cmd_embedding,
            "/embed": self._cmd_embed,
            "/web": self._cmd_web,
            "/links": self._cmd_links,
            "/save": self._cmd_save,
            "/load": self._cmd_load,
            "/output": self._cmd_output,
            "/pipe": self._cmd_pipe,
            "/tools": self._cmd_tools,
            "/quit": self._cmd_quit,
            "/help": self._cmd_help,
        }

    @property
    def console(self):
        return self.session.console

    async def handle(self, line: str) -> CommandResult:
        """Run the command in ``line``; a ChatTurn asks for a model response."""
        parts = line.strip().split(None, 1)
        if not parts:
            return None
        cmd = parts[0].lower()
        rest = parts[1] if len(parts) > 1 else ""

        handler = self.handlers.get(cmd)
        if handler is None:
            self.console.print(f"[red]Unknown command: {escape(cmd)}[/red]")
            return await self._cmd_help("")
        log.debug("Command %s %r", cmd, rest)
        try:
            return await handler(rest)
        except (ConfigError, ConversationFileError, FetchError) as e:
            self.console.print(f"[red]{escape(str(e))}[/red]")
        except (InferenceError, OSError, ValueError) as e:
            log.warning("Command %s failed: %s", cmd, e)
            self.console.print(f"[red]{escape(str(e))}[/red]")
        return None

    async def confirm(self, question: str) -> bool:
        """Ask a yes/no question; Ctrl-C or Ctrl-D count as no."""
        try:
            answer = await PromptSession().prompt_async(f"{question} (y/n) ")
        except (KeyboardInterrupt, EOFError):
            return False
        return answer.strip().lower().startswith("y")

    def _toggled(self, switch) -> None:
        switch.toggle()
        self.console.print(switch.describe())

    # Switches

    async def _cmd_markdown(self, rest: str) -> CommandResult:
        self._toggled(self.session.switches.markdown)

    async def _cmd_stream(self, rest: str) -> CommandResult:
        self._toggled(self.session.switches.stream)

    async def _cmd_location(self, rest: str) -> CommandResult:
        self._toggled(self.session.switches.location)

    async def _cmd_think_loud(self, rest: str) -> CommandResult:
        self._toggled(self.session.switches.think_loud)

    async def _cmd_embedding(self, rest: str) -> CommandResult:
        switches = self.session.switches
        switches.embedding_paused.toggle()
        self.console.print(switches.embedding.describe())

    async def _cmd_voice(self, rest: str) -> CommandResult:
        switches = self.session.switches
        args = split_args(rest)
        if args[:1] == ["change"]:
            if len(args) < 2:
                voices = ", ".join(switches.voices.states) or "none configured"
                self.console.print(f"Voices: {voices}")
                return None
            switches.voices.selected = args[1]
            self.console.print(switches.voices.describe())
            return None
        self._toggled(switches.voice)

    async def _cmd_think(self, rest: str) -> CommandResult:
        selector = self.session.switches.think_mode
        if rest.strip():
            selector.selected = rest.strip()
        self.console.print(selector.describe())
        if self.session.capabilities is not None and "thinking" not in self.session.capabilities:
            self.console.print(f"[yellow]Model {escape(self.session.model)} does not support thinking.[/yellow]")

    async def _cmd_document_policy(self, rest: str) -> CommandResult:
        selector = self.session.switches.document_policy
        if rest.strip():
            selector.selected = rest.strip()
        self.console.print(selector.describe())

    async def _cmd_tools(self, rest: str) -> CommandResult:
        session = self.session
        arg = rest.strip().lower()
        if arg in ("on", "off"):
            session.tools_enabled = arg == "on"
        allowed = session.config.tools.allowed
        table = Table(title="Tools")
        table.add_column("Name", style="bold")
        table.add_column("Description")
        table.add_column("Offered")
        for name in session.tools.names():
            tool = session.tools.get(name)
            offered = session.tools_enabled and (not allowed or name in allowed)
            table.add_row(name, tool.description, "yes" if offered else "no")
        self.console.print(table)
        state = "enabled" if session.tools_enabled else "disabled"
        self.console.print(f"Tool calling is {state}.")

    # Conversation

    async def _cmd_list(self, rest: str) -> CommandResult:
        n = self._int(rest)
        self.session.messages.list(self.console, 2 * n if n else None)

    async def _cmd_last(self, rest: str) -> CommandResult:
        self.session.messages.show_last(self.console, self._int(rest) or 1)

    async def _cmd_drop(self, rest: str) -> CommandResult:
        messages = self.session.messages
        dropped = messages.drop(self._int(rest) or 1)
        self.console.print(f"Dropped {dropped} exchange(s).")
        messages.list(self.console, 2)

    async def _cmd_clear(self, rest: str) -> CommandResult:
        what = rest.strip().lower() or "messages"
        session = self.session
        if what == "messages":
            session.messages.clear()
            self.console.print("Cleared messages.")
        elif what == "links":
            session.links.clear()
            self.console.print("Cleared all links in list.")
        elif what == "history":
            self._clear_history()
            self.console.print("Cleared history.")
        elif what == "all":
            await self._cmd_clobber("")
        else:
            self.console.print("Use /clear [messages|links|history|all].")

    async def _cmd_clobber(self, rest: str) -> CommandResult:
        if not await self.confirm("Are you sure to clear messages and collection?"):
            self.console.print("Cancelled.")
            return None
        session = self.session
        session.messages.clear()
        await session.store.clear()
        session.links.clear()
        self._clear_history()
        self.console.print("Cleared messages, collection, links and history.")

    def _clear_history(self) -> None:
        history_file = self.session.config.history.file
        terminal = self.session.terminal
        if terminal is not None:
            terminal.reset_history(history_file)
        elif history_file:
            Path(history_file).expanduser().unlink(missing_ok=True)

    async def _cmd_regenerate(self, rest: str) -> CommandResult:
        from ollama_chat.session.chat import strip_chunks

        messages = self.session.messages
        unanswered = messages.pop_unanswered()
        if unanswered is not None:
            return ChatTurn(strip_chunks(unanswered.content), parse=False)
        if len(messages) < 2 or messages[-1].role != Role.ASSISTANT:
            self.console.print("Not enough messages in this conversation.")
            return None
        content = strip_chunks(messages.last_user_content() or "")
        messages.drop(1)
        return ChatTurn(content, parse=False)

    async def _cmd_system(self, rest: str) -> CommandResult:
        session = self.session
        value = rest.strip()
        if value and value != "show":
            session.messages.set_system_prompt(session.resolve_system_prompt(value))
        system = session.messages.system
        if system:
            self.console.print("[bold]Configured system prompt is:[/bold]")
            self.console.print(escape(system))
        else:
            self.console.print("No system prompt is set.")

    async def _cmd_model(self, rest: str) -> CommandResult:
        session = self.session
        name = rest.strip()
        if name:
            await session.use_model(name)
            self.console.print(f"Using model [bold]{escape(session.model)}[/bold].")
            return None
        for model in await session.client.tags():
            marker = "*" if model == session.model else " "
            self.console.print(f"{marker} {escape(model)}")

    async def _cmd_save(self, rest: str) -> CommandResult:
        args = split_args(rest)
        if not args:
            self.console.print("Usage: /save FILE [force]")
            return None
        path = self.session.messages.save(args[0], overwrite="force" in args[1:])
        self.console.print(f"Saved conversation to {escape(str(path))}.")

    async def _cmd_load(self, rest: str) -> CommandResult:
        args = split_args(rest)
        if not args:
            self.console.print("Usage: /load FILE")
            return None
        messages = self.session.messages.load(args[0])
        self.console.print(f"Loaded conversation from {escape(args[0])}.")
        messages.list(self.console, 2)

    # Output of the last answer

    def _last_answer(self) -> str | None:
        content = self.session.messages.last_assistant_content()
        if content is None:
            self.console.print("No response available to output.")
        return content

    async def _write_to_command(self, command: str, content: str) -> bool:
        process = await asyncio.create_subprocess_shell(command, stdin=asyncio.subprocess.PIPE)
        await process.communicate(content.encode())
        if process.returncode != 0:
            self.console.print(f"[red]{escape(command)!r} exited with status {process.returncode}.[/red]")
            return False
        return True

    async def _cmd_copy(self, rest: str) -> CommandResult:
        content = self._last_answer()
        if content is None:
            return None
        command = self.session.config.copy
        if await self._write_to_command(command, content):
            self.console.print(f"The last response has been copied to the clipboard via {escape(command)!r}.")

    async def _cmd_paste(self, rest: str) -> CommandResult:
        command = self.session.config.paste
        if command:
            process = await asyncio.create_subprocess_shell(command, stdout=asyncio.subprocess.PIPE)
            output, _ = await process.communicate()
            if process.returncode != 0:
                self.console.print(f"[red]{escape(command)!r} exited with status {process.returncode}.[/red]")
                return None
            text = output.decode("utf-8", errors="replace")
        else:
            self.console.print("[bold]Paste your content and then press Esc Enter![/bold]")
            try:
                text = await PromptSession().prompt_async("", multiline=True)
            except (KeyboardInterrupt, EOFError):
                text = ""
        if not text.strip():
            self.console.print("Nothing was pasted.")
            return None
        return ChatTurn(text, parse=True)

    async def _cmd_pipe(self, rest: str) -> CommandResult:
        command = rest.strip()
        if not command:
            self.console.print("Usage: /pipe COMMAND")
            return None
        content = self._last_answer()
        if content is not None and await self._write_to_command(command, content):
            self.console.print(f"Last response was piped to {escape(command)!r}.")

    async def _cmd_output(self, rest: str) -> CommandResult:
        args = split_args(rest)
        if not args:
            self.console.print("Usage: /output FILE [force]")
            return None
        content = self._last_answer()
        if content is None:
            return None
        path = Path(args[0]).expanduser()
        if path.exists() and "force" not in args[1:]:
            self.console.print(f"File {escape(str(path))!r} already exists. Use 'force' to overwrite.")
            return None
        path.write_text(content, encoding="utf-8")
        self.console.print(f"Last response was written to {escape(str(path))!r}.")

    # Documents

    async def _cmd_import(self, rest: str) -> CommandResult:
        source = rest.strip()
        if not source:
            self.console.print("Usage: /import SOURCE")
            return None
        content = await self.session.policy.import_source(source)
        return ChatTurn(content) if content else None

    async def _cmd_summarize(self, rest: str) -> CommandResult:
        args = rest.split(None, 1)
        words = None
        if len(args) == 2 and args[0].isdigit():
            words, source = int(args[0]), args[1].strip()
        else:
            source = rest.strip()
        if not source:
            self.console.print("Usage: /summarize [N] SOURCE")
            return None
        content = await self.session.policy.summarize_source(source, words)
        return ChatTurn(content) if content else None

    async def _cmd_embed(self, rest: str) -> CommandResult:
        source = rest.strip()
        if not source:
            self.console.print("Usage: /embed SOURCE")
            return None
        content = await self.session.policy.embed_source(source)
        return ChatTurn(content) if content else None

    async def _cmd_web(self, rest: str) -> CommandResult:
        session = self.session
        args = rest.split(None, 1)
        n = DEFAULT_WEB_RESULTS
        if len(args) == 2 and args[0].isdigit():
            n, query = max(int(args[0]), 1), args[1].strip()
        else:
            query = rest.strip()
        if not query:
            self.console.print("Usage: /web [N] QUERY")
            return None

        search_query = query
        if session.switches.location.is_on():
            search_query = f"{query} {session.messages.at_location()}"
        urls = await session.websearch.search(search_query, n)
        if not urls:
            self.console.print(f"No results for {escape(query)!r}.")
            return None

        results = []
        for url in urls:
            session.links.add(url)
            if session.switches.embedding.is_on():
                await session.policy.embed_source(url)
            summary = await session.policy.summarize_source(url)
            if summary:
                results.append(f"{url} as:\n{summary}")
        prompt = session.config.prompts.web.format(query=query, results="\n\n".join(results))
        return ChatTurn(prompt)

    async def _cmd_links(self, rest: str) -> CommandResult:
        links = self.session.links
        args = split_args(rest)
        if args[:1] == ["clear"]:
            if len(args) < 2:
                links.clear()
                self.console.print("Cleared all links in list.")
                return None
            index = self._int(args[1])
            urls = list(links)
            if not 1 <= index <= len(urls):
                self.console.print(f"No link number {escape(args[1])}.")
                return None
            links.remove(urls[index - 1])
            self.console.print(f"Removed link {escape(urls[index - 1])}.")
            return None
        if not links:
            self.console.print("List is empty.")
            return None
        for i, url in enumerate(links, 1):
            self.console.print(f"{i:>3}. {escape(url)}")

    async def _cmd_collection(self, rest: str) -> CommandResult:
        store = self.session.store
        args = split_args(rest)
        if args[:1] == ["clear"]:
            await store.clear(args[1:])
            if args[1:]:
                self.console.print(f"Cleared tag(s) {escape(', '.join(args[1:]))} from collection {escape(store.collection)}.")
            else:
                self.console.print(f"Cleared collection [bold]{escape(store.collection)}[/bold].")
            return None
        if args[:1] == ["change"]:
            if len(args) < 2:
                self.console.print("Usage: /collection change NAME")
                return None
            store.collection = args[1]
        self.console.print(
            f"Current collection is [bold]{escape(store.collection)}[/bold] "
            f"with {store.size()} chunks."
        )
        tags = store.tags()
        if tags:
            self.console.print("Tags: " + escape(" ".join(f"#{t}" for t in sorted(tags))))

    # Info

    async def _cmd_info(self, rest: str) -> CommandResult:
        session = self.session
        table = Table(title="ollama_chat", show_header=False)
        table.add_column("Key", style="bold")
        table.add_column("Value")
        table.add_row("version", __version__)
        table.add_row("server", f"{session.client.base_url} (version {session.server_version or '?'})")
        table.add_row("model", session.model)
        table.add_row("options", escape(str(session.model_options or {})))
        table.add_row("system prompt", "set" if session.messages.system else "none")
        table.add_row("collection", f"{session.store.collection} ({session.store.size()} chunks)")
        tags = session.store.tags()
        table.add_row("tags", escape(" ".join(f"#{t}" for t in sorted(tags))) or "-")
        for name, toggle in session.switches.all().items():
            table.add_row(name, toggle.describe())
        table.add_row("search engine", session.websearch.engine)
        table.add_row("tools", "enabled" if session.tools_enabled else "disabled")
        table.add_row("messages", str(len(session.messages)))
        table.add_row("links", str(len(session.links)))
        if session.server_socket is not None:
            table.add_row("socket", str(session.server_socket.path))
        self.console.print(table)

    async def _cmd_config(self, rest: str) -> CommandResult:
        config = self.session.config
        if config.source_path:
            self.console.print(f"Configuration read from {escape(config.source_path)}:")
        self.console.print(Syntax(dump_config(config), "yaml"))

    async def _cmd_quit(self, rest: str) -> CommandResult:
        self.session.running = False

    async def _cmd_help(self, rest: str) -> CommandResult:
        table = Table(title="Available Commands")
        table.add_column("Command", style="bold")
        table.add_column("Description")
        for cmd, desc in COMMANDS:
            table.add_row(escape(cmd), desc)
        self.console.print(table)

    @staticmethod
    def _int(text: str) -> int:
        text = text.strip()
        return int(text) if text.isdigit() else 0
