"""Tests for slash commands."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from ollama_chat.core.messages import Message, Role
from ollama_chat.session.chat import CHUNKS_HEADER, Session
from ollama_chat.session.commands import ChatTurn, split_args


def converse(session: Session, *pairs: tuple[str, str]) -> None:
    session.messages.set_system_prompt("Be brief.")
    for question, answer in pairs:
        session.messages.append(Message(role=Role.USER, content=question))
        session.messages.append(Message(role=Role.ASSISTANT, content=answer))


def output(session: Session) -> str:
    return session.console.export_text()


class TestDispatch:
    """Test command lookup."""

    async def test_unknown_command_shows_help(self, session: Session) -> None:
        assert await session.commands.handle("/frobnicate now") is None
        text = output(session)
        assert "Unknown command: /frobnicate" in text
        assert "Available Commands" in text

    async def test_case_insensitive(self, session: Session) -> None:
        session.running = True
        await session.commands.handle("/QUIT")
        assert session.running is False

    async def test_help(self, session: Session) -> None:
        await session.commands.handle("/help")
        assert "/regenerate" in output(session)

    def test_split_args(self) -> None:
        assert split_args('"my file.json" force') == ["my file.json", "force"]
        assert split_args('broken "quote') == ["broken", '"quote']


class TestSwitches:
    """Test toggles and selectors."""

    async def test_markdown_toggle(self, session: Session) -> None:
        await session.commands.handle("/markdown")
        assert session.switches.markdown.is_on()
        assert "Using markdown to output content." in output(session)

    async def test_stream_toggle(self, session: Session) -> None:
        await session.commands.handle("/stream")
        assert not session.switches.stream.is_on()

    async def test_embedding_pause(self, session: Session) -> None:
        await session.commands.handle("/embedding")
        assert not session.switches.embedding.is_on()
        assert "Embedding is currently not performed." in output(session)

    async def test_invalid_think_mode_keeps_state(self, session: Session) -> None:
        await session.commands.handle("/think deeply")
        assert session.switches.think_mode.selected == "disabled"
        assert "value has to be one of" in output(session)

    async def test_think_mode(self, session: Session) -> None:
        await session.commands.handle("/think high")
        assert session.think_value() == "high"

    async def test_think_unsupported_warning(self, session: Session) -> None:
        session.capabilities = {"completion"}
        await session.commands.handle("/think enabled")
        assert "does not support thinking" in output(session)
        assert session.think_value() is None

    async def test_document_policy(self, session: Session) -> None:
        await session.commands.handle("/document_policy embedding")
        assert session.policy.selected == "embedding"

    async def test_voice_change(self, session: Session) -> None:
        await session.commands.handle("/voice change Daniel")
        assert session.switches.voices.selected == "Daniel"

    async def test_tools_off(self, session: Session) -> None:
        assert session.tool_schemas()
        await session.commands.handle("/tools off")
        assert session.tool_schemas() is None
        assert "Tool calling is disabled." in output(session)


class TestConversation:
    """Test commands acting on the message list."""

    async def test_drop(self, session: Session) -> None:
        converse(session, ("one", "1"), ("two", "2"))
        await session.commands.handle("/drop")
        assert [m.content for m in session.messages] == ["Be brief.", "one", "1"]
        assert "Dropped 1 exchange(s)." in output(session)

    async def test_drop_too_few(self, session: Session) -> None:
        session.messages.set_system_prompt("Be brief.")
        await session.commands.handle("/drop 3")
        assert len(session.messages) == 1
        assert "Dropped 0 exchange(s)." in output(session)

    async def test_list_and_last(self, session: Session) -> None:
        converse(session, ("one", "first answer"), ("two", "second answer"))
        await session.commands.handle("/list 1")
        await session.commands.handle("/last")
        text = output(session)
        assert "first answer" not in text
        assert text.count("second answer") == 2

    async def test_clear_keeps_system(self, session: Session) -> None:
        converse(session, ("one", "1"))
        await session.commands.handle("/clear")
        assert [m.role for m in session.messages] == [Role.SYSTEM]

    async def test_system_literal(self, session: Session) -> None:
        converse(session, ("one", "1"))
        await session.commands.handle("/system Talk like a pirate.")
        assert session.messages.system == "Talk like a pirate."
        assert len(session.messages) == 1

    async def test_system_named(self, session: Session) -> None:
        session.config.system_prompts["pirate"] = "Arr."
        await session.commands.handle("/system pirate")
        assert session.messages.system == "Arr."

    async def test_save_and_load(self, session: Session, config, client, console, tmp_path: Path) -> None:
        converse(session, ("one", "1"))
        path = tmp_path / "chat.json"
        await session.commands.handle(f"/save {path}")
        assert path.exists()

        other = Session(config, client, console=console)
        await other.commands.handle(f"/load {path}")
        assert [m.content for m in other.messages] == ["Be brief.", "one", "1"]
        assert other.messages.system == "Be brief."

    async def test_save_refuses_overwrite(self, session: Session, tmp_path: Path) -> None:
        path = tmp_path / "chat.json"
        path.write_text("[]")
        await session.commands.handle(f"/save {path}")
        assert path.read_text() == "[]"
        assert "already exists" in output(session)
        await session.commands.handle(f"/save {path} force")
        assert path.read_text() != "[]"

    async def test_load_missing(self, session: Session, tmp_path: Path) -> None:
        converse(session, ("one", "1"))
        await session.commands.handle(f"/load {tmp_path / 'nope.json'}")
        assert "doesn't exist" in output(session)
        assert len(session.messages) == 3

    async def test_clobber(self, session: Session) -> None:
        converse(session, ("one", "1"))
        session.links.add("https://a.example")
        session.commands.confirm = AsyncMock(return_value=True)
        await session.commands.handle("/clobber")
        assert len(session.messages) == 1
        assert not session.links

    async def test_clobber_cancelled(self, session: Session) -> None:
        converse(session, ("one", "1"))
        session.commands.confirm = AsyncMock(return_value=False)
        await session.commands.handle("/clobber")
        assert len(session.messages) == 3
        assert "Cancelled." in output(session)

    @pytest.mark.parametrize("error", [KeyboardInterrupt, EOFError])
    async def test_clobber_interrupted(
        self, session: Session, monkeypatch: pytest.MonkeyPatch, error: type[BaseException]
    ) -> None:
        converse(session, ("one", "1"))
        prompt = Mock(prompt_async=AsyncMock(side_effect=error))
        monkeypatch.setattr("ollama_chat.session.commands.PromptSession", lambda: prompt)
        assert await session.commands.handle("/clobber") is None
        assert len(session.messages) == 3
        assert "Cancelled." in output(session)

    async def test_system_from_undecodable_file(self, session: Session, tmp_path: Path) -> None:
        converse(session, ("one", "1"))
        path = tmp_path / "prompt.bin"
        path.write_bytes(b"\xff\xfe\x00\x81")
        assert await session.commands.handle(f"/system {path}") is None
        assert session.messages.system == "Be brief."
        assert len(session.messages) == 3
        assert "can't decode" in output(session)


class TestRegenerate:
    async def test_last_exchange_replayed(self, session: Session) -> None:
        converse(session, ("one", "1"), ("two" + CHUNKS_HEADER + "old chunk\n#s", "2"))
        turn = await session.commands.handle("/regenerate")
        assert turn == ChatTurn("two", parse=False)
        assert [m.content for m in session.messages] == ["Be brief.", "one", "1"]

    async def test_unanswered_message_replayed(self, session: Session) -> None:
        converse(session, ("one", "1"))
        session.messages.append(Message(role=Role.USER, content="two"))
        turn = await session.commands.handle("/regenerate")
        assert turn == ChatTurn("two", parse=False)
        assert len(session.messages) == 3

    async def test_nothing_to_regenerate(self, session: Session) -> None:
        session.messages.set_system_prompt("Be brief.")
        assert await session.commands.handle("/regenerate") is None
        assert "Not enough messages" in output(session)


class TestOutput:
    """Test commands that export the last answer."""

    async def test_no_answer(self, session: Session, tmp_path: Path) -> None:
        await session.commands.handle(f"/output {tmp_path / 'out.txt'}")
        assert "No response available to output." in output(session)
        assert not (tmp_path / "out.txt").exists()

    async def test_output_and_force(self, session: Session, tmp_path: Path) -> None:
        converse(session, ("one", "first"))
        path = tmp_path / "out.txt"
        await session.commands.handle(f"/output {path}")
        assert path.read_text() == "first"

        converse(session, ("two", "second"))
        await session.commands.handle(f"/output {path}")
        assert path.read_text() == "first"
        assert "Use 'force' to overwrite." in output(session)
        await session.commands.handle(f"/output {path} force")
        assert path.read_text() == "second"

    async def test_output_into_missing_directory(self, session: Session, tmp_path: Path) -> None:
        converse(session, ("one", "first"))
        path = tmp_path / "nope" / "out.txt"
        assert await session.commands.handle(f"/output {path}") is None
        assert "No such file or directory" in output(session)
        assert not path.parent.exists()

    async def test_pipe(self, session: Session, tmp_path: Path) -> None:
        converse(session, ("one", "piped text"))
        path = tmp_path / "piped.txt"
        await session.commands.handle(f"/pipe cat > {path}")
        assert path.read_text() == "piped text"

    async def test_copy(self, session: Session) -> None:
        converse(session, ("one", "1"))
        await session.commands.handle("/copy")
        assert "copied to the clipboard" in output(session)

    async def test_failing_command(self, session: Session) -> None:
        converse(session, ("one", "1"))
        await session.commands.handle("/pipe exit 3")
        assert "exited with status 3" in output(session)


class TestPaste:
    """Test pasting content as the next message."""

    async def test_paste_command(self, session: Session) -> None:
        session.config.paste = "printf 'see the notes'"
        assert await session.commands.handle("/paste") == ChatTurn("see the notes", parse=True)

    async def test_failing_paste_command(self, session: Session) -> None:
        session.config.paste = "exit 2"
        assert await session.commands.handle("/paste") is None
        assert "exited with status 2" in output(session)

    async def test_paste_at_prompt(self, session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
        prompt = Mock(prompt_async=AsyncMock(return_value="line one\nline two"))
        monkeypatch.setattr("ollama_chat.session.commands.PromptSession", lambda: prompt)
        turn = await session.commands.handle("/paste")
        assert turn == ChatTurn("line one\nline two", parse=True)
        assert prompt.prompt_async.await_args.kwargs == {"multiline": True}

    async def test_paste_cancelled(self, session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
        prompt = Mock(prompt_async=AsyncMock(side_effect=EOFError))
        monkeypatch.setattr("ollama_chat.session.commands.PromptSession", lambda: prompt)
        assert await session.commands.handle("/paste") is None
        assert "Nothing was pasted." in output(session)


class TestDocuments:
    """Test commands that turn sources into chat turns."""

    @pytest.fixture
    def notes(self, tmp_path: Path) -> Path:
        path = tmp_path / "notes.md"
        path.write_text("Stroopwafels need caramel syrup.")
        return path

    async def test_import(self, session: Session, notes: Path) -> None:
        turn = await session.commands.handle(f"/import {notes}")
        assert turn.content.startswith(f"Imported '{notes}'")
        assert turn.parse is False

    async def test_summarize_words(self, session: Session, notes: Path) -> None:
        turn = await session.commands.handle(f"/summarize 20 {notes}")
        assert "using 20 words:" in turn.content

    async def test_embed(self, session: Session, notes: Path) -> None:
        turn = await session.commands.handle(f"/embed {notes}")
        assert turn.content == f"This source was now embedded: {notes}"
        assert session.store.size() == 1

    async def test_import_failure(self, session: Session, tmp_path: Path) -> None:
        assert await session.commands.handle(f"/import {tmp_path / 'gone.md'}") is None
        assert "Cannot use" in output(session)

    async def test_web(self, session: Session, notes: Path) -> None:
        session.switches.embedding_enabled.set(False)
        session.websearch.search = AsyncMock(return_value=[str(notes)])
        turn = await session.commands.handle("/web 3 stroopwafel syrup")
        session.websearch.search.assert_awaited_once_with("stroopwafel syrup", 3)
        assert turn.content.startswith("Answer the the query stroopwafel syrup")
        assert f"{notes} as:\n" in turn.content
        assert str(notes) in session.links

    async def test_web_with_location(self, session: Session) -> None:
        session.switches.location.set(True)
        session.websearch.search = AsyncMock(return_value=[])
        assert await session.commands.handle("/web weather") is None
        query = session.websearch.search.await_args.args[0]
        assert query.startswith("weather You are at Berlin")

    async def test_links(self, session: Session) -> None:
        session.links.add("https://a.example")
        session.links.add("https://b.example")
        await session.commands.handle("/links")
        assert "2. https://b.example" in output(session)
        await session.commands.handle("/links clear 1")
        assert list(session.links) == ["https://b.example"]
        await session.commands.handle("/links clear")
        assert not session.links

    async def test_collection(self, session: Session, notes: Path) -> None:
        await session.commands.handle(f"/embed {notes}")
        await session.commands.handle("/collection change archive")
        assert session.store.collection == "archive"
        assert session.store.size() == 0
        await session.commands.handle("/collection change default")
        await session.commands.handle(f"/collection clear {notes}")
        assert session.store.size() == 0


class TestInfo:
    async def test_info(self, session: Session) -> None:
        await session.commands.handle("/info")
        text = output(session)
        assert "llama3.1" in text
        assert "Think mode is disabled." in text

    async def test_config(self, session: Session) -> None:
        await session.commands.handle("/config")
        assert "url: http://localhost:11434" in output(session)

    async def test_model_list(self, session: Session) -> None:
        await session.commands.handle("/model")
        assert "* llama3.1" in output(session)

    async def test_model_change(self, session: Session) -> None:
        await session.commands.handle("/model mxbai-embed-large")
        assert session.model == "mxbai-embed-large"
        assert session.capabilities == {"embedding"}
