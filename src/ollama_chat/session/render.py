"""Terminal presentation of messages and response statistics."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Group, RenderableType
from rich.markdown import Markdown
from rich.text import Text

if TYPE_CHECKING:
    from ollama_chat.core.messages import ChatResponse, Message

ROLE_COLORS = {"user": 172, "assistant": 111, "system": 213}
OTHER_ROLE_COLOR = 210
STATS_COLOR = 111

THINK_ICON = "💭"
TALK_ICON = "💬"
STATS_ICON = "📊"


def role_style(role: str) -> str:
    return f"bold color({ROLE_COLORS.get(role, OTHER_ROLE_COLOR)})"


def message_type(images: list[str] | None) -> str:
    """Icon for a message: 📸 with images, 📨 without."""
    return "📸" if images else "📨"


def role_header(role: str, images: list[str] | None = None) -> Text:
    header = Text(f"{message_type(images)} ")
    header.append(f"{role}:", style=role_style(role))
    return header


def think_annotate(text: str | None) -> str | None:
    if not text:
        return None
    return f"{THINK_ICON}\n{text}\n"


def talk_annotate(text: str | None, thinking_shown: bool) -> str | None:
    """Mark spoken content, but only when thinking is shown next to it."""
    if not text:
        return None
    if thinking_shown:
        return f"{TALK_ICON}\n{text}\n"
    return text


def _body(text: str, markdown: bool) -> RenderableType:
    return Markdown(text) if markdown else Text(text)


def message_renderable(
    message: Message,
    markdown: bool = True,
    show_thinking: bool = False,
) -> RenderableType:
    """Header plus thinking and content of one message."""
    role = message.role.value
    parts: list[RenderableType] = [role_header(role, message.images)]
    thinking = think_annotate(message.thinking) if show_thinking else None
    if thinking:
        parts.append(_body(thinking, markdown))
    content = talk_annotate(message.content, thinking is not None)
    if content:
        parts.append(_body(content, markdown))
    if message.images:
        parts.append(Text(f"Images: {len(message.images)} attached", style="italic"))
    return Group(*parts)


def format_duration(seconds: float) -> str:
    """``H:MM:SS.mmm``."""
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(int(minutes), 60)
    return f"{hours}:{minutes:02d}:{secs:06.3f}"


def _rate(count: int, seconds: float) -> str:
    if seconds <= 0:
        return "n/a"
    return f"{count / seconds:.2f} t/s"


def eval_stats(response: ChatResponse) -> Text:
    """Single stats line from the counters of a final response event."""
    eval_duration = (response.eval_duration or 0) / 1e9
    prompt_eval_duration = (response.prompt_eval_duration or 0) / 1e9
    eval_count = response.eval_count or 0
    prompt_eval_count = response.prompt_eval_count or 0

    text = Text(f"{STATS_ICON} ", style=f"color({STATS_COLOR})")
    fields = [
        ("eval_duration", format_duration(eval_duration), False),
        ("eval_count", str(eval_count), False),
        ("eval_rate", _rate(eval_count, eval_duration), True),
        ("prompt_eval_duration", format_duration(prompt_eval_duration), False),
        ("prompt_eval_count", str(prompt_eval_count), False),
        ("prompt_eval_rate", _rate(prompt_eval_count, prompt_eval_duration), True),
        ("total_duration", format_duration((response.total_duration or 0) / 1e9), False),
        ("load_duration", format_duration((response.load_duration or 0) / 1e9), False),
    ]
    for i, (name, value, bold) in enumerate(fields):
        if i:
            text.append(" ")
        text.append(f"{name}=", style=f"color({STATS_COLOR})")
        text.append(value, style=f"bold color({STATS_COLOR})" if bold else f"color({STATS_COLOR})")
    return text
