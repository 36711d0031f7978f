"""Session toggles.

Three variants share one interface (``is_on``, ``toggle``, ``describe``):

- ``Switch``: a plain on/off flag
- ``CombinedSwitch``: a read-only flag computed from other flags
- ``StateSelector``: a named multi-valued selection with an "off" subset

Invalid selections raise ConfigError and leave the previous value in place.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from ollama_chat.config.schema import DOCUMENT_POLICIES, THINK_MODES
from ollama_chat.errors import ConfigError

if TYPE_CHECKING:
    from ollama_chat.config.schema import Config


@runtime_checkable
class Toggle(Protocol):
    """Capability shared by all session toggles."""

    def is_on(self) -> bool: ...

    def toggle(self) -> bool: ...

    def describe(self) -> str: ...


class Switch:
    """On/off flag with a status message for each state."""

    def __init__(self, value: bool, on_msg: str, off_msg: str) -> None:
        self.value = bool(value)
        self._messages = {True: on_msg, False: off_msg}

    def is_on(self) -> bool:
        return self.value

    def set(self, value: bool) -> None:
        self.value = bool(value)

    def toggle(self) -> bool:
        self.value = not self.value
        return self.value

    def describe(self) -> str:
        return self._messages[self.value]


class CombinedSwitch:
    """Flag derived from other flags; it cannot be toggled directly."""

    def __init__(self, compute: Callable[[], bool], on_msg: str, off_msg: str) -> None:
        self._compute = compute
        self._messages = {True: on_msg, False: off_msg}

    def is_on(self) -> bool:
        return bool(self._compute())

    def toggle(self) -> bool:
        raise ConfigError("A combined switch is derived from other switches and cannot be toggled.")

    def describe(self) -> str:
        return self._messages[self.is_on()]


class StateSelector:
    """Named selection from a fixed set of values.

    Values listed in ``off`` count as the selector being off. With
    ``allow_empty`` the set may be empty and any value can be selected
    (used for voices, whose list comes from config).
    """

    def __init__(
        self,
        name: str,
        states: Iterable[str],
        default: str | None = None,
        off: Iterable[str] = (),
        allow_empty: bool = False,
    ) -> None:
        self.name = name
        self.states = list(dict.fromkeys(str(s) for s in states))
        self.allow_empty = allow_empty
        self.off = set(off)
        if not self.states and not allow_empty:
            raise ConfigError(f"{name}: states cannot be empty")
        if default is None:
            self._selected = self.states[0] if self.states else ""
        else:
            self._selected = ""
            self.selected = default

    @property
    def selected(self) -> str:
        return self._selected

    @selected.setter
    def selected(self, value: str) -> None:
        value = str(value)
        if not self.allow_empty and value not in self.states:
            raise ConfigError(f"{self.name}: value has to be one of {', '.join(self.states)}.")
        self._selected = value

    def is_on(self) -> bool:
        return self._selected not in self.off

    def toggle(self) -> bool:
        """Advance to the next state, wrapping around."""
        if self.states:
            index = self.states.index(self._selected) if self._selected in self.states else -1
            self._selected = self.states[(index + 1) % len(self.states)]
        return self.is_on()

    def describe(self) -> str:
        return f"{self.name} is {self._selected}."

    def __str__(self) -> str:
        return self._selected


class Switches:
    """All toggles of one session, built from its Config."""

    def __init__(self, config: Config) -> None:
        self.stream = Switch(config.stream, "Streaming enabled.", "Streaming disabled.")
        self.think_loud = Switch(
            config.think.loud,
            "Thinking out loud, show thinking annotations.",
            "Thinking silently, don't show thinking annotations.",
        )
        self.markdown = Switch(
            config.markdown,
            "Using markdown to output content.",
            "Using plaintext for outputting content.",
        )
        self.voice = Switch(config.voice.enabled, "Voice output enabled.", "Voice output disabled.")
        self.embedding_enabled = Switch(
            config.embedding.enabled, "Embedding enabled.", "Embedding disabled."
        )
        self.embedding_paused = Switch(
            config.embedding.paused, "Embedding paused.", "Embedding resumed."
        )
        self.embedding = CombinedSwitch(
            lambda: self.embedding_enabled.is_on() and not self.embedding_paused.is_on(),
            "Embedding is currently performed.",
            "Embedding is currently not performed.",
        )
        self.location = Switch(
            config.location.enabled,
            "Location and localtime enabled.",
            "Location and localtime disabled.",
        )

        self.document_policy = StateSelector(
            "Document policy",
            DOCUMENT_POLICIES,
            default=config.document_policy,
            off=("ignoring",),
        )
        self.think_mode = StateSelector(
            "Think mode",
            THINK_MODES,
            default=config.think.mode,
            off=("disabled",),
        )
        self.voices = StateSelector(
            "Voice",
            config.voice.list,
            default=config.voice.default,
            allow_empty=True,
        )

    def all(self) -> dict[str, Toggle]:
        """Every toggle by name, for ``/info``."""
        return {
            "stream": self.stream,
            "markdown": self.markdown,
            "think_loud": self.think_loud,
            "voice": self.voice,
            "embedding": self.embedding,
            "location": self.location,
            "document_policy": self.document_policy,
            "think_mode": self.think_mode,
        }
