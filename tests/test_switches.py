"""Tests for session toggles."""

from __future__ import annotations

import pytest

from ollama_chat.core.switches import CombinedSwitch, StateSelector, Switch, Switches, Toggle
from ollama_chat.errors import ConfigError


class TestSwitch:
    def test_toggle_and_describe(self) -> None:
        switch = Switch(False, "on.", "off.")
        assert switch.describe() == "off."
        assert switch.toggle() is True
        assert switch.is_on()
        assert switch.describe() == "on."

    def test_set(self) -> None:
        switch = Switch(True, "on.", "off.")
        switch.set(False)
        assert not switch.is_on()


class TestCombinedSwitch:
    def test_follows_its_inputs(self) -> None:
        a = Switch(True, "", "")
        b = Switch(False, "", "")
        combined = CombinedSwitch(lambda: a.is_on() and not b.is_on(), "yes", "no")
        assert combined.is_on()
        b.toggle()
        assert not combined.is_on()
        assert combined.describe() == "no"

    def test_cannot_be_toggled(self) -> None:
        combined = CombinedSwitch(lambda: True, "", "")
        with pytest.raises(ConfigError):
            combined.toggle()


class TestStateSelector:
    """Test named multi-valued selections."""

    def test_off_values(self) -> None:
        selector = StateSelector("Mode", ["a", "b", "c"], default="b", off=["a"])
        assert selector.is_on()
        selector.selected = "a"
        assert not selector.is_on()

    def test_invalid_value_keeps_previous(self) -> None:
        selector = StateSelector("Mode", ["a", "b"], default="b")
        with pytest.raises(ConfigError, match="one of a, b"):
            selector.selected = "z"
        assert selector.selected == "b"

    def test_invalid_default(self) -> None:
        with pytest.raises(ConfigError):
            StateSelector("Mode", ["a"], default="z")

    def test_empty_states_need_allow_empty(self) -> None:
        with pytest.raises(ConfigError):
            StateSelector("Voice", [])
        selector = StateSelector("Voice", [], default="Samantha", allow_empty=True)
        assert selector.selected == "Samantha"
        selector.selected = "Daniel"
        assert str(selector) == "Daniel"

    def test_toggle_cycles(self) -> None:
        selector = StateSelector("Mode", ["a", "b"], default="b")
        selector.toggle()
        assert selector.selected == "a"
        assert selector.describe() == "Mode is a."


class TestSwitches:
    """Test the toggles built from a Config."""

    def test_defaults_from_config(self, switches: Switches) -> None:
        assert switches.stream.is_on()
        assert not switches.markdown.is_on()
        assert switches.document_policy.selected == "importing"
        assert not switches.think_mode.is_on()

    def test_embedding_combines_enabled_and_paused(self, switches: Switches) -> None:
        assert switches.embedding.is_on()
        switches.embedding_paused.toggle()
        assert not switches.embedding.is_on()
        switches.embedding_paused.toggle()
        switches.embedding_enabled.set(False)
        assert not switches.embedding.is_on()

    def test_ignoring_is_off(self, switches: Switches) -> None:
        switches.document_policy.selected = "ignoring"
        assert not switches.document_policy.is_on()

    def test_all_share_the_interface(self, switches: Switches) -> None:
        toggles = switches.all()
        assert "document_policy" in toggles
        assert all(isinstance(t, Toggle) for t in toggles.values())
