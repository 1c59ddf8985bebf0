"""Tests for plugins/__init__.py: registration, admission control, dispatch,
and the /plugin admin command."""

import logging
from unittest.mock import AsyncMock, patch

import pytest

from channels import MessageType, respond
from plugins import (
    HELP_MESSAGE,
    Plugin,
    PluginNotRegistered,
    PluginRegistry,
)


class RecordingPlugin(Plugin):
    def __init__(self, name, match=True, types=(MessageType.Text,), fail=False, is_async=False):
        super().__init__()
        self.name = name
        self.version = "v1.0.0"
        self.description = f"{name} description"
        self.match = match
        self.fail = fail
        self.handled = []
        self.validator_calls = 0
        validator = self._async_validate if is_async else self._validate
        self.validators = {t: validator for t in types}

    def _validate(self, message):
        self.validator_calls += 1
        return self.match

    async def _async_validate(self, message):
        self.validator_calls += 1
        return self.match

    async def handle(self, message):
        self.handled.append(message)
        if self.fail:
            raise RuntimeError("boom")
        await respond(message, f"{self.name} handled")


def _registry(*plugins, accepted_types=(MessageType.Text, MessageType.Audio)):
    reg = PluginRegistry(
        group_whitelist=["Team"],
        contact_whitelist=["alice", "admin"],
        accepted_types=accepted_types,
    )
    for p in plugins:
        reg.register(p)
    return reg


# ─── Registration ─────────────────────────────────────────────────


class TestRegistration:
    def test_ids_follow_registration_order(self):
        reg = PluginRegistry()
        a, b = RecordingPlugin("A"), RecordingPlugin("B")
        assert reg.register(a).plugin_id == 1
        assert reg.register(b).plugin_id == 2
        assert reg.metadata(b).plugin_id == 2

    def test_default_enabled(self):
        reg = _registry(a := RecordingPlugin("A"))
        assert reg.metadata(a).enabled is True

    def test_duplicate_registration_raises(self):
        a = RecordingPlugin("A")
        reg = _registry(a)
        with pytest.raises(ValueError, match="already registered"):
            reg.register(a)

    def test_same_name_different_objects_allowed(self):
        reg = _registry(RecordingPlugin("A"), RecordingPlugin("A"))
        assert len(reg.list_all_plugins()) == 2

    def test_unregistered_metadata_raises(self):
        reg = PluginRegistry()
        with pytest.raises(PluginNotRegistered):
            reg.metadata(RecordingPlugin("ghost"))

    def test_enable_unregistered_raises(self):
        reg = PluginRegistry()
        with pytest.raises(PluginNotRegistered):
            reg.enable_plugin(RecordingPlugin("ghost"))

    def test_mappings_per_type(self):
        text = RecordingPlugin("text")
        both = RecordingPlugin("both", types=(MessageType.Text, MessageType.Audio))
        reg = _registry(text, both)
        assert reg.plugins_for(MessageType.Text) == [text, both]
        assert reg.plugins_for(MessageType.Audio) == [both]
        assert reg.plugins_for(MessageType.Image) == []

    def test_list_all_plugins_filter(self):
        a, b, c = RecordingPlugin("A"), RecordingPlugin("B"), RecordingPlugin("C")
        reg = _registry(a, b, c)
        reg.disable_plugin(b)
        assert reg.list_all_plugins() == [a, b, c]
        assert reg.list_all_plugins(enabled_only=True) == [a, c]


class TestEnableDisable:
    def test_enable_is_idempotent(self):
        a = RecordingPlugin("A")
        reg = _registry(a)
        assert reg.enable_plugin(a) is False
        assert reg.metadata(a).enabled is True

    def test_disable_then_disable_again(self):
        a = RecordingPlugin("A")
        reg = _registry(a)
        assert reg.disable_plugin(a) is True
        assert reg.disable_plugin(a) is False
        assert reg.metadata(a).enabled is False

    def test_disable_then_enable(self):
        a = RecordingPlugin("A")
        reg = _registry(a)
        reg.disable_plugin(a)
        assert reg.enable_plugin(a) is True
        assert reg.metadata(a).enabled is True


# ─── Admission control ────────────────────────────────────────────


class TestShouldProcess:
    def test_whitelisted_room(self, make_message):
        reg = _registry()
        assert reg.should_process(make_message("x", room="Team")) is True

    def test_unknown_room(self, make_message):
        reg = _registry()
        assert reg.should_process(make_message("x", room="Other")) is False

    def test_whitelist_is_case_sensitive(self, make_message):
        reg = _registry()
        assert reg.should_process(make_message("x", room="team")) is False
        assert reg.should_process(make_message("x", talker="Alice")) is False

    def test_direct_message_uses_talker(self, make_message):
        reg = _registry()
        assert reg.should_process(make_message("x", talker="alice")) is True
        assert reg.should_process(make_message("x", talker="mallory")) is False

    def test_self_sent_uses_listener(self, make_message):
        reg = _registry()
        msg = make_message("x", talker="mallory", self_sent=True, listener="alice")
        assert reg.should_process(msg) is True
        msg = make_message("x", talker="alice", self_sent=True, listener="mallory")
        assert reg.should_process(msg) is False

    def test_media_gate(self, make_message):
        reg = _registry()
        msg = make_message("", room="Team", msg_type=MessageType.Image)
        assert reg.should_process(msg) is False

    def test_no_media_gate_when_unset(self, make_message):
        reg = _registry(accepted_types=None)
        msg = make_message("", room="Team", msg_type=MessageType.Image)
        assert reg.should_process(msg) is True


# ─── Dispatch ─────────────────────────────────────────────────────


class TestDispatch:
    @pytest.mark.asyncio
    async def test_first_match_wins(self, make_message, session):
        a, b = RecordingPlugin("A"), RecordingPlugin("B")
        reg = _registry(a, b)
        await reg.dispatch(make_message("hello", room="Team"))
        assert len(a.handled) == 1
        assert b.handled == []
        assert b.validator_calls == 0
        assert session.sent == [("Team", "A handled")]

    @pytest.mark.asyncio
    async def test_falls_through_to_next_match(self, make_message):
        a, b = RecordingPlugin("A", match=False), RecordingPlugin("B")
        reg = _registry(a, b)
        await reg.dispatch(make_message("hello", room="Team"))
        assert a.validator_calls == 1
        assert a.handled == []
        assert len(b.handled) == 1

    @pytest.mark.asyncio
    async def test_disabled_plugin_validator_not_called(self, make_message):
        a, b = RecordingPlugin("A"), RecordingPlugin("B")
        reg = _registry(a, b)
        reg.disable_plugin(a)
        await reg.dispatch(make_message("hello", room="Team"))
        assert a.validator_calls == 0
        assert a.handled == []
        assert len(b.handled) == 1

    @pytest.mark.asyncio
    async def test_async_validator_awaited(self, make_message):
        a = RecordingPlugin("A", match=False, is_async=True)
        b = RecordingPlugin("B", is_async=True)
        reg = _registry(a, b)
        await reg.dispatch(make_message("hello", room="Team"))
        assert a.validator_calls == 1
        assert a.handled == []
        assert len(b.handled) == 1

    @pytest.mark.asyncio
    async def test_no_match_drops_silently(self, make_message, session):
        a = RecordingPlugin("A", match=False)
        reg = _registry(a)
        await reg.dispatch(make_message("hello", room="Team"))
        assert session.sent == []

    @pytest.mark.asyncio
    async def test_unmapped_type_returns(self, make_message, session):
        a = RecordingPlugin("A")
        reg = _registry(a)
        await reg.dispatch(make_message("", room="Team", msg_type=MessageType.Audio))
        assert a.validator_calls == 0
        assert session.sent == []

    @pytest.mark.asyncio
    async def test_handler_error_reported_no_fallback(self, make_message, session):
        a, b = RecordingPlugin("A", fail=True), RecordingPlugin("B")
        reg = _registry(a, b)
        await reg.dispatch(make_message("hello", room="Team"))
        assert b.validator_calls == 0
        assert session.texts() == ["Something went wrong with the plugin: A, please try again later"]

    @pytest.mark.asyncio
    async def test_admission_blocks_before_validators(self, make_message, session):
        a = RecordingPlugin("A")
        reg = _registry(a)
        await reg.dispatch(make_message("hello", room="Strangers"))
        assert a.validator_calls == 0
        assert session.sent == []

    @pytest.mark.asyncio
    async def test_admission_blocks_admin_command(self, make_message, session):
        reg = _registry(RecordingPlugin("A"))
        await reg.dispatch(make_message("/plugin --list", talker="admin", room="Strangers"))
        assert session.sent == []

    @pytest.mark.asyncio
    async def test_missing_validator_is_programmer_error(self, make_message):
        a = RecordingPlugin("A")
        reg = _registry(a)
        a.validators.clear()
        with pytest.raises(RuntimeError, match="validator"):
            await reg.dispatch(make_message("hello", room="Team"))

    @pytest.mark.asyncio
    async def test_unregistered_mapped_plugin_is_programmer_error(self, make_message):
        reg = _registry(RecordingPlugin("A"))
        reg._mappings[MessageType.Text].insert(0, RecordingPlugin("stray"))
        with pytest.raises(RuntimeError, match="metadata"):
            await reg.dispatch(make_message("hello", room="Team"))

    @pytest.mark.asyncio
    async def test_validator_error_contained(self, make_message, session, caplog):
        a, b = RecordingPlugin("A"), RecordingPlugin("B")
        a.validators = {MessageType.Text: AsyncMock(side_effect=ConnectionError("transcription service down"))}
        reg = _registry(a, b)
        with caplog.at_level(logging.ERROR, logger="plugins"):
            await reg.dispatch(make_message("hello", room="Team"))
        assert a.handled == []
        assert b.validator_calls == 0
        assert session.sent == []
        assert "Validator of plugin A failed" in caplog.text

    @pytest.mark.asyncio
    async def test_failure_reply_not_delivered_is_contained(self, make_message, session, caplog):
        session.say = AsyncMock(side_effect=ConnectionError("transport offline"))
        a = RecordingPlugin("A", fail=True)
        reg = _registry(a)
        with caplog.at_level(logging.ERROR, logger="plugins"):
            await reg.dispatch(make_message("hello", room="Team"))
        assert len(a.handled) == 1
        assert "Plugin A failed" in caplog.text
        assert "transport offline" in caplog.text

    @pytest.mark.asyncio
    async def test_admin_reply_not_delivered_is_contained(self, make_message, session):
        session.say = AsyncMock(side_effect=ConnectionError("transport offline"))
        reg = _registry(RecordingPlugin("A"))
        await reg.dispatch(make_message("/plugin -l", talker="alice", room="Team"))
        assert session.say.await_count == 2

    @pytest.mark.asyncio
    async def test_self_sent_reply_goes_to_listener(self, make_message, session):
        reg = _registry(RecordingPlugin("A"))
        await reg.dispatch(make_message("hello", talker="admin", self_sent=True, listener="alice"))
        assert session.sent == [("alice", "A handled")]


# ─── Admin command ────────────────────────────────────────────────


class TestPluginManager:
    def _reg(self):
        return _registry(RecordingPlugin("A"), RecordingPlugin("B"))

    @pytest.mark.asyncio
    async def test_list(self, make_message, session):
        reg = self._reg()
        reg.disable_plugin(reg.list_all_plugins()[1])
        await reg.dispatch(make_message("/plugin --list", talker="admin", room="Team"))
        assert session.sent == [("Team", (
            "Plugin List 👇\n\n"
            "1. [Enabled] ✅\n"
            "• Name: A\n"
            "• Version: v1.0.0\n"
            "• Description: A description\n"
            "\n"
            "2. [Disabled] ❌\n"
            "• Name: B\n"
            "• Version: v1.0.0\n"
            "• Description: B description\n"
        ))]

    @pytest.mark.asyncio
    async def test_list_allowed_for_anyone(self, make_message, session):
        reg = self._reg()
        await reg.dispatch(make_message("/plugin -l", talker="alice", room="Team"))
        assert session.texts()[0].startswith("Plugin List")

    @pytest.mark.asyncio
    async def test_admin_command_not_seen_by_plugins(self, make_message):
        reg = self._reg()
        await reg.dispatch(make_message("/plugin -l", talker="alice", room="Team"))
        assert all(p.validator_calls == 0 for p in reg.list_all_plugins())

    @pytest.mark.asyncio
    async def test_trigger_case_insensitive(self, make_message, session):
        reg = self._reg()
        await reg.dispatch(make_message("  /PLUGIN -l", talker="alice", room="Team"))
        assert session.texts()[0].startswith("Plugin List")

    @pytest.mark.asyncio
    async def test_longer_word_is_not_trigger(self, make_message, session):
        reg = self._reg()
        await reg.dispatch(make_message("/plugins", talker="alice", room="Team"))
        assert session.texts() == ["A handled"]

    @pytest.mark.asyncio
    async def test_help(self, make_message, session):
        reg = self._reg()
        await reg.dispatch(make_message("/plugin --help", talker="alice", room="Team"))
        assert session.texts() == [HELP_MESSAGE]

    @pytest.mark.asyncio
    async def test_non_admin_cannot_disable(self, make_message, session):
        reg = self._reg()
        await reg.dispatch(make_message("/plugin --disable 1", talker="alice", room="Team"))
        assert session.texts() == ["Permission denied. You are not an admin!"]
        assert reg.metadata(reg.list_all_plugins()[0]).enabled is True

    @pytest.mark.asyncio
    async def test_admin_disable_and_enable(self, make_message, session):
        reg = self._reg()
        a = reg.list_all_plugins()[0]
        await reg.dispatch(make_message("/plugin --disable 1", talker="admin", room="Team"))
        assert reg.metadata(a).enabled is False
        await reg.dispatch(make_message("/plugin -d 1", talker="admin", room="Team"))
        await reg.dispatch(make_message("/plugin -e 1", talker="admin", room="Team"))
        assert reg.metadata(a).enabled is True
        assert session.texts() == [
            "[SUCCESS] Plugin #1 (A) has been disabled",
            "Plugin #1 (A) is already disabled",
            "[SUCCESS] Plugin #1 (A) has been enabled",
        ]

    @pytest.mark.asyncio
    async def test_enable_already_enabled(self, make_message, session):
        reg = self._reg()
        await reg.dispatch(make_message("/plugin --enable 2", talker="admin", room="Team"))
        assert session.texts() == ["Plugin #2 (B) is already enabled"]

    @pytest.mark.asyncio
    async def test_too_many_pairs(self, make_message, session):
        reg = self._reg()
        await reg.dispatch(make_message("/plugin -l -h", talker="admin", room="Team"))
        assert session.texts() == [
            "[ERROR] Too many argument pairs. Expecting 1, got 2\nEnter /plugin -h for help"
        ]

    @pytest.mark.asyncio
    async def test_no_flag(self, make_message, session):
        reg = self._reg()
        await reg.dispatch(make_message("/plugin", talker="admin", room="Team"))
        assert session.texts() == ["[ERROR] A flag must be provided!\nEnter /plugin -h for help"]

    @pytest.mark.asyncio
    async def test_bare_value_is_not_a_flag(self, make_message, session):
        reg = self._reg()
        await reg.dispatch(make_message("/plugin 2", talker="admin", room="Team"))
        assert session.texts() == ["[ERROR] A flag must be provided!\nEnter /plugin -h for help"]

    @pytest.mark.asyncio
    async def test_invalid_flag(self, make_message, session):
        reg = self._reg()
        await reg.dispatch(make_message("/plugin --frobnicate", talker="alice", room="Team"))
        assert session.texts() == ["Invalid flag: frobnicate\nEnter /plugin -h for help"]

    @pytest.mark.asyncio
    async def test_missing_number(self, make_message, session):
        reg = self._reg()
        await reg.dispatch(make_message("/plugin -e", talker="admin", room="Team"))
        assert session.texts() == ["[ERROR] Got empty argument. A number is required for this flag."]

    @pytest.mark.asyncio
    async def test_non_numeric(self, make_message, session):
        reg = self._reg()
        await reg.dispatch(make_message("/plugin -e two", talker="admin", room="Team"))
        assert session.texts() == ["[ERROR] Expecting a number for flag e, got two"]

    @pytest.mark.asyncio
    async def test_out_of_range(self, make_message, session):
        reg = self._reg()
        await reg.dispatch(make_message("/plugin --disable 5", talker="admin", room="Team"))
        await reg.dispatch(make_message("/plugin --disable 0", talker="admin", room="Team"))
        assert session.texts() == [
            "[ERROR] Expecting a plugin number from 1 to 2, got 5",
            "[ERROR] Expecting a plugin number from 1 to 2, got 0",
        ]

    @pytest.mark.asyncio
    async def test_unbalanced_quotes(self, make_message, session):
        reg = self._reg()
        await reg.dispatch(make_message('/plugin -e "1', talker="admin", room="Team"))
        assert len(session.texts()) == 1
        assert session.texts()[0].startswith("[ERROR]")

    @pytest.mark.asyncio
    async def test_unexpected_error_generic_reply(self, make_message, session):
        reg = self._reg()
        with patch.object(reg, "_plugin_list_text", side_effect=KeyError("oops")):
            await reg.dispatch(make_message("/plugin -l", talker="alice", room="Team"))
        assert session.texts() == [
            "Something went wrong with the plugin manager. Please try again later."
        ]
