"""Plugin registry: registration, admission control, dispatch, admin commands."""

from __future__ import annotations

import inspect
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

from channels import Message, MessageType, is_from_group_chat, respond, target_contact_name

from .commandline import parse_command_line

log = logging.getLogger(__name__)

Validator = Callable[[Message], bool | Awaitable[bool]]


class UnauthorizedError(Exception):
    """Raised when a non-admin attempts a privileged plugin command."""


class InvalidCommandLineArgument(Exception):
    """Raised for malformed /plugin commands (already answered in chat)."""


class PluginNotRegistered(KeyError):
    """Raised when operating on a plugin the registry does not know."""


class Plugin(ABC):
    """Base class for message handlers.

    Subclasses set name/version/description and fill ``validators`` with
    one predicate per message type they handle.
    """

    name: str = ""
    version: str = ""
    description: str = ""

    def __init__(self) -> None:
        self.validators: dict[MessageType, Validator] = {}

    @abstractmethod
    async def handle(self, message: Message) -> None:
        ...


@dataclass
class PluginMetaData:
    plugin_id: int        # 1-based registration index
    enabled: bool = True


HELP_MESSAGE = """\
Plugin Manager
• Usage: /plugin [OPTION]
• Option:
-l | --list     list all plugins
-e | --enable  [N] enable plugin number N
-d | --disable [N] disable plugin number N
-h | --help     display help message
• Example:
/plugin --list
/plugin --disable 2
/plugin -e 1
/plugin -h"""

_HELP_HINT = "Enter /plugin -h for help"
_TRIGGER = re.compile(r"^\s*/plugin\b", re.IGNORECASE)


class PluginRegistry:
    """Holds plugins in registration order and routes each message to at most one."""

    def __init__(
        self,
        group_whitelist: Iterable[str] = (),
        contact_whitelist: Iterable[str] = (),
        accepted_types: Iterable[MessageType] | None = None,
    ):
        self.group_whitelist = set(group_whitelist)
        self.contact_whitelist = set(contact_whitelist)
        self.accepted_types = set(accepted_types) if accepted_types is not None else None
        self._plugins: list[Plugin] = []
        self._metadata: dict[int, PluginMetaData] = {}
        self._mappings: dict[MessageType, list[Plugin]] = {}

    # ─── Registration ──────────────────────────────────────────────

    def register(self, plugin: Plugin) -> PluginMetaData:
        """Register a plugin after all previously registered ones."""
        if any(p is plugin for p in self._plugins):
            raise ValueError(f"Plugin {plugin.name!r} is already registered")
        self._plugins.append(plugin)
        meta = PluginMetaData(plugin_id=len(self._plugins))
        self._metadata[meta.plugin_id] = meta
        for msg_type in plugin.validators:
            self._mappings.setdefault(msg_type, []).append(plugin)
        log.info("Plugin registered: #%d %s %s", meta.plugin_id, plugin.name, plugin.version)
        return meta

    def metadata(self, plugin: Plugin) -> PluginMetaData:
        for index, p in enumerate(self._plugins, start=1):
            if p is plugin:
                return self._metadata[index]
        raise PluginNotRegistered(f"Plugin ({plugin.name}) is not registered!")

    def enable_plugin(self, plugin: Plugin) -> bool:
        """Enable a plugin. Returns False if it was already enabled."""
        meta = self.metadata(plugin)
        if meta.enabled:
            return False
        meta.enabled = True
        return True

    def disable_plugin(self, plugin: Plugin) -> bool:
        """Disable a plugin. Returns False if it was already disabled."""
        meta = self.metadata(plugin)
        if not meta.enabled:
            return False
        meta.enabled = False
        return True

    def list_all_plugins(self, enabled_only: bool = False) -> list[Plugin]:
        if not enabled_only:
            return list(self._plugins)
        return [p for i, p in enumerate(self._plugins, start=1) if self._metadata[i].enabled]

    def plugins_for(self, msg_type: MessageType) -> list[Plugin]:
        return list(self._mappings.get(msg_type, []))

    # ─── Admission control ─────────────────────────────────────────

    def should_process(self, message: Message) -> bool:
        """Media-type gate and source whitelist gate."""
        if self.accepted_types is not None and message.type not in self.accepted_types:
            return False
        if is_from_group_chat(message):
            return message.room.topic in self.group_whitelist
        return target_contact_name(message) in self.contact_whitelist

    # ─── Dispatch ──────────────────────────────────────────────────

    async def dispatch(self, message: Message) -> None:
        """Route a message to the first enabled plugin whose validator matches.

        Validator and handler failures are logged and end the dispatch of
        this message. Registry inconsistencies raise RuntimeError.
        """
        if not self.should_process(message):
            return

        if message.type == MessageType.Text and _TRIGGER.match(message.text):
            try:
                await self._plugin_manager(message)
            except (UnauthorizedError, InvalidCommandLineArgument) as e:
                log.info("Plugin manager: %s", e)
            except Exception:
                log.exception("Plugin manager failed on %r", message.text)
                await self._reply_failure(
                    message, "Something went wrong with the plugin manager. Please try again later.",
                )
            return

        candidates = self._mappings.get(message.type)
        if not candidates:
            return

        for plugin in candidates:
            try:
                meta = self.metadata(plugin)
            except PluginNotRegistered as e:
                raise RuntimeError(f"Failed to dispatch plugin: {plugin.name}, metadata is missing") from e
            if not meta.enabled:
                continue

            validator = plugin.validators.get(message.type)
            if validator is None:
                raise RuntimeError(
                    f"Failed to dispatch plugin: {plugin.name}, "
                    f"validator for type {message.type.name} is undefined"
                )
            try:
                matched = validator(message)
                if inspect.isawaitable(matched):
                    matched = await matched
            except Exception:
                log.exception("Validator of plugin %s failed on %s", plugin.name, message)
                return
            if not matched:
                continue

            log.debug("Dispatching plugin: %s", plugin.name)
            try:
                await plugin.handle(message)
            except Exception:
                log.exception("Plugin %s failed", plugin.name)
                await self._reply_failure(
                    message,
                    f"Something went wrong with the plugin: {plugin.name}, please try again later",
                )
            return

    async def _reply_failure(self, message: Message, text: str) -> None:
        try:
            await respond(message, text)
        except Exception as e:
            log.error("Failure reply to %s not delivered: %s", message, e)

    # ─── Admin command ─────────────────────────────────────────────

    def _plugin_list_text(self) -> str:
        entries = []
        for index, plugin in enumerate(self._plugins, start=1):
            state = "[Enabled] ✅" if self._metadata[index].enabled else "[Disabled] ❌"
            entries.append(
                f"{index}. {state}\n"
                f"• Name: {plugin.name}\n"
                f"• Version: {plugin.version}\n"
                f"• Description: {plugin.description}\n"
            )
        return "Plugin List 👇\n\n" + "\n".join(entries)

    async def _authorize(self, message: Message) -> None:
        """Only the logged-in account itself may change plugin state."""
        me = message.session.current_user if message.session is not None else None
        if me is None or message.talker.name != me.name:
            await respond(message, "Permission denied. You are not an admin!")
            raise UnauthorizedError(f"Unauthorized user for plugin manager: {message.talker.name}")

    async def _reject(self, message: Message, error: str, hint: bool = True) -> None:
        await respond(message, f"{error}\n{_HELP_HINT}" if hint else error)
        raise InvalidCommandLineArgument(error)

    async def _plugin_manager(self, message: Message) -> None:
        try:
            args = parse_command_line(message.text)
        except ValueError as e:
            await self._reject(message, f"[ERROR] {e}")
        if not args or not _TRIGGER.match(args[0].value or ""):
            raise RuntimeError(f"Error parsing the command: {message.text}")
        if len(args) > 2:
            await self._reject(
                message, f"[ERROR] Too many argument pairs. Expecting 1, got {len(args) - 1}",
            )
        flag = args[1].flag if len(args) == 2 else ""
        if not flag:
            await self._reject(message, "[ERROR] A flag must be provided!")
        value = args[1].value

        if flag in ("help", "h"):
            await respond(message, HELP_MESSAGE)
            return
        if flag in ("list", "l"):
            await respond(message, self._plugin_list_text())
            return
        if flag not in ("enable", "e", "disable", "d"):
            await self._reject(message, f"Invalid flag: {flag}")

        await self._authorize(message)

        if not value:
            await self._reject(
                message, "[ERROR] Got empty argument. A number is required for this flag.", hint=False,
            )
        try:
            number = int(value)
        except ValueError:
            await self._reject(message, f"[ERROR] Expecting a number for flag {flag}, got {value}", hint=False)
        total = len(self._plugins)
        if not 1 <= number <= total:
            await self._reject(
                message, f"[ERROR] Expecting a plugin number from 1 to {total}, got {number}", hint=False,
            )

        plugin = self._plugins[number - 1]
        if flag in ("enable", "e"):
            if not self.enable_plugin(plugin):
                await respond(message, f"Plugin #{number} ({plugin.name}) is already enabled")
                return
            log.info("Plugin #%d (%s) enabled by %s", number, plugin.name, message.talker.name)
            await respond(message, f"[SUCCESS] Plugin #{number} ({plugin.name}) has been enabled")
        else:
            if not self.disable_plugin(plugin):
                await respond(message, f"Plugin #{number} ({plugin.name}) is already disabled")
                return
            log.info("Plugin #%d (%s) disabled by %s", number, plugin.name, message.talker.name)
            await respond(message, f"[SUCCESS] Plugin #{number} ({plugin.name}) has been disabled")
