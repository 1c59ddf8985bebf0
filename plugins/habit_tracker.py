"""Habit Tracker: /habit check-ins answered with an LLM cheer."""

from __future__ import annotations

import json
import logging
import re
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from channels import Message, MessageType, respond, thread_owner
from providers import ChatProvider

from . import Plugin

log = logging.getLogger(__name__)

HELP_MESSAGE = """\
A command for tracking habits
Usage: /habit [OPTIONS]
Options:
-e str  set custom event (leetcode, workout, ...)
-t str  set timezone (Asia/Shanghai, ...)
-n str  notes, enclosed by double quotes "
-h      display help message
-v      get current version"""

DEFAULT_TIMEZONE = "America/Toronto"

_TRIGGER = re.compile(r"^\s*/habit", re.IGNORECASE)
_OPTION = re.compile(r'-(?P<opt>[etn])\s+(?:"(?P<note>[^"]+)"|(?P<param>\S+))|-(?P<flag>[hv])')


def preprocess(text: str) -> str:
    """Normalize curly quotes and strip HTML markup some clients add."""
    text = re.sub(r"[“”]", '"', text)
    text = text.replace("<br/>", "\n")
    return re.sub(r"<a[^>]*>([^<]+)</a>", r"\1", text)


def parse_habit_command(command: str) -> dict:
    options: dict = {}
    for match in _OPTION.finditer(command):
        if match["flag"] == "h":
            options["help"] = True
        elif match["flag"] == "v":
            options["version"] = True
        opt = match["opt"]
        value = (match["note"] or match["param"] or "").strip()
        if opt == "e":
            options["event"] = value
        elif opt == "t":
            options["timezone"] = value
        elif opt == "n":
            options["note"] = value
    return options


class HabitTracker(Plugin):
    name = "Habit Tracker"
    version = "v0.0.1"
    description = "A habit tracking bot that always cheers you up! Send /habit -h for more info."

    def __init__(self, provider: ChatProvider, default_timezone: str = DEFAULT_TIMEZONE):
        super().__init__()
        self.provider = provider
        self.default_timezone = default_timezone
        self.validators = {MessageType.Text: lambda message: bool(_TRIGGER.match(message.text))}

    async def handle(self, message: Message) -> None:
        if message.type != MessageType.Text:
            return
        options = parse_habit_command(preprocess(message.text))

        try:
            tz = ZoneInfo(options.get("timezone") or self.default_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            log.info("Habit check-in with unknown timezone: %s", options.get("timezone"))
            await respond(message, HELP_MESSAGE)
            return

        if options.get("help"):
            await respond(message, HELP_MESSAGE)
            return
        if options.get("version"):
            await respond(message, self.version)
            return

        summary = {
            "time": message.date.astimezone(tz).strftime("%m/%d/%Y, %I:%M:%S %p"),
            "name": message.talker.name,
            "event": options.get("event"),
            "note": options.get("note"),
        }
        answer = await self.provider.generate_response(
            json.dumps(summary, ensure_ascii=False), thread_owner(message), assistant="habit_tracker",
        )
        await respond(message, answer)
