"""Built-in plugins and their registration order.

Order matters: plugins are tried against an incoming message in the order
they were registered, so catch-all rules belong at the end.
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import TYPE_CHECKING

from providers import ChatProvider

from . import Plugin, PluginRegistry
from .chatbot import ChatBot
from .habit_tracker import HabitTracker
from .holiday import Holiday, HolidayBot
from .ping import Ping

if TYPE_CHECKING:
    from config import Config

log = logging.getLogger(__name__)


def load_holidays(raw: list[dict], image_dir: Path) -> list[Holiday]:
    holidays = []
    for entry in raw:
        start = entry["start"]
        if not isinstance(start, date):
            start = date.fromisoformat(str(start))
        image = Path(entry["image"])
        if not image.is_absolute():
            image = image_dir / image
        holidays.append(Holiday(
            name=entry["name"],
            keywords=list(entry["keywords"]),
            image=image,
            start=start,
            span=int(entry.get("span", 1)),
        ))
    return holidays


def build_plugins(config: Config, provider: ChatProvider | None) -> list[Plugin]:
    """Instantiate the built-in plugins in registration order.

    LLM-backed plugins are left out when no provider is configured.
    """
    plugins: list[Plugin] = []
    if provider is not None:
        plugins.append(ChatBot(provider, config.chatbot_names, config.audio_response))
        plugins.append(HabitTracker(provider, config.habit_timezone))
    else:
        log.warning("No LLM provider, skipping Chat Bot and Habit Tracker")
    plugins.append(HolidayBot(load_holidays(config.holidays, config.image_dir)))
    plugins.append(Ping())
    return plugins


def register_plugins(registry: PluginRegistry, plugins: list[Plugin]) -> None:
    for plugin in plugins:
        registry.register(plugin)
