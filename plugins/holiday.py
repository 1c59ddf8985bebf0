"""Holiday Bot: answers holiday greetings with a picture around the holiday."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path

from channels import FileBox, Message, MessageType, respond

from . import Plugin

log = logging.getLogger(__name__)

GRACE_DAYS = 2


@dataclass
class Holiday:
    name: str
    keywords: list[str]
    image: Path
    start: date
    span: int = 1     # days

    def __post_init__(self):
        self.pattern = re.compile(".*".join(re.escape(k) for k in self.keywords))

    def in_period(self, day: date) -> bool:
        first = self.start - timedelta(days=GRACE_DAYS)
        last = self.start + timedelta(days=self.span + GRACE_DAYS)
        return first <= day <= last

    def matches(self, text: str) -> bool:
        return bool(self.pattern.search(text))


class HolidayBot(Plugin):
    name = "Holiday Bot"
    version = "v0.0.1"
    description = "Let's celebrate!"

    def __init__(self, holidays: list[Holiday]):
        super().__init__()
        self.holidays = holidays
        self.validators = {MessageType.Text: self._is_greeting}

    def _current(self, message: Message) -> Holiday | None:
        day = message.date.date()
        for holiday in self.holidays:
            if holiday.in_period(day) and holiday.matches(message.text):
                return holiday
        return None

    def _is_greeting(self, message: Message) -> bool:
        return self._current(message) is not None

    async def handle(self, message: Message) -> None:
        holiday = self._current(message)
        if holiday is None:
            return
        log.debug("Holiday greeting (%s), sending %s", holiday.name, holiday.image)
        try:
            picture = FileBox.from_file(holiday.image)
        except OSError as e:
            raise RuntimeError(f"Failed to load picture for {holiday.name}") from e
        await respond(message, picture)
