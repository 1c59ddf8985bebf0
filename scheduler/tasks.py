"""Task definitions: parsing and validation of [[tasks]] tables.

Validation collects every failure of every task and raises a single
TaskValidationError, the same way config validation reports errors.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .cron import CronTime, validate_cron

log = logging.getLogger(__name__)

TARGET_TYPES = ("contact", "room")
MEDIA_TYPES = ("image", "audio", "video")


class TaskValidationError(ValueError):
    """Raised when one or more task definitions are invalid."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("Task errors:\n" + "\n".join(f"  - {e}" for e in errors))


@dataclass
class Target:
    type: str   # "contact" | "room"
    name: str


@dataclass
class Action:
    template: str   # "CustomMessage" | "Weather" | "News"
    input: dict = field(default_factory=dict)


@dataclass
class Task:
    name: str
    target: Target
    cron_time: CronTime
    action: Action
    timezone: str | None = None
    enabled: bool = True


def is_url(location: str) -> bool:
    return urlparse(location).scheme in ("http", "https")


def valid_timezone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def _check_custom_message(data: Any, errors: list[str], where: str) -> dict:
    if not isinstance(data, dict):
        errors.append(f"{where}: action.input must be a table")
        return {}
    kind = data.get("type")
    if kind == "text":
        text = data.get("text")
        if not isinstance(text, str) or not text:
            errors.append(f"{where}: text message cannot be empty")
        return {"type": "text", "text": text}
    if kind in MEDIA_TYPES:
        location = data.get("location")
        if not isinstance(location, str) or not (is_url(location) or os.path.exists(location)):
            errors.append(f"{where}: location must be a valid URL or an accessible file path")
        result = {"type": kind, "location": location}
        filename = data.get("filename")
        if filename is not None:
            if not isinstance(filename, str):
                errors.append(f"{where}: filename must be a string")
            result["filename"] = filename
        return result
    errors.append(
        f"{where}: action.input.type must be one of text, {', '.join(MEDIA_TYPES)} (got {kind!r})"
    )
    return {}


def _check_weather(data: Any, errors: list[str], where: str) -> dict:
    cities = data.get("cities") if isinstance(data, dict) else None
    if not isinstance(cities, list) or not cities:
        errors.append(f"{where}: cities array cannot be empty")
        return {"cities": []}
    if not all(isinstance(c, str) and c for c in cities):
        errors.append(f"{where}: city name cannot be empty")
    return {"cities": list(cities)}


def _check_news(data: Any, errors: list[str], where: str) -> dict:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        errors.append(f"{where}: action.input must be a table")
        return {"topic": "default"}
    topic = data.get("topic", "default")
    if not isinstance(topic, str):
        errors.append(f"{where}: topic must be a string")
    return {"topic": topic}


_INPUT_CHECKS = {
    "CustomMessage": _check_custom_message,
    "Weather": _check_weather,
    "News": _check_news,
}


def _check_cron_time(value: Any, errors: list[str], where: str) -> CronTime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        # TOML local date: fire at midnight
        return datetime.combine(value, time())
    if isinstance(value, str):
        try:
            validate_cron(value)
        except ValueError as e:
            errors.append(f"{where}: cron_time {e}")
            return None
        return value
    errors.append(f"{where}: cron_time must be a cron string or a datetime")
    return None


def parse_task(raw: Any, index: int, errors: list[str]) -> Task | None:
    """Parse one raw task table, appending problems to ``errors``."""
    where = f"tasks[{index}]"
    if not isinstance(raw, dict):
        errors.append(f"{where}: must be a table")
        return None
    before = len(errors)

    name = raw.get("name")
    if not isinstance(name, str) or not name:
        errors.append(f"{where}: name of the task cannot be empty")
    else:
        where = f"tasks[{index}] ({name})"

    target_raw = raw.get("target")
    target = None
    if not isinstance(target_raw, dict):
        errors.append(f"{where}: target is required")
    else:
        if target_raw.get("type") not in TARGET_TYPES:
            errors.append(f"{where}: target.type must be contact or room")
        if not isinstance(target_raw.get("name"), str) or not target_raw.get("name"):
            errors.append(f"{where}: target name cannot be empty")
        target = Target(type=target_raw.get("type"), name=target_raw.get("name"))

    cron_time = _check_cron_time(raw.get("cron_time"), errors, where)

    tz = raw.get("timezone")
    if tz is not None and (not isinstance(tz, str) or not valid_timezone(tz)):
        errors.append(f"{where}: invalid timezone {tz!r}, use a name from the tz database")

    action_raw = raw.get("action")
    action = None
    if not isinstance(action_raw, dict):
        errors.append(f"{where}: action is required")
    else:
        template = action_raw.get("template")
        check = _INPUT_CHECKS.get(template)
        if check is None:
            errors.append(
                f"{where}: action.template must be one of {', '.join(_INPUT_CHECKS)} (got {template!r})"
            )
        else:
            action = Action(template=template, input=check(action_raw.get("input"), errors, where))

    enabled = raw.get("enabled", True)
    if not isinstance(enabled, bool):
        errors.append(f"{where}: enabled must be a boolean")

    if len(errors) > before:
        return None
    return Task(
        name=name, target=target, cron_time=cron_time, action=action,
        timezone=tz, enabled=enabled,
    )


def validate_tasks(raw_tasks: list[Any]) -> list[Task]:
    """Parse and validate every task. Raises TaskValidationError listing all problems."""
    errors: list[str] = []
    tasks: list[Task] = []
    seen: set[str] = set()
    for index, raw in enumerate(raw_tasks):
        task = parse_task(raw, index, errors)
        if task is None:
            continue
        if task.name in seen:
            errors.append(f"tasks[{index}] ({task.name}): duplicate task name")
            continue
        seen.add(task.name)
        tasks.append(task)
    if errors:
        raise TaskValidationError(errors)
    log.debug("Validated %d task(s)", len(tasks))
    return tasks
