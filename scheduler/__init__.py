"""Task scheduler: one cron-triggered job per task.

At fire time a job resolves its target by name, produces the payload
through the task's template, and sends it. Failures are logged with the
task name and never stop the job.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, tzinfo
from zoneinfo import ZoneInfo

from channels import Contact, Room, Session

from .cron import CronTimer
from .tasks import Target, Task, TaskValidationError, validate_tasks
from .templates import TEMPLATES, Template

__all__ = [
    "Job", "Scheduler", "TargetNotFound", "Task", "TaskValidationError",
    "resolve_target", "resolve_timezone", "validate_tasks",
]

log = logging.getLogger(__name__)


class TargetNotFound(LookupError):
    """Raised when a task target cannot be resolved to a live contact or room."""


def resolve_timezone(task_timezone: str | None, default_timezone: str | None = None) -> tzinfo:
    """Task timezone, else the scheduler default, else the host's local zone."""
    name = task_timezone or default_timezone
    if name:
        return ZoneInfo(name)
    return datetime.now().astimezone().tzinfo


async def resolve_target(session: Session, target: Target) -> Contact | Room:
    if target.type == "contact":
        found = await session.find_contact(target.name)
    elif target.type == "room":
        found = await session.find_room(target.name)
    else:
        raise ValueError(f"Invalid target type: {target.type!r}")
    if found is None:
        raise TargetNotFound(f"Target [{target.name}] is not found")
    return found


@dataclass
class Job:
    name: str
    timer: CronTimer
    enabled: bool = True

    def start(self) -> None:
        self.timer.start()

    def stop(self) -> None:
        self.timer.stop()

    async def fire(self) -> bool:
        """Run the job's tick immediately."""
        return await self.timer.fire()


class Scheduler:
    def __init__(self, session: Session, tasks: list[Task], default_timezone: str | None = None):
        self.session = session
        self.default_timezone = default_timezone
        self.jobs: list[Job] = []
        for task in tasks:
            template = TEMPLATES[task.action.template]
            timer = CronTimer(
                task.cron_time,
                self._make_tick(task, template),
                tz=resolve_timezone(task.timezone, default_timezone),
                name=task.name,
            )
            self.jobs.append(Job(name=task.name, timer=timer, enabled=task.enabled))

    def _make_tick(self, task: Task, template: Template) -> Callable[[], Awaitable[None]]:
        async def tick() -> None:
            try:
                target = await resolve_target(self.session, task.target)
                sayable = await template.producer(task.action, template.other_args)
                await target.say(sayable)
                log.info("Task %s: sent to %s %s", task.name, task.target.type, task.target.name)
            except Exception:
                log.exception("Task %s failed", task.name)
        return tick

    def job(self, name: str) -> Job:
        for job in self.jobs:
            if job.name == name:
                return job
        raise KeyError(name)

    def start_all_jobs(self) -> None:
        started = 0
        for job in self.jobs:
            if job.enabled:
                job.start()
                started += 1
        log.info("Scheduler: started %d of %d job(s)", started, len(self.jobs))

    def stop_all_jobs(self) -> None:
        for job in self.jobs:
            job.stop()
        log.info("Scheduler: stopped %d job(s)", len(self.jobs))
