"""Cron timer: one asyncio task per schedule.

Fire times come from croniter. Five-field expressions are minute
resolution; six-field expressions carry a leading seconds field. An
absolute datetime fires once. Ticks of one timer never overlap: fire
times that elapse while a tick is running are skipped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, tzinfo

from croniter import croniter

log = logging.getLogger(__name__)

CronTime = str | datetime

# Upper bound when counting fire times missed during a long tick.
_MAX_MISSED_COUNT = 1000


def _cron_kwargs(expression: str) -> dict:
    if len(expression.split()) == 6:
        return {"second_at_beginning": True}
    return {}


def validate_cron(expression: str) -> None:
    """Raise ValueError if ``expression`` is not a valid 5- or 6-field cron string."""
    if not expression.strip():
        raise ValueError("empty cron expression")
    if not croniter.is_valid(expression, **_cron_kwargs(expression)):
        raise ValueError(f"invalid cron expression {expression!r}")


class CronTimer:
    def __init__(
        self,
        cron_time: CronTime,
        on_tick: Callable[[], Awaitable[None]],
        tz: tzinfo,
        name: str = "",
    ):
        if isinstance(cron_time, str):
            validate_cron(cron_time)
        self.cron_time = cron_time
        self.on_tick = on_tick
        self.tz = tz
        self.name = name or str(cron_time)
        self.in_flight = False
        self._stopped = False
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_fire(self, after: datetime | None = None) -> datetime | None:
        """First fire time strictly after ``after`` (default: now), or None."""
        after = (after or datetime.now(self.tz)).astimezone(self.tz)
        if isinstance(self.cron_time, datetime):
            at = self.cron_time
            if at.tzinfo is None:
                at = at.replace(tzinfo=self.tz)
            return at if at > after else None
        itr = croniter(self.cron_time, after, **_cron_kwargs(self.cron_time))
        return itr.get_next(datetime)

    def start(self) -> None:
        """Schedule the timer on the running loop. No-op if already running."""
        self._stopped = False
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"cron:{self.name}")

    def stop(self) -> None:
        """Stop future ticks. A tick already in flight runs to completion."""
        self._stopped = True
        if self.running and not self.in_flight:
            self._task.cancel()
            self._task = None

    async def fire(self) -> bool:
        """Run one tick now. Returns False if a tick was already in flight."""
        if self.in_flight:
            log.warning("Timer %s: tick already in flight, skipping", self.name)
            return False
        self.in_flight = True
        try:
            await self.on_tick()
        except Exception:
            log.exception("Timer %s: tick failed", self.name)
        finally:
            self.in_flight = False
        return True

    def _count_missed(self, fire_at: datetime, now: datetime) -> int:
        missed = 0
        t = self.next_fire(fire_at)
        while t is not None and t <= now and missed < _MAX_MISSED_COUNT:
            missed += 1
            t = self.next_fire(t)
        return missed

    async def _run(self) -> None:
        cursor = datetime.now(self.tz)
        first = self.next_fire(cursor)
        if first is None:
            log.warning("Timer %s: %s is in the past, will never fire", self.name, self.cron_time)
            return
        log.debug("Timer %s: first fire at %s", self.name, first.isoformat())

        fire_at: datetime | None = first
        while fire_at is not None:
            delay = (fire_at - datetime.now(self.tz)).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)

            await self.fire()
            if self._stopped:
                break

            now = datetime.now(self.tz)
            missed = self._count_missed(fire_at, now)
            if missed:
                log.warning(
                    "Timer %s: tick overran, skipped %d fire time(s)", self.name, missed,
                )
            fire_at = self.next_fire(max(now, fire_at))

        log.debug("Timer %s: finished", self.name)
