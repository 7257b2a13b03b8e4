"""
In-process periodic jobs, started and stopped by the app lifespan.

Each job is an asyncio task looping forever: interval jobs sleep a fixed
number of seconds, daily jobs sleep until the next configured UTC hour. A
failed iteration is logged and the loop keeps going.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from core import settings
from notifications import processor
from reminders import service as reminders

from . import alerts, retention

logger = logging.getLogger(__name__)

JobFn = Callable[[], Awaitable[object]]


@dataclass(frozen=True)
class Job:
    name: str
    run: JobFn
    enabled_env: str
    interval_s: float | None = None
    daily_hour: int | None = None


def seconds_until_hour(hour: int, now: datetime | None = None) -> float:
    now = now or datetime.now(timezone.utc)
    target = now.replace(hour=hour % 24, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


async def _process_queue() -> None:
    await processor.process_email_queue()


async def _send_reminders() -> None:
    await reminders.run_reminder_job("scheduled")


async def _cleanup() -> None:
    await retention.run_retention_cleanup()


async def _check_alerts() -> None:
    await alerts.check_alert_thresholds()


def default_jobs() -> list[Job]:
    return [
        Job(
            name="email_queue",
            run=_process_queue,
            enabled_env="EMAIL_QUEUE_ENABLED",
            interval_s=float(max(settings.env_int("EMAIL_QUEUE_INTERVAL_S", 30), 1)),
        ),
        Job(
            name="reminders",
            run=_send_reminders,
            enabled_env="REMINDER_JOB_ENABLED",
            daily_hour=settings.env_int("REMINDER_HOUR", 9),
        ),
        Job(
            name="retention",
            run=_cleanup,
            enabled_env="RETENTION_ENABLED",
            daily_hour=settings.env_int("RETENTION_HOUR", 3),
        ),
        Job(
            name="alerts",
            run=_check_alerts,
            enabled_env="ALERTS_ENABLED",
            interval_s=float(max(settings.env_int("ALERT_INTERVAL_S", 60), 1)),
        ),
    ]


async def run_forever(job: Job, *, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
    while True:
        delay = job.interval_s if job.interval_s is not None else seconds_until_hour(job.daily_hour or 0)
        await sleep(delay)
        try:
            await job.run()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("job_failed job=%s", job.name)


class Scheduler:
    def __init__(self, jobs: list[Job] | None = None) -> None:
        self.jobs = jobs if jobs is not None else default_jobs()
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> list[str]:
        return [t.get_name() for t in self._tasks if not t.done()]

    def start(self) -> None:
        if not settings.env_bool("JOBS_ENABLED", True):
            logger.info("scheduler_disabled")
            return None
        for job in self.jobs:
            if not settings.env_bool(job.enabled_env, True):
                logger.info("job_disabled job=%s env=%s", job.name, job.enabled_env)
                continue
            self._tasks.append(asyncio.create_task(run_forever(job), name=job.name))
            logger.info("job_started job=%s", job.name)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
