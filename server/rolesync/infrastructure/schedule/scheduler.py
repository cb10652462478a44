"""Cron scheduling for periodic tasks."""

import asyncio
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any

from apscheduler import AsyncScheduler
from apscheduler.triggers.cron import CronTrigger
from dishka import AsyncContainer

from rolesync.domain.shared.schedule import Schedule
from rolesync.util.di.scope import Scope

logger = logging.getLogger(__name__)

# Consecutive failures after which a schedule is reported as critical
_FAILURE_ALERT_THRESHOLD = 5


@dataclass
class ScheduleConfig:
    """Configuration for a scheduled task."""

    schedule_type: type[Schedule]
    cron: str
    id: str
    params: dict[str, Any] = field(default_factory=dict)


class Scheduler:
    """Runs Schedule tasks on cron triggers, each in its own UOW scope.

    Usage:
        scheduler = Scheduler(container, [ScheduleConfig(SweepSchedule, "0 * * * *", "sweep")])
        async with scheduler:
            ...
    """

    def __init__(self, container: AsyncContainer, schedules: list[ScheduleConfig]) -> None:
        self._container = container
        self._schedules = schedules
        self._scheduler: AsyncScheduler | None = None
        self._exit_stack: AsyncExitStack | None = None
        self._failures: dict[str, int] = {}

    async def start(self) -> None:
        self._exit_stack = AsyncExitStack()
        await self._exit_stack.__aenter__()

        self._scheduler = AsyncScheduler()
        await self._exit_stack.enter_async_context(self._scheduler)

        for config in self._schedules:
            await self._scheduler.add_schedule(
                self._run_schedule,
                CronTrigger.from_crontab(config.cron),
                id=config.id,
                kwargs={"config": config},
            )
            logger.debug("Registered schedule %s (cron=%s)", config.id, config.cron)

        await self._scheduler.start_in_background()
        logger.info("Scheduler started with %d schedule(s)", len(self._schedules))

    async def stop(self) -> None:
        if self._exit_stack:
            await self._exit_stack.__aexit__(None, None, None)
            self._exit_stack = None
        logger.info("Scheduler stopped")

    async def _run_schedule(self, config: ScheduleConfig) -> None:
        """Cron task: run a scheduled task in UOW scope."""
        try:
            async with self._container(scope=Scope.UOW) as scope:
                schedule = await scope.get(config.schedule_type)
                await schedule.run(**config.params)

            self._failures.pop(config.id, None)
            logger.debug("Ran schedule %s", config.id)

        except (asyncio.CancelledError, SystemExit, KeyboardInterrupt):
            raise
        except Exception as e:
            failures = self._failures.get(config.id, 0) + 1
            self._failures[config.id] = failures
            logger.error(
                "Failed to run schedule %s (failures: %d): %s", config.id, failures, e
            )
            if failures >= _FAILURE_ALERT_THRESHOLD:
                logger.critical(
                    "Schedule %s has failed %d consecutive times", config.id, failures
                )

    async def __aenter__(self) -> "Scheduler":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        await self.stop()
