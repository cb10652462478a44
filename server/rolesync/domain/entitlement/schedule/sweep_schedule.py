"""SweepSchedule - periodic full reconciliation."""

import logging
from dataclasses import dataclass
from typing import Any

from rolesync.domain.entitlement.service.sweep import SweepService
from rolesync.domain.shared.schedule import Schedule

logger = logging.getLogger(__name__)


@dataclass
class SweepSchedule(Schedule):
    """Runs a sweep so plan changes that failed to sync are retried."""

    sweep: SweepService

    async def run(self, **params: Any) -> None:
        report = await self.sweep.sweep()
        logger.info("Scheduled sweep: %d account(s) visited", report.total)
