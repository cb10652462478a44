"""Unlink command: release managed roles and forget the link."""

import logging
from dataclasses import dataclass

from rolesync.domain.entitlement.model.outcome import FailedMutation
from rolesync.domain.entitlement.service.reconciler import Reconciler
from rolesync.domain.link.model.value import UserId
from rolesync.domain.shared.command import Command, CommandHandler, Result

logger = logging.getLogger(__name__)


class Unlink(Command):
    user_id: str


class UnlinkResult(Result):
    user_id: str
    unreleased_roles: list[FailedMutation] = []  # Managed roles that could not be revoked


@dataclass
class UnlinkHandler(CommandHandler[Unlink, UnlinkResult]):
    """Handler for Unlink command.

    Role removal is best effort; the link record is deleted regardless.
    """

    reconciler: Reconciler

    async def run(self, cmd: Unlink) -> UnlinkResult:
        user_id = UserId(cmd.user_id)
        failures = await self.reconciler.unlink(user_id)
        if failures:
            logger.warning(
                "Unlinked with %d managed role(s) still held: user_id=%s",
                len(failures),
                user_id,
            )
        logger.info("Account unlinked: user_id=%s", user_id)
        return UnlinkResult(user_id=str(user_id), unreleased_roles=failures)
