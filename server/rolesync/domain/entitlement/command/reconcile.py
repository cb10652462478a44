"""Inbound reconciliation triggers."""

from dataclasses import dataclass

import logfire

from rolesync.domain.entitlement.model.outcome import ReconciliationOutcome
from rolesync.domain.entitlement.model.sweep import SweepReport
from rolesync.domain.entitlement.service.reconciler import Reconciler
from rolesync.domain.entitlement.service.sweep import SweepService
from rolesync.domain.link.model.value import UserId
from rolesync.domain.shared.command import Command, CommandHandler, Result
from rolesync.domain.shared.model.deadline import Deadline


class ReconcilePlan(Command):
    """A committed plan change from the billing system, or a re-sync to the stored plan."""

    user_id: str
    plan: str | None = None  # None re-applies the plan stored on the link
    timeout: float | None = None  # Seconds; None waits as long as rate limits require


class ReconcilePlanResult(Result):
    outcome: ReconciliationOutcome


@dataclass
class ReconcilePlanHandler(CommandHandler[ReconcilePlan, ReconcilePlanResult]):
    """Handler for ReconcilePlan command."""

    reconciler: Reconciler

    async def run(self, cmd: ReconcilePlan) -> ReconcilePlanResult:
        deadline = Deadline.after(cmd.timeout) if cmd.timeout else None
        with logfire.span("ReconcilePlan"):
            outcome = await self.reconciler.reconcile(
                UserId(cmd.user_id), cmd.plan, deadline=deadline
            )
        return ReconcilePlanResult(outcome=outcome)


class SweepLinkedAccounts(Command): ...


class SweepLinkedAccountsResult(Result):
    report: SweepReport


@dataclass
class SweepLinkedAccountsHandler(CommandHandler[SweepLinkedAccounts, SweepLinkedAccountsResult]):
    """Handler for SweepLinkedAccounts command."""

    sweep_service: SweepService

    async def run(self, cmd: SweepLinkedAccounts) -> SweepLinkedAccountsResult:
        with logfire.span("SweepLinkedAccounts"):
            report = await self.sweep_service.sweep()
        return SweepLinkedAccountsResult(report=report)
