"""Full sweep: reconcile every linked account to its stored plan."""

import logfire

from rolesync.domain.entitlement.model.outcome import ReconciliationStatus
from rolesync.domain.entitlement.model.sweep import SweepEntry, SweepEntryStatus, SweepReport
from rolesync.domain.entitlement.service.reconciler import Reconciler
from rolesync.domain.link.model.value import LinkState
from rolesync.domain.link.port.repository import LinkedAccountRepository
from rolesync.domain.shared.error import (
    ConfigurationError,
    MembershipError,
    TransportError,
)
from rolesync.domain.shared.model.deadline import Deadline
from rolesync.domain.shared.service import Service

_SWEEP_STATES = (LinkState.LINKED, LinkState.MEMBERSHIP_PENDING)

_STATUS = {
    ReconciliationStatus.RECONCILED: SweepEntryStatus.RECONCILED,
    ReconciliationStatus.PARTIAL_FAILURE: SweepEntryStatus.PARTIAL_FAILURE,
    ReconciliationStatus.NOT_LINKED: SweepEntryStatus.NOT_LINKED,
}


class SweepService(Service):
    """Reconciles linked accounts one after another.

    Accounts in Errored are skipped: they need the user to re-link first.
    One account failing never stops the sweep.
    """

    _repo: LinkedAccountRepository
    _reconciler: Reconciler
    _account_timeout: float | None = None  # Seconds allowed per account

    async def sweep(self) -> SweepReport:
        accounts = await self._repo.list_by_state(*_SWEEP_STATES)
        report = SweepReport()

        for account in accounts:
            deadline = (
                Deadline.after(self._account_timeout) if self._account_timeout else None
            )
            user_id = str(account.user_id)
            try:
                outcome = await self._reconciler.reconcile(
                    account.user_id, account.plan, deadline=deadline
                )
            except (MembershipError, TransportError, ConfigurationError) as e:
                recoverable = isinstance(e, TransportError) and e.recoverable
                logfire.error(
                    "Sweep reconciliation failed",
                    user_id=user_id,
                    code=e.code,
                    recoverable=recoverable,
                )
                report.entries.append(
                    SweepEntry(
                        user_id=user_id,
                        status=SweepEntryStatus.FAILED,
                        error_code=e.code,
                        message=e.message,
                        recoverable=recoverable,
                    )
                )
                continue

            report.entries.append(
                SweepEntry(
                    user_id=user_id,
                    status=_STATUS[outcome.status],
                    recoverable=bool(outcome.failures),
                    failures=outcome.failures,
                )
            )

        logfire.info(
            "Sweep finished",
            total=report.total,
            reconciled=report.count(SweepEntryStatus.RECONCILED),
            partial=report.count(SweepEntryStatus.PARTIAL_FAILURE),
            failed=report.count(SweepEntryStatus.FAILED),
        )
        return report
