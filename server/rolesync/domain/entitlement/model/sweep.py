"""Results of a full reconciliation sweep."""

from enum import StrEnum

from pydantic import BaseModel

from rolesync.domain.entitlement.model.outcome import FailedMutation


class SweepEntryStatus(StrEnum):
    RECONCILED = "reconciled"
    PARTIAL_FAILURE = "partial_failure"
    NOT_LINKED = "not_linked"
    FAILED = "failed"


class SweepEntry(BaseModel):
    """What happened to one linked account during a sweep."""

    user_id: str
    status: SweepEntryStatus
    error_code: str | None = None
    message: str | None = None
    recoverable: bool = False  # Worth re-queueing before the next sweep
    failures: list[FailedMutation] = []


class SweepReport(BaseModel):
    entries: list[SweepEntry] = []

    def count(self, status: SweepEntryStatus) -> int:
        return sum(1 for entry in self.entries if entry.status is status)

    @property
    def total(self) -> int:
        return len(self.entries)
