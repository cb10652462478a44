"""Reconciliation run state and outcome."""

from enum import IntEnum, StrEnum

from pydantic import BaseModel

from rolesync.domain.entitlement.model.plan import PlanTier
from rolesync.domain.shared.error import InvalidStateError, TransportErrorKind


class ReconciliationStage(IntEnum):
    """Stages of one run, in order. A run only ever moves forward."""

    START = 0
    MEMBERSHIP_CHECKED = 10
    ROLES_DIFFED = 20
    ROLES_MUTATING = 30
    FINISHED = 40


class ReconciliationStatus(StrEnum):
    RECONCILED = "reconciled"
    PARTIAL_FAILURE = "partial_failure"
    NOT_LINKED = "not_linked"


class MutationAction(StrEnum):
    ADD = "add"
    REMOVE = "remove"


class FailedMutation(BaseModel):
    """A role mutation that did not take effect and can be retried on its own."""

    action: MutationAction
    role_id: str
    kind: TransportErrorKind
    message: str


class ReconciliationOutcome(BaseModel):
    status: ReconciliationStatus
    user_id: str
    plan: PlanTier | None = None
    desired_role: str | None = None
    added: list[str] = []
    removed: list[str] = []
    failures: list[FailedMutation] = []
    last_known_roles: list[str] = []

    @classmethod
    def not_linked(cls, user_id: str, plan: PlanTier | None = None) -> "ReconciliationOutcome":
        return cls(status=ReconciliationStatus.NOT_LINKED, user_id=user_id, plan=plan)

    @property
    def ok(self) -> bool:
        return self.status is not ReconciliationStatus.PARTIAL_FAILURE


class ReconciliationRun:
    """Tracks the stage of a single run and rejects moving backwards."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        self.stage = ReconciliationStage.START

    def advance(self, stage: ReconciliationStage) -> None:
        if stage <= self.stage:
            raise InvalidStateError(
                f"Reconciliation for {self.user_id} cannot move from "
                f"{self.stage.name} to {stage.name}",
                code="reconciliation_stage",
            )
        self.stage = stage
