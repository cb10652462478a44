"""Reconciliation triggers for backend collaborators (billing, sweep runners)."""

from dishka import FromDishka
from dishka.integrations.fastapi import DishkaRoute
from fastapi import APIRouter
from pydantic import BaseModel, Field

from rolesync.domain.entitlement.command.reconcile import (
    ReconcilePlan,
    ReconcilePlanHandler,
    SweepLinkedAccounts,
    SweepLinkedAccountsHandler,
)
from rolesync.domain.entitlement.model.outcome import ReconciliationOutcome
from rolesync.domain.entitlement.model.sweep import SweepReport
from rolesync.domain.link.model.caller import ServiceCaller

router = APIRouter(prefix="/reconcile", tags=["Reconciliation"], route_class=DishkaRoute)


class ReconcileRequest(BaseModel):
    """A committed plan change."""

    user_id: str = Field(min_length=1)
    plan: str
    timeout: float | None = Field(default=None, gt=0)


@router.post("", response_model=ReconciliationOutcome)
async def reconcile(
    body: ReconcileRequest,
    caller: FromDishka[ServiceCaller],
    handler: FromDishka[ReconcilePlanHandler],
) -> ReconciliationOutcome:
    """Reconcile one user's managed roles to their new plan."""
    result = await handler.run(
        ReconcilePlan(user_id=body.user_id, plan=body.plan, timeout=body.timeout)
    )
    return result.outcome


@router.post("/sweep", response_model=SweepReport)
async def sweep(
    caller: FromDishka[ServiceCaller],
    handler: FromDishka[SweepLinkedAccountsHandler],
) -> SweepReport:
    """Reconcile every linked account to its stored plan."""
    result = await handler.run(SweepLinkedAccounts())
    return result.report
