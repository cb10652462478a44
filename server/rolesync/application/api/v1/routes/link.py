"""Account-linking routes for the Discord OAuth flow."""

import logging
from typing import Annotated
from urllib.parse import urlencode

from dishka import FromDishka
from dishka.integrations.fastapi import DishkaRoute
from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from rolesync.config import Config
from rolesync.domain.entitlement.command.reconcile import ReconcilePlan, ReconcilePlanHandler
from rolesync.domain.entitlement.model.outcome import FailedMutation, ReconciliationOutcome
from rolesync.domain.link.command.link import (
    CompleteLink,
    CompleteLinkHandler,
    StartLink,
    StartLinkHandler,
)
from rolesync.domain.link.command.unlink import Unlink, UnlinkHandler
from rolesync.domain.link.model.caller import CurrentUser, ServiceCaller
from rolesync.domain.link.model.status import LinkStatus
from rolesync.domain.link.query.get_link_status import GetLinkStatus, GetLinkStatusHandler
from rolesync.domain.shared.error import RolesyncError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/link/discord", tags=["Linking"], route_class=DishkaRoute)


class StartLinkResponse(BaseModel):
    authorization_url: str


class UnlinkResponse(BaseModel):
    success: bool
    unreleased_roles: list[FailedMutation] = []


def _callback_url(request: Request, config: Config) -> str:
    return config.auth.callback_url or str(request.url_for("handle_link_callback"))


def _result_url(config: Config) -> str:
    return f"{config.frontend.url}{config.frontend.link_result_path}"


def _redirect(base_url: str, **params: str) -> RedirectResponse:
    separator = "&" if "?" in base_url else "?"
    return RedirectResponse(url=f"{base_url}{separator}{urlencode(params)}", status_code=302)


@router.get("/start", response_model=StartLinkResponse)
async def start_link(
    request: Request,
    config: FromDishka[Config],
    user: FromDishka[CurrentUser],
    handler: FromDishka[StartLinkHandler],
    redirect_uri: Annotated[str | None, Query()] = None,
) -> StartLinkResponse:
    """Get the Discord consent URL for the signed-in user."""
    result = await handler.run(
        StartLink(
            user_id=str(user.user_id),
            callback_url=_callback_url(request, config),
            final_redirect_uri=redirect_uri or _result_url(config),
        )
    )
    logger.info("Link started: user_id=%s", user.user_id)
    return StartLinkResponse(authorization_url=result.authorization_url)


@router.get("/callback")
async def handle_link_callback(
    request: Request,
    config: FromDishka[Config],
    handler: FromDishka[CompleteLinkHandler],
    code: Annotated[str | None, Query()] = None,
    state: Annotated[str | None, Query()] = None,
    error: Annotated[str | None, Query()] = None,
    error_description: Annotated[str | None, Query()] = None,
) -> Response:
    """Handle the OAuth callback from Discord and send the user back to the dashboard."""
    result_url = _result_url(config)

    # User denied consent, or Discord reported an error
    if error:
        logger.warning("Discord OAuth error: %s - %s", error, error_description)
        return _redirect(result_url, discord="error", reason=error)

    if not code or not state:
        logger.warning("Link callback missing code or state")
        return _redirect(result_url, discord="error", reason="missing_code")

    try:
        result = await handler.run(
            CompleteLink(code=code, state=state, callback_url=_callback_url(request, config))
        )
    except RolesyncError as e:
        logger.warning("Link callback failed: code=%s, message=%s", e.code, e.message)
        return _redirect(result_url, discord="error", reason=e.code)

    return _redirect(
        result.redirect_uri or result_url,
        discord="connected",
        username=result.username,
    )


@router.get("/status", response_model=LinkStatus)
async def get_link_status(
    user: FromDishka[CurrentUser],
    handler: FromDishka[GetLinkStatusHandler],
) -> LinkStatus:
    """Link status for display in the dashboard."""
    result = await handler.run(GetLinkStatus(user_id=str(user.user_id)))
    return result.status


@router.get("/status/{user_id}", response_model=LinkStatus)
async def get_user_link_status(
    user_id: str,
    caller: FromDishka[ServiceCaller],
    handler: FromDishka[GetLinkStatusHandler],
) -> LinkStatus:
    """Link status of any user, for backend collaborators and the CLI."""
    result = await handler.run(GetLinkStatus(user_id=user_id))
    return result.status


@router.delete("", response_model=UnlinkResponse)
async def unlink(
    user: FromDishka[CurrentUser],
    handler: FromDishka[UnlinkHandler],
) -> UnlinkResponse:
    """Remove managed roles and forget the link."""
    result = await handler.run(Unlink(user_id=str(user.user_id)))
    return UnlinkResponse(success=True, unreleased_roles=result.unreleased_roles)


@router.post("/sync", response_model=ReconciliationOutcome)
async def sync_roles(
    user: FromDishka[CurrentUser],
    handler: FromDishka[ReconcilePlanHandler],
) -> ReconciliationOutcome:
    """Re-apply the signed-in user's stored plan to their Discord roles."""
    result = await handler.run(ReconcilePlan(user_id=str(user.user_id)))
    logger.info("Roles re-synced: user_id=%s, status=%s", user.user_id, result.outcome.status)
    return result.outcome
