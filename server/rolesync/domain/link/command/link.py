"""Account-linking commands for the OAuth flow."""

import logging
from dataclasses import dataclass

import logfire

from rolesync.domain.entitlement.model.outcome import ReconciliationStatus
from rolesync.domain.entitlement.service.reconciler import Reconciler
from rolesync.domain.link.model.value import UserId
from rolesync.domain.link.service.identity_linker import IdentityLinker
from rolesync.domain.link.service.link_state import LinkStateService
from rolesync.domain.shared.command import Command, CommandHandler, Result
from rolesync.domain.shared.error import AuthorizationError, RolesyncError

logger = logging.getLogger(__name__)


class StartLink(Command):
    """Command to start linking the caller's account."""

    user_id: str
    callback_url: str  # OAuth callback URL (where the platform redirects after consent)
    final_redirect_uri: str  # Where to send the user once linking finishes


class StartLinkResult(Result):
    authorization_url: str


@dataclass
class StartLinkHandler(CommandHandler[StartLink, StartLinkResult]):
    """Handler for StartLink command."""

    identity_linker: IdentityLinker
    link_state_service: LinkStateService

    async def run(self, cmd: StartLink) -> StartLinkResult:
        state = self.link_state_service.create_state(UserId(cmd.user_id), cmd.final_redirect_uri)
        authorization_url = self.identity_linker.build_authorization_url(
            redirect_uri=cmd.callback_url,
            state=state,
        )
        return StartLinkResult(authorization_url=authorization_url)


class CompleteLink(Command):
    """Command to complete linking with the authorization code from the callback."""

    code: str
    state: str
    callback_url: str  # Must match the one used in authorization


class CompleteLinkResult(Result):
    user_id: str
    external_id: str
    username: str
    redirect_uri: str
    reconciliation: ReconciliationStatus | None = None  # None when the first sync failed


@dataclass
class CompleteLinkHandler(CommandHandler[CompleteLink, CompleteLinkResult]):
    """Handler for CompleteLink command.

    Linking is complete once the code exchange, identity fetch and upsert all
    succeed. The first role sync afterwards is best effort: a failure is
    logged and left to the next sweep.
    """

    identity_linker: IdentityLinker
    link_state_service: LinkStateService
    reconciler: Reconciler

    async def run(self, cmd: CompleteLink) -> CompleteLinkResult:
        verified = self.link_state_service.verify_state(cmd.state)
        if verified is None:
            raise AuthorizationError("Invalid or expired link state", code="invalid_state")

        with logfire.span("CompleteLink"):
            # Nothing is persisted unless both the exchange and the identity fetch succeed
            tokens = await self.identity_linker.exchange_code(cmd.code, cmd.callback_url)
            identity = await self.identity_linker.fetch_identity(tokens.access_token)
            account = await self.reconciler.link_identity(verified.user_id, tokens, identity)

            reconciliation = None
            try:
                outcome = await self.reconciler.reconcile(account.user_id, account.plan)
                reconciliation = outcome.status
            except RolesyncError as e:
                logger.warning(
                    "Initial reconciliation failed: user_id=%s, code=%s",
                    account.user_id,
                    e.code,
                )

        return CompleteLinkResult(
            user_id=str(account.user_id),
            external_id=account.external_id,
            username=account.username,
            redirect_uri=verified.redirect_uri,
            reconciliation=reconciliation,
        )
