"""Identity linking: OAuth code exchange, identity lookup, and the LinkedAccount record."""

import logging

from pydantic import SecretStr

from rolesync.domain.link.model.identity import ExternalIdentity, TokenSet
from rolesync.domain.link.model.linked_account import LinkedAccount
from rolesync.domain.link.model.value import ExternalId, UserId
from rolesync.domain.link.port.oauth_provider import OAuthProvider
from rolesync.domain.link.port.repository import LinkedAccountRepository
from rolesync.domain.shared.error import IdentityAlreadyLinkedError, TokenExpiredError
from rolesync.domain.shared.model.deadline import Deadline
from rolesync.domain.shared.service import Service

logger = logging.getLogger(__name__)


class IdentityLinker(Service):
    """Owns OAuth credentials and the LinkedAccount lifecycle.

    - build_authorization_url: consent-screen URL (no network)
    - exchange_code / fetch_identity / upsert_linked_account: the callback steps;
      the upsert runs under the reconciler's per-user lock
    - ensure_fresh_token: refresh credentials shortly before they expire
    """

    _provider: OAuthProvider
    _repo: LinkedAccountRepository
    _refresh_skew: int = 60  # Seconds before expiry at which tokens are refreshed

    def build_authorization_url(self, redirect_uri: str, state: str | None = None) -> str:
        return self._provider.get_authorization_url(redirect_uri, state)

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        *,
        deadline: Deadline | None = None,
    ) -> TokenSet:
        return await self._provider.exchange_code(code, redirect_uri, deadline=deadline)

    async def fetch_identity(
        self,
        access_token: SecretStr,
        *,
        deadline: Deadline | None = None,
    ) -> ExternalIdentity:
        return await self._provider.fetch_identity(access_token, deadline=deadline)

    async def ensure_unclaimed(self, user_id: UserId, external_id: ExternalId) -> None:
        """Raises IdentityAlreadyLinkedError when another user owns `external_id`."""
        owner = await self._repo.get_by_external_id(external_id)
        if owner is not None and owner.user_id != user_id:
            logger.warning(
                "Refusing to link external_id=%s to user_id=%s: already linked to user_id=%s",
                external_id,
                user_id,
                owner.user_id,
            )
            raise IdentityAlreadyLinkedError()

    async def upsert_linked_account(
        self,
        user_id: UserId,
        tokens: TokenSet,
        identity: ExternalIdentity,
    ) -> LinkedAccount:
        """Create or refresh the user's link.

        Raises:
            IdentityAlreadyLinkedError: The external identity belongs to another user
        """
        await self.ensure_unclaimed(user_id, identity.external_id)

        account = await self._repo.get_by_user_id(user_id)
        if account is None:
            account = LinkedAccount.create(user_id=user_id, identity=identity, tokens=tokens)
            logger.info(
                "Account linked: user_id=%s, external_id=%s", user_id, identity.external_id
            )
        else:
            account.relink(identity, tokens)
            logger.info(
                "Account re-linked: user_id=%s, external_id=%s", user_id, identity.external_id
            )

        await self._repo.save(account)
        return account

    async def ensure_fresh_token(
        self,
        account: LinkedAccount,
        *,
        deadline: Deadline | None = None,
    ) -> LinkedAccount:
        """Refresh the account's credentials if they expire within the skew.

        Raises:
            TokenExpiredError: No refresh token, or the platform rejected it.
                The account is marked Errored and saved before raising.
        """
        if not account.token_expires_within(self._refresh_skew):
            return account

        if account.refresh_token is None:
            await self._fail_credentials(account, "no refresh token stored")
            raise TokenExpiredError()

        try:
            tokens = await self._provider.refresh(account.refresh_token, deadline=deadline)
        except TokenExpiredError:
            await self._fail_credentials(account, "refresh token rejected")
            raise

        account.update_tokens(tokens)
        await self._repo.save(account)
        logger.debug("OAuth credentials refreshed: user_id=%s", account.user_id)
        return account

    async def _fail_credentials(self, account: LinkedAccount, reason: str) -> None:
        account.mark_errored()
        await self._repo.save(account)
        logger.warning(
            "Credentials unusable, re-link required: user_id=%s (%s)", account.user_id, reason
        )
