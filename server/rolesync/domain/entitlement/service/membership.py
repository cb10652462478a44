"""Community membership for linked identities."""

import logging

from rolesync.domain.entitlement.port.community_platform import (
    CommunityMember,
    CommunityPlatform,
)
from rolesync.domain.link.model.linked_account import LinkedAccount
from rolesync.domain.link.model.value import LinkState
from rolesync.domain.link.port.repository import LinkedAccountRepository
from rolesync.domain.link.service.identity_linker import IdentityLinker
from rolesync.domain.shared.error import (
    MembershipNotFoundError,
    MembershipTokenExpiredError,
    TokenExpiredError,
    TransportError,
    TransportErrorKind,
)
from rolesync.domain.shared.model.deadline import Deadline
from rolesync.domain.shared.service import Service

logger = logging.getLogger(__name__)


class MembershipEnsurer(Service):
    """Makes sure a linked identity is a member of the community.

    Idempotent: an existing member is left alone, and a join that races with
    a manual join ("already a member") counts as success. Transient failures
    come out of the transport as TransportError and are not retried here.
    """

    _platform: CommunityPlatform
    _linker: IdentityLinker
    _repo: LinkedAccountRepository

    async def ensure_member(
        self,
        account: LinkedAccount,
        *,
        deadline: Deadline | None = None,
    ) -> CommunityMember:
        """Ensure membership, joining with the user's own access token if absent.

        Returns the member as the platform sees it, with the roles it holds.
        A freshly joined member holds none.

        Raises:
            MembershipNotFoundError: The identity does not exist on the platform
            MembershipTokenExpiredError: A join was needed but the credentials are
                unusable; the account is left in Errored for re-authentication
            TransportError: The platform could not be reached
        """
        try:
            member = await self._platform.get_member(account.external_id, deadline=deadline)
        except TransportError as e:
            if e.kind is TransportErrorKind.NOT_FOUND:
                raise MembershipNotFoundError(
                    f"External identity {account.external_id} not found"
                ) from e
            raise

        if member is not None:
            if self._recovers(account):
                account.mark_linked()
                await self._repo.save(account)
            return member

        account.mark_membership_pending()
        await self._repo.save(account)

        try:
            account = await self._linker.ensure_fresh_token(account, deadline=deadline)
            joined = await self._platform.add_member(
                account.external_id, account.access_token, deadline=deadline
            )
            if not joined:
                # Joined by hand since the lookup; read back what it holds
                member = await self._platform.get_member(account.external_id, deadline=deadline)
        except TokenExpiredError as e:
            if account.link_state is not LinkState.ERRORED:
                account.mark_errored()
                await self._repo.save(account)
            raise MembershipTokenExpiredError() from e
        except TransportError as e:
            if e.kind is TransportErrorKind.NOT_FOUND:
                raise MembershipNotFoundError(
                    f"External identity {account.external_id} cannot join the community"
                ) from e
            raise

        account.mark_linked()
        await self._repo.save(account)
        if joined:
            logger.info(
                "Joined community: user_id=%s, external_id=%s",
                account.user_id,
                account.external_id,
            )
        else:
            logger.info("Already a community member: user_id=%s", account.user_id)
        return member or CommunityMember(external_id=account.external_id, roles=frozenset())

    @staticmethod
    def _recovers(account: LinkedAccount) -> bool:
        """Whether a confirmed membership moves the account back to Linked.

        Errored accounts only recover while their access token is still valid.
        """
        if account.link_state is LinkState.MEMBERSHIP_PENDING:
            return True
        return account.link_state is LinkState.ERRORED and not account.token_expires_within(0)
