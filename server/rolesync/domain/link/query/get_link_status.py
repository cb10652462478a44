"""GetLinkStatus query - display projection of a user's link."""

from dataclasses import dataclass

from rolesync.domain.entitlement.service.role_mapper import RoleMapper
from rolesync.domain.link.model.status import LinkStatus
from rolesync.domain.link.model.value import UserId
from rolesync.domain.link.port.repository import LinkedAccountRepository
from rolesync.domain.shared.query import Query, QueryHandler, Result


class GetLinkStatus(Query):
    user_id: str


class GetLinkStatusResult(Result):
    status: LinkStatus


@dataclass
class GetLinkStatusHandler(QueryHandler[GetLinkStatus, GetLinkStatusResult]):
    """Read-only; never calls the platform."""

    linked_account_repo: LinkedAccountRepository
    role_mapper: RoleMapper
    invite_link: str | None = None

    async def run(self, query: GetLinkStatus) -> GetLinkStatusResult:
        account = await self.linked_account_repo.get_by_user_id(UserId(query.user_id))
        if account is None or not account.is_connected:
            return GetLinkStatusResult(status=LinkStatus(is_connected=False))

        expected = self.role_mapper.desired_role(account.plan)
        held = account.last_known_roles & self.role_mapper.managed_roles
        return GetLinkStatusResult(
            status=LinkStatus(
                is_connected=True,
                external_id=account.external_id,
                username=account.username,
                last_known_roles=sorted(account.last_known_roles),
                link_state=account.link_state,
                plan=account.plan,
                expected_role=expected,
                needs_role_update=held != {expected},
                connected_at=account.connected_at,
                last_reconciled_at=account.last_reconciled_at,
                invite_link=self.invite_link,
            )
        )
