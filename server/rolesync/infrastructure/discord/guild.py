"""Discord guild adapter: membership and role calls as the bot."""

import logging
from urllib.parse import quote

from pydantic import SecretStr

from rolesync.config import DiscordConfig
from rolesync.domain.entitlement.port.community_platform import (
    CommunityMember,
    CommunityPlatform,
)
from rolesync.domain.link.model.value import ExternalId, RoleId
from rolesync.domain.shared.error import TokenExpiredError, TransportError, TransportErrorKind
from rolesync.domain.shared.model.deadline import Deadline
from rolesync.infrastructure.http.client import ApiRequest, RateLimitedClient

logger = logging.getLogger(__name__)

MEMBER_READ_ROUTE = "guild_member_read"
MEMBER_JOIN_ROUTE = "guild_member_join"
MEMBER_ROLE_ROUTE = "guild_member_role"

# Discord JSON error codes
UNKNOWN_MEMBER = 10007
INVALID_OAUTH_TOKEN = 50025

AUDIT_LOG_REASON = "Subscription plan sync"


class DiscordGuildGateway(CommunityPlatform):
    """CommunityPlatform implementation for one Discord guild."""

    def __init__(self, config: DiscordConfig, client: RateLimitedClient) -> None:
        self._config = config
        self._client = client

    @property
    def _bot_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bot {self._config.bot_token}"}

    def _member_path(self, external_id: ExternalId) -> str:
        return f"/guilds/{self._config.guild_id}/members/{external_id}"

    async def get_member(
        self,
        external_id: ExternalId,
        *,
        deadline: Deadline | None = None,
    ) -> CommunityMember | None:
        request = ApiRequest(
            method="GET",
            path=self._member_path(external_id),
            route=MEMBER_READ_ROUTE,
            headers=self._bot_headers,
        )
        try:
            response = await self._client.invoke(request, deadline=deadline)
        except TransportError as e:
            # Unknown Member: the user exists but is not in the guild
            if e.kind is TransportErrorKind.NOT_FOUND and e.platform_code == UNKNOWN_MEMBER:
                return None
            raise

        member = response.json()
        return CommunityMember(
            external_id=external_id,
            roles=frozenset(RoleId(str(role)) for role in member.get("roles", [])),
        )

    async def add_member(
        self,
        external_id: ExternalId,
        access_token: SecretStr,
        *,
        deadline: Deadline | None = None,
    ) -> bool:
        request = ApiRequest(
            method="PUT",
            path=self._member_path(external_id),
            route=MEMBER_JOIN_ROUTE,
            headers=self._bot_headers,
            json={"access_token": access_token.get_secret_value()},
        )
        try:
            response = await self._client.invoke(request, deadline=deadline)
        except TransportError as e:
            if e.kind is TransportErrorKind.REJECTED and (
                e.status_code == 401 or e.platform_code == INVALID_OAUTH_TOKEN
            ):
                raise TokenExpiredError("Access token rejected on guild join") from e
            raise
        # 201 Created: joined now; 204 No Content: already a member
        return response.status_code == 201

    async def add_role(
        self,
        external_id: ExternalId,
        role_id: RoleId,
        *,
        deadline: Deadline | None = None,
    ) -> None:
        await self._client.invoke(self._role_request("PUT", external_id, role_id), deadline=deadline)

    async def remove_role(
        self,
        external_id: ExternalId,
        role_id: RoleId,
        *,
        deadline: Deadline | None = None,
    ) -> None:
        try:
            await self._client.invoke(
                self._role_request("DELETE", external_id, role_id), deadline=deadline
            )
        except TransportError as e:
            # A member who left the guild holds no roles
            if e.kind is TransportErrorKind.NOT_FOUND and e.platform_code == UNKNOWN_MEMBER:
                logger.debug("Role %s already gone: %s left the guild", role_id, external_id)
                return
            raise

    def _role_request(self, method: str, external_id: ExternalId, role_id: RoleId) -> ApiRequest:
        return ApiRequest(
            method=method,
            path=f"{self._member_path(external_id)}/roles/{role_id}",
            route=MEMBER_ROLE_ROUTE,
            headers={**self._bot_headers, "X-Audit-Log-Reason": quote(AUDIT_LOG_REASON)},
        )
