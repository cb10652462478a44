"""Community platform port: membership and role calls against one community."""

from abc import abstractmethod
from dataclasses import dataclass
from typing import Protocol

from pydantic import SecretStr

from rolesync.domain.link.model.value import ExternalId, RoleId
from rolesync.domain.shared.model.deadline import Deadline
from rolesync.domain.shared.port import Port


@dataclass(frozen=True)
class CommunityMember:
    """A platform identity as seen inside the community."""

    external_id: ExternalId
    roles: frozenset[RoleId]


class CommunityPlatform(Port, Protocol):
    """Port for the platform's community (guild) API, acting as the bot.

    Role calls are idempotent on the platform side: granting a held role or
    revoking an absent one both succeed.
    """

    @abstractmethod
    async def get_member(
        self,
        external_id: ExternalId,
        *,
        deadline: Deadline | None = None,
    ) -> CommunityMember | None:
        """Look up membership. Returns None when the identity is not a member.

        Raises:
            TransportError: kind NOT_FOUND when the identity itself is unknown
        """
        ...

    @abstractmethod
    async def add_member(
        self,
        external_id: ExternalId,
        access_token: SecretStr,
        *,
        deadline: Deadline | None = None,
    ) -> bool:
        """Join the identity to the community with its own access token.

        Returns True when newly joined, False when it already was a member.
        """
        ...

    @abstractmethod
    async def add_role(
        self,
        external_id: ExternalId,
        role_id: RoleId,
        *,
        deadline: Deadline | None = None,
    ) -> None:
        """Grant a role."""
        ...

    @abstractmethod
    async def remove_role(
        self,
        external_id: ExternalId,
        role_id: RoleId,
        *,
        deadline: Deadline | None = None,
    ) -> None:
        """Revoke a role."""
        ...
