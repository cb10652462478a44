"""Repository port for the link domain."""

from abc import abstractmethod
from typing import Protocol

from rolesync.domain.link.model.linked_account import LinkedAccount
from rolesync.domain.link.model.value import ExternalId, LinkState, UserId
from rolesync.domain.shared.port import Port


class LinkedAccountRepository(Port, Protocol):
    """Repository for LinkedAccount entity persistence.

    `save` must make the new state visible to other units of work before it
    returns; reconciliation relies on this to serialize runs per user.
    """

    @abstractmethod
    async def get_by_user_id(self, user_id: UserId) -> LinkedAccount | None:
        """Get the linked account for an internal user."""
        ...

    @abstractmethod
    async def get_by_external_id(self, external_id: ExternalId) -> LinkedAccount | None:
        """Get the linked account owning an external identity."""
        ...

    @abstractmethod
    async def list_by_state(self, *states: LinkState) -> list[LinkedAccount]:
        """List linked accounts in any of the given states (all when none given)."""
        ...

    @abstractmethod
    async def save(self, account: LinkedAccount) -> None:
        """Save a linked account (create or update)."""
        ...

    @abstractmethod
    async def delete(self, user_id: UserId) -> bool:
        """Delete the link for a user. Returns True if deleted, False if not found."""
        ...
