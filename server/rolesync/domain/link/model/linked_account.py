"""LinkedAccount entity for the link domain.

Links one internal user to one external platform identity.
"""

from datetime import UTC, datetime, timedelta

from pydantic import SecretStr

from rolesync.domain.entitlement.model.plan import PlanTier
from rolesync.domain.link.model.identity import ExternalIdentity, TokenSet
from rolesync.domain.link.model.value import (
    ExternalId,
    LinkedAccountId,
    LinkState,
    RoleId,
    UserId,
)
from rolesync.domain.shared.model.entity import Entity


class LinkedAccount(Entity):
    """A link between an internal user and a platform identity.

    Invariants:
    - `user_id` is unique and immutable after creation
    - `external_id` is unique: two users never share one external identity
    - credentials are only replaced through `update_tokens`
    - `last_known_roles` is a cache of what the platform is believed to hold;
      only the reconciler changes it, and only for roles it managed to mutate
    """

    id: LinkedAccountId
    user_id: UserId
    external_id: ExternalId
    username: str
    access_token: SecretStr
    refresh_token: SecretStr | None = None
    token_expires_at: datetime
    scope: str = ""
    last_known_roles: frozenset[RoleId] = frozenset()
    link_state: LinkState = LinkState.LINKED
    plan: PlanTier = PlanTier.FREE  # Plan of the last reconciliation request
    connected_at: datetime
    last_reconciled_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def create(
        cls,
        user_id: UserId,
        identity: ExternalIdentity,
        tokens: TokenSet,
    ) -> "LinkedAccount":
        """Create a new link after a successful OAuth exchange."""
        now = datetime.now(UTC)
        return cls(
            id=LinkedAccountId.generate(),
            user_id=user_id,
            external_id=identity.external_id,
            username=identity.username,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_expires_at=tokens.expires_at,
            scope=tokens.scope,
            link_state=LinkState.LINKED,
            connected_at=now,
        )

    @property
    def is_connected(self) -> bool:
        return self.link_state is not LinkState.UNLINKED

    def token_expires_within(self, seconds: int, now: datetime | None = None) -> bool:
        current = now or datetime.now(UTC)
        return self.token_expires_at <= current + timedelta(seconds=seconds)

    def update_tokens(self, tokens: TokenSet) -> None:
        self.access_token = tokens.access_token
        # Platforms may omit the refresh token on refresh; keep the old one then
        if tokens.refresh_token is not None:
            self.refresh_token = tokens.refresh_token
        self.token_expires_at = tokens.expires_at
        self.scope = tokens.scope or self.scope
        self._touch()

    def relink(self, identity: ExternalIdentity, tokens: TokenSet) -> None:
        """Refresh an existing link from a new OAuth exchange by the same user.

        A different external identity replaces the old one, so the role cache
        no longer describes anything and is cleared.
        """
        if identity.external_id != self.external_id:
            self.external_id = identity.external_id
            self.last_known_roles = frozenset()
            self.connected_at = datetime.now(UTC)
        self.username = identity.username
        self.update_tokens(tokens)
        self.link_state = LinkState.LINKED

    def mark_linked(self) -> None:
        if self.link_state is not LinkState.LINKED:
            self.link_state = LinkState.LINKED
            self._touch()

    def mark_membership_pending(self) -> None:
        if self.link_state is not LinkState.MEMBERSHIP_PENDING:
            self.link_state = LinkState.MEMBERSHIP_PENDING
            self._touch()

    def mark_errored(self) -> None:
        if self.link_state is not LinkState.ERRORED:
            self.link_state = LinkState.ERRORED
            self._touch()

    def record_reconciliation(
        self,
        roles: frozenset[RoleId],
        plan: PlanTier,
    ) -> None:
        now = datetime.now(UTC)
        self.last_known_roles = roles
        self.plan = plan
        self.last_reconciled_at = now
        self.updated_at = now

    def _touch(self) -> None:
        self.updated_at = datetime.now(UTC)
