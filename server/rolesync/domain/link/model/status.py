"""Read-only link status projection for display."""

from datetime import datetime

from pydantic import BaseModel

from rolesync.domain.link.model.value import LinkState


class LinkStatus(BaseModel):
    is_connected: bool
    external_id: str | None = None
    username: str | None = None
    last_known_roles: list[str] = []
    link_state: LinkState = LinkState.UNLINKED
    plan: str | None = None
    expected_role: str | None = None
    needs_role_update: bool = False
    connected_at: datetime | None = None
    last_reconciled_at: datetime | None = None
    invite_link: str | None = None
