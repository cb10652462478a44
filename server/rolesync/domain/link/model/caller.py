"""Authenticated callers at the API edge."""

from dataclasses import dataclass

from rolesync.domain.link.model.value import UserId


@dataclass(frozen=True)
class CurrentUser:
    """A dashboard user, from a verified bearer token."""

    user_id: UserId


@dataclass(frozen=True)
class ServiceCaller:
    """A trusted backend collaborator (billing webhook, sweep runner)."""

    name: str = "service"
