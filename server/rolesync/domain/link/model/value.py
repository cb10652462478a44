"""Value objects for the link domain."""

from enum import StrEnum
from typing import NewType
from uuid import UUID, uuid4

from pydantic import RootModel, field_validator

ExternalId = NewType("ExternalId", str)
"""The platform's stable identifier for a user (a Discord snowflake)."""

RoleId = NewType("RoleId", str)
"""The platform's identifier for a role."""


class UserId(RootModel[str]):
    """Opaque identifier of an internal user, owned by the billing/user system."""

    @field_validator("root")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("User id must not be blank")
        return v

    def __str__(self) -> str:
        return self.root

    def __hash__(self) -> int:
        return hash(self.root)


class LinkedAccountId(RootModel[UUID]):
    """Unique identifier for a LinkedAccount."""

    @classmethod
    def generate(cls) -> "LinkedAccountId":
        return cls(uuid4())

    def __str__(self) -> str:
        return str(self.root)

    def __hash__(self) -> int:
        return hash(self.root)


class LinkState(StrEnum):
    UNLINKED = "unlinked"
    LINKED = "linked"
    MEMBERSHIP_PENDING = "membership_pending"
    ERRORED = "errored"
