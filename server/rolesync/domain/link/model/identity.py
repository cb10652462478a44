"""Credentials and identity returned by the platform's OAuth endpoints."""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import SecretStr

from rolesync.domain.link.model.value import ExternalId


@dataclass(frozen=True)
class TokenSet:
    """OAuth credentials from a code exchange or refresh.

    Tokens are SecretStr so they never show up in reprs or log lines.
    """

    access_token: SecretStr
    refresh_token: SecretStr | None
    expires_at: datetime
    scope: str = ""
    token_type: str = "Bearer"

    @classmethod
    def from_response(cls, data: dict[str, Any], now: datetime | None = None) -> "TokenSet":
        """Build from a standard OAuth2 token response body."""
        issued = now or datetime.now(UTC)
        refresh = data.get("refresh_token")
        return cls(
            access_token=SecretStr(data["access_token"]),
            refresh_token=SecretStr(refresh) if refresh else None,
            expires_at=issued + timedelta(seconds=int(data.get("expires_in", 0))),
            scope=data.get("scope", ""),
            token_type=data.get("token_type", "Bearer"),
        )


@dataclass(frozen=True)
class ExternalIdentity:
    """The platform account behind an access token."""

    external_id: ExternalId
    username: str
    global_name: str | None = None
    avatar: str | None = None
    email: str | None = None
    raw_data: dict[str, Any] = field(default_factory=dict, repr=False)
