"""OAuth provider port for the link domain."""

from abc import abstractmethod
from typing import Protocol

from pydantic import SecretStr

from rolesync.domain.link.model.identity import ExternalIdentity, TokenSet
from rolesync.domain.shared.model.deadline import Deadline
from rolesync.domain.shared.port import Port


class OAuthProvider(Port, Protocol):
    """Port for the platform's OAuth2 endpoints.

    Implementations are adapters in infrastructure/ (e.g., DiscordOAuthProvider).
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique identifier for this provider (e.g., 'discord')."""
        ...

    @abstractmethod
    def get_authorization_url(self, redirect_uri: str, state: str | None = None) -> str:
        """Build the URL that sends the user to the consent screen.

        No network call. Every parameter is percent-encoded; `state` is only
        included when given.
        """
        ...

    @abstractmethod
    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        *,
        deadline: Deadline | None = None,
    ) -> TokenSet:
        """Exchange a one-time authorization code for credentials.

        Raises:
            InvalidGrantError: The code was used, expired, or the redirect_uri differs
            TransportError: The platform could not be reached
        """
        ...

    @abstractmethod
    async def refresh(
        self,
        refresh_token: SecretStr,
        *,
        deadline: Deadline | None = None,
    ) -> TokenSet:
        """Trade a refresh token for new credentials.

        Raises:
            TokenExpiredError: The refresh token was revoked or expired
            TransportError: The platform could not be reached
        """
        ...

    @abstractmethod
    async def fetch_identity(
        self,
        access_token: SecretStr,
        *,
        deadline: Deadline | None = None,
    ) -> ExternalIdentity:
        """Resolve the platform account behind an access token.

        Raises:
            TokenExpiredError: The access token is not accepted
            TransportError: The platform could not be reached
        """
        ...
