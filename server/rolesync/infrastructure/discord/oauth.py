"""Discord OAuth2 adapter."""

import logging
from urllib.parse import quote, urlencode

from pydantic import SecretStr

from rolesync.config import DiscordConfig
from rolesync.domain.link.model.identity import ExternalIdentity, TokenSet
from rolesync.domain.link.model.value import ExternalId
from rolesync.domain.link.port.oauth_provider import OAuthProvider
from rolesync.domain.shared.error import (
    ExternalServiceError,
    InvalidGrantError,
    TokenExpiredError,
    TransportError,
    TransportErrorKind,
)
from rolesync.domain.shared.model.deadline import Deadline
from rolesync.infrastructure.http.client import ApiRequest, RateLimitedClient

logger = logging.getLogger(__name__)

OAUTH_TOKEN_ROUTE = "oauth_token"
IDENTITY_ROUTE = "identity"


class DiscordOAuthProvider(OAuthProvider):
    """OAuthProvider implementation for Discord (authorization-code grant)."""

    def __init__(self, config: DiscordConfig, client: RateLimitedClient) -> None:
        self._config = config
        self._client = client

    @property
    def provider_name(self) -> str:
        return "discord"

    def get_authorization_url(self, redirect_uri: str, state: str | None = None) -> str:
        """Generate the Discord consent URL."""
        params = {
            "client_id": self._config.client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "scope": " ".join(self._config.scopes),
        }
        if state:
            params["state"] = state
        return f"{self._config.authorize_url}?{urlencode(params, quote_via=quote)}"

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        *,
        deadline: Deadline | None = None,
    ) -> TokenSet:
        try:
            data = await self._token_request(
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": redirect_uri,
                },
                deadline,
            )
        except TransportError as e:
            if _is_grant_rejection(e):
                logger.warning(
                    "Discord rejected authorization code: status=%s, error=%s",
                    e.status_code,
                    e.payload.get("error"),
                )
                raise InvalidGrantError() from e
            raise
        return TokenSet.from_response(data)

    async def refresh(
        self,
        refresh_token: SecretStr,
        *,
        deadline: Deadline | None = None,
    ) -> TokenSet:
        try:
            data = await self._token_request(
                {
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token.get_secret_value(),
                },
                deadline,
            )
        except TransportError as e:
            if _is_grant_rejection(e):
                raise TokenExpiredError("Refresh token rejected") from e
            raise
        return TokenSet.from_response(data)

    async def fetch_identity(
        self,
        access_token: SecretStr,
        *,
        deadline: Deadline | None = None,
    ) -> ExternalIdentity:
        request = ApiRequest(
            method="GET",
            path="/users/@me",
            route=IDENTITY_ROUTE,
            headers={"Authorization": f"Bearer {access_token.get_secret_value()}"},
        )
        try:
            response = await self._client.invoke(request, deadline=deadline)
        except TransportError as e:
            if e.kind is TransportErrorKind.REJECTED and e.status_code == 401:
                raise TokenExpiredError("Access token not accepted") from e
            raise

        # {"id": "80351110224678912", "username": "nelly", "global_name": "Nelly",
        #  "avatar": "8342729096ea3675442027381ff50dfe", "email": "nelly@example.com", ...}
        user = response.json()
        if not user.get("id"):
            raise ExternalServiceError(
                "Discord identity response missing id field", code="oauth_error"
            )
        return ExternalIdentity(
            external_id=ExternalId(str(user["id"])),
            username=user.get("username") or "",
            global_name=user.get("global_name"),
            avatar=user.get("avatar"),
            email=user.get("email"),
            raw_data=user,
        )

    async def _token_request(self, form: dict[str, str], deadline: Deadline | None) -> dict:
        request = ApiRequest(
            method="POST",
            path="/oauth2/token",
            route=OAUTH_TOKEN_ROUTE,
            headers={"Accept": "application/json"},
            data={
                "client_id": self._config.client_id,
                "client_secret": self._config.client_secret,
                **form,
            },
        )
        response = await self._client.invoke(request, deadline=deadline)
        data = response.json()
        if not data.get("access_token"):
            raise ExternalServiceError(
                "Discord token response missing access_token", code="oauth_error"
            )
        return data


def _is_grant_rejection(error: TransportError) -> bool:
    """Discord answers a bad code or refresh token with 400 / 401 and an OAuth error body."""
    return error.kind is TransportErrorKind.REJECTED and error.status_code in (400, 401)
