"""Verification of dashboard-issued bearer tokens."""

from typing import Any

import jwt

from rolesync.config import JwtConfig
from rolesync.domain.link.model.value import UserId
from rolesync.domain.shared.service import Service


class AccessTokenVerifier(Service):
    """Verifies HS256 access tokens issued by the dashboard's auth system.

    The `sub` claim is the internal user id. This service never issues tokens.
    """

    _config: JwtConfig

    def verify(self, token: str) -> UserId:
        """Return the user id in a valid token.

        Raises:
            jwt.ExpiredSignatureError: If token has expired
            jwt.InvalidTokenError: If token is invalid or has no subject
        """
        payload: dict[str, Any] = jwt.decode(
            token,
            self._config.secret,
            algorithms=[self._config.algorithm],
            audience=self._config.audience,
        )
        subject = payload.get("sub")
        if not subject or not str(subject).strip():
            raise jwt.InvalidTokenError("Token has no subject")
        return UserId(str(subject))
