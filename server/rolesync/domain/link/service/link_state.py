"""Signed OAuth state tokens for the account-linking flow."""

import hashlib
import hmac
import json
import logging
import secrets
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode
from dataclasses import dataclass

from rolesync.config import JwtConfig
from rolesync.domain.link.model.value import UserId
from rolesync.domain.shared.service import Service

logger = logging.getLogger(__name__)

# OAuth state validity period (5 minutes)
STATE_EXPIRY_SECONDS = 300


@dataclass(frozen=True)
class VerifiedLinkState:
    """Verified contents of a state token."""

    user_id: UserId
    redirect_uri: str


class LinkStateService(Service):
    """Creates and verifies HMAC-signed OAuth `state` tokens.

    The state binds the callback to the internal user who started the flow,
    which is both the CSRF protection and how the callback knows whose
    account to link.
    """

    _config: JwtConfig

    def create_state(self, user_id: UserId, redirect_uri: str) -> str:
        """Create a signed, self-verifying state token (format: payload.signature)."""
        payload = {
            "nonce": secrets.token_urlsafe(16),
            "sub": str(user_id),
            "redirect_uri": redirect_uri,
            "exp": int(time.time()) + STATE_EXPIRY_SECONDS,
        }
        payload_bytes = json.dumps(payload, separators=(",", ":")).encode()
        payload_b64 = urlsafe_b64encode(payload_bytes).rstrip(b"=").decode()

        signature = self._sign(payload_bytes)
        signature_b64 = urlsafe_b64encode(signature).rstrip(b"=").decode()

        return f"{payload_b64}.{signature_b64}"

    def verify_state(self, state: str) -> VerifiedLinkState | None:
        """Verify a state token. Returns None if malformed, tampered, or expired."""
        parts = state.split(".")
        if len(parts) != 2:
            return None

        payload_b64, signature_b64 = parts
        try:
            # Restore base64 padding
            payload_bytes = urlsafe_b64decode(payload_b64 + "==")
            signature = urlsafe_b64decode(signature_b64 + "==")
        except ValueError:
            return None

        if not hmac.compare_digest(signature, self._sign(payload_bytes)):
            logger.warning("OAuth state signature verification failed")
            return None

        try:
            payload = json.loads(payload_bytes)
        except ValueError:
            return None

        if payload.get("exp", 0) < time.time():
            logger.warning("OAuth state expired")
            return None

        if not payload.get("sub"):
            return None

        return VerifiedLinkState(
            user_id=UserId(payload["sub"]),
            redirect_uri=payload.get("redirect_uri", ""),
        )

    def _sign(self, payload_bytes: bytes) -> bytes:
        return hmac.new(self._config.secret.encode(), payload_bytes, hashlib.sha256).digest()
