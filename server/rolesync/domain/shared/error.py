"""Error hierarchy for rolesync.

Error layers:
- RolesyncError: Base class for all rolesync errors
- DomainError: Business rule violations, validation failures (4xx responses)
- InfrastructureError: System-level failures like storage/network issues (503 responses)

These errors are mapped to HTTP responses by map_rolesync_error in the API layer.
"""

from enum import StrEnum


class RolesyncError(Exception):
    """Base class for all rolesync errors."""

    def __init__(self, message: str, code: str | None = None) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        super().__init__(message)


# =============================================================================
# Domain Errors (business logic violations - typically 4xx)
# =============================================================================


class DomainError(RolesyncError):
    """Base class for domain/business errors."""


class NotFoundError(DomainError):
    """Resource not found."""


class ValidationError(DomainError):
    """Input validation failed."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message, code="VALIDATION_ERROR")
        self.field = field


class InvalidStateError(DomainError):
    """Operation not allowed in current state."""


class ConflictError(DomainError):
    """Resource already exists or version conflict."""


class AuthorizationError(DomainError):
    """Caller not authorized for this operation."""


# =============================================================================
# Linking Errors (surfaced to the user for re-authentication, never retried)
# =============================================================================


class LinkError(DomainError):
    """Base class for identity linking failures."""


class InvalidGrantError(LinkError):
    """The platform rejected the authorization code (used, expired, or redirect mismatch)."""

    def __init__(self, message: str = "Authorization code rejected") -> None:
        super().__init__(message, code="invalid_grant")


class IdentityAlreadyLinkedError(LinkError, ConflictError):
    """The external identity already belongs to another internal user."""

    def __init__(self, message: str = "External account is linked to another user") -> None:
        super().__init__(message, code="identity_already_linked")


class TokenExpiredError(LinkError):
    """Stored OAuth credentials are expired or revoked and could not be refreshed."""

    def __init__(self, message: str = "OAuth credentials expired") -> None:
        super().__init__(message, code="token_expired")


# =============================================================================
# Membership Errors
# =============================================================================


class MembershipError(DomainError):
    """Base class for community membership failures."""


class MembershipNotFoundError(MembershipError, NotFoundError):
    """The linked identity does not exist on the platform or cannot join the community."""

    def __init__(self, message: str = "External identity not found") -> None:
        super().__init__(message, code="membership_not_found")


class MembershipTokenExpiredError(MembershipError):
    """Joining the community needs a fresh access token; the user must re-link."""

    def __init__(self, message: str = "Access token expired, re-link required") -> None:
        super().__init__(message, code="membership_token_expired")


# =============================================================================
# Infrastructure Errors (system-level failures - typically 503)
# =============================================================================


class InfrastructureError(RolesyncError):
    """Base class for infrastructure/system errors."""


class StorageUnavailableError(InfrastructureError):
    """Storage backend (database) is unavailable."""


class ExternalServiceError(InfrastructureError):
    """External service is unavailable or failed."""


class ConfigurationError(InfrastructureError):
    """System misconfiguration detected."""


class UnknownPlanError(ConfigurationError):
    """A plan value outside the enumerated tiers reached the role mapper."""

    def __init__(self, plan: object) -> None:
        super().__init__(f"Unknown subscription plan: {plan!r}", code="unknown_plan")
        self.plan = plan


class TransportErrorKind(StrEnum):
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    REJECTED = "rejected"  # Non-retryable 4xx other than 404/429
    DEADLINE_EXCEEDED = "deadline_exceeded"


class TransportError(ExternalServiceError):
    """A call to the external platform failed after the client's retry policy.

    `UNAVAILABLE` is recoverable: callers should re-queue, not discard.
    """

    def __init__(
        self,
        kind: TransportErrorKind,
        message: str,
        *,
        status_code: int | None = None,
        platform_code: int | None = None,
        retry_after: float | None = None,
        payload: dict | None = None,
    ) -> None:
        super().__init__(message, code=f"transport_{kind.value}")
        self.kind = kind
        self.status_code = status_code
        self.platform_code = platform_code  # Platform-specific JSON error code, if any
        self.retry_after = retry_after
        self.payload = payload or {}

    @property
    def recoverable(self) -> bool:
        return self.kind in (
            TransportErrorKind.UNAVAILABLE,
            TransportErrorKind.RATE_LIMITED,
            TransportErrorKind.DEADLINE_EXCEEDED,
        )
