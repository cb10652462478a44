"""Centralized error transformation for API routes.

Maps rolesync errors (domain and infrastructure) to HTTPException responses.
"""

import math
from typing import Any

from fastapi import HTTPException

from rolesync.domain.shared.error import (
    AuthorizationError,
    ConflictError,
    DomainError,
    InfrastructureError,
    InvalidGrantError,
    InvalidStateError,
    MembershipTokenExpiredError,
    NotFoundError,
    RolesyncError,
    TokenExpiredError,
    TransportError,
    UnknownPlanError,
    ValidationError,
)

# Checked along the error's MRO, so the most specific entry wins
DOMAIN_ERROR_STATUS_MAP: dict[type[DomainError], int] = {
    NotFoundError: 404,
    ValidationError: 422,
    InvalidStateError: 409,
    ConflictError: 409,
    AuthorizationError: 403,
    InvalidGrantError: 400,
    TokenExpiredError: 409,
    MembershipTokenExpiredError: 409,
}


def _domain_status(error: DomainError) -> int:
    for cls in type(error).__mro__:
        status = DOMAIN_ERROR_STATUS_MAP.get(cls)
        if status is not None:
            return status
    return 400


def map_rolesync_error(error: RolesyncError) -> HTTPException:
    """Map a rolesync error to an HTTPException.

    Args:
        error: The rolesync error to map.

    Returns:
        HTTPException with appropriate status code and detail.
    """
    detail: dict[str, Any] = {
        "code": error.code,
        "message": error.message,
    }

    # A plan the mapper does not know is a caller/config defect, not an outage
    if isinstance(error, UnknownPlanError):
        return HTTPException(status_code=422, detail=detail)

    if isinstance(error, TransportError):
        detail["recoverable"] = error.recoverable
        headers = None
        if error.retry_after is not None:
            headers = {"Retry-After": str(math.ceil(error.retry_after))}
        return HTTPException(status_code=503, detail=detail, headers=headers)

    if isinstance(error, InfrastructureError):
        return HTTPException(status_code=503, detail=detail)

    if isinstance(error, DomainError):
        if isinstance(error, ValidationError) and error.field is not None:
            detail["field"] = error.field
        # Distinguish 401 (unauthenticated) from 403 (unauthorized)
        if isinstance(error, AuthorizationError) and error.code == "missing_token":
            return HTTPException(
                status_code=401,
                detail=detail,
                headers={"WWW-Authenticate": "Bearer"},
            )
        return HTTPException(status_code=_domain_status(error), detail=detail)

    # Fallback for unknown RolesyncError subclasses
    return HTTPException(status_code=500, detail=detail)
