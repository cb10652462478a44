"""Custom Dishka scopes for rolesync."""

from dishka import BaseScope, new_scope


class Scope(BaseScope):  # type: ignore[misc]  # BaseScope is designed to be subclassed
    """Rolesync dependency injection scopes.

    Hierarchy: APP -> UOW

    - APP: Application lifetime (HTTP client, rate-limit buckets, per-user locks)
    - UOW: Unit of Work (one HTTP request, one scheduled sweep)
    """

    APP = new_scope("APP")
    UOW = new_scope("UOW")
