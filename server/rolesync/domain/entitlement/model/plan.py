"""Subscription plan tiers."""

from enum import StrEnum

from rolesync.domain.shared.error import UnknownPlanError


class PlanTier(StrEnum):
    """Mutually exclusive subscription tiers, each granting exactly one managed role."""

    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    EMPIRE = "empire"

    @classmethod
    def parse(cls, value: "str | PlanTier") -> "PlanTier":
        """Parse a plan name case-insensitively. Unknown names are a config defect."""
        if isinstance(value, PlanTier):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnknownPlanError(value) from None
