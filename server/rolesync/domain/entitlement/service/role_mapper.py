"""Plan tier to managed role mapping."""

from rolesync.config import RoleMappingConfig
from rolesync.domain.entitlement.model.plan import PlanTier
from rolesync.domain.link.model.value import RoleId
from rolesync.domain.shared.error import ConfigurationError
from rolesync.domain.shared.service import Service


class RoleMapper(Service):
    """Pure, total mapping from plan tier to the one role that tier grants.

    Built once at startup from validated config; no network and no state.
    """

    _roles: dict[PlanTier, RoleId]

    def __post_init__(self) -> None:
        missing = [tier.value for tier in PlanTier if not self._roles.get(tier)]
        if missing:
            raise ConfigurationError(
                f"No role configured for plan(s): {', '.join(missing)}",
                code="role_mapping_incomplete",
            )

    @classmethod
    def from_config(cls, config: RoleMappingConfig | None) -> "RoleMapper":
        if config is None:
            raise ConfigurationError(
                "Discord role mapping is not configured", code="role_mapping_missing"
            )
        return cls(_roles={tier: RoleId(getattr(config, tier.value)) for tier in PlanTier})

    def desired_role(self, plan: PlanTier | str) -> RoleId:
        """Raises UnknownPlanError for anything outside the enumerated tiers."""
        return self._roles[PlanTier.parse(plan)]

    @property
    def managed_roles(self) -> frozenset[RoleId]:
        """The enumerated role set this service may grant or revoke."""
        return frozenset(self._roles.values())
