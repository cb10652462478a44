"""Role diff computed per reconciliation run. Never persisted."""

from dataclasses import dataclass

from rolesync.domain.link.model.value import RoleId


@dataclass(frozen=True)
class RoleDiff:
    to_add: frozenset[RoleId]
    to_remove: frozenset[RoleId]

    @classmethod
    def compute(
        cls,
        last_known: frozenset[RoleId],
        desired: RoleId,
        managed: frozenset[RoleId],
    ) -> "RoleDiff":
        """Diff the cached roles against the single desired managed role.

        Roles outside `managed` never appear in either set.
        """
        if desired not in managed:
            raise ValueError(f"Desired role {desired} is not a managed role")
        return cls(
            to_add=frozenset({desired}) - last_known,
            to_remove=(last_known & managed) - {desired},
        )

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove
