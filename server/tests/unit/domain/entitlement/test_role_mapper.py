"""Unit tests for RoleMapper, PlanTier and RoleDiff."""

import pytest

from fakes import EMPIRE_ROLE, FREE_ROLE, PRO_ROLE, STARTER_ROLE, UNMANAGED_ROLE
from rolesync.config import RoleMappingConfig
from rolesync.domain.entitlement.model.diff import RoleDiff
from rolesync.domain.entitlement.model.plan import PlanTier
from rolesync.domain.entitlement.service.role_mapper import RoleMapper
from rolesync.domain.shared.error import ConfigurationError, UnknownPlanError


class TestPlanTier:
    @pytest.mark.parametrize("value", ["pro", "PRO", " Pro ", PlanTier.PRO])
    def test_parse_is_case_insensitive(self, value):
        assert PlanTier.parse(value) is PlanTier.PRO

    @pytest.mark.parametrize("value", ["", "platinum", "pro-plus"])
    def test_parse_rejects_unknown(self, value):
        with pytest.raises(UnknownPlanError) as exc_info:
            PlanTier.parse(value)
        assert exc_info.value.code == "unknown_plan"


class TestRoleMapper:
    def test_desired_role_per_tier(self, role_mapper):
        assert role_mapper.desired_role("free") == FREE_ROLE
        assert role_mapper.desired_role("starter") == STARTER_ROLE
        assert role_mapper.desired_role(PlanTier.PRO) == PRO_ROLE
        assert role_mapper.desired_role("Empire") == EMPIRE_ROLE

    def test_unknown_plan_raises(self, role_mapper):
        with pytest.raises(UnknownPlanError):
            role_mapper.desired_role("gold")

    def test_managed_roles(self, role_mapper):
        assert role_mapper.managed_roles == {FREE_ROLE, STARTER_ROLE, PRO_ROLE, EMPIRE_ROLE}

    def test_incomplete_mapping_is_rejected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            RoleMapper(_roles={PlanTier.FREE: FREE_ROLE})
        assert exc_info.value.code == "role_mapping_incomplete"

    def test_from_config(self):
        config = RoleMappingConfig(free="1", starter="2", pro="3", empire="4")

        mapper = RoleMapper.from_config(config)

        assert mapper.desired_role("starter") == "2"

    def test_from_missing_config(self):
        with pytest.raises(ConfigurationError) as exc_info:
            RoleMapper.from_config(None)
        assert exc_info.value.code == "role_mapping_missing"


class TestRoleMappingConfig:
    def test_rejects_duplicate_role_ids(self):
        with pytest.raises(ValueError):
            RoleMappingConfig(free="1", starter="1", pro="3", empire="4")

    def test_rejects_non_numeric_role_ids(self):
        with pytest.raises(ValueError):
            RoleMappingConfig(free="free-role", starter="2", pro="3", empire="4")


class TestRoleDiff:
    managed = frozenset({FREE_ROLE, STARTER_ROLE, PRO_ROLE, EMPIRE_ROLE})

    def test_upgrade(self):
        diff = RoleDiff.compute(frozenset({STARTER_ROLE}), PRO_ROLE, self.managed)

        assert diff.to_add == {PRO_ROLE}
        assert diff.to_remove == {STARTER_ROLE}

    def test_already_converged_is_empty(self):
        diff = RoleDiff.compute(frozenset({PRO_ROLE, UNMANAGED_ROLE}), PRO_ROLE, self.managed)

        assert diff.is_empty

    def test_unmanaged_roles_are_never_removed(self):
        diff = RoleDiff.compute(
            frozenset({UNMANAGED_ROLE, FREE_ROLE, EMPIRE_ROLE}), STARTER_ROLE, self.managed
        )

        assert diff.to_remove == {FREE_ROLE, EMPIRE_ROLE}
        assert UNMANAGED_ROLE not in diff.to_add | diff.to_remove

    def test_desired_role_must_be_managed(self):
        with pytest.raises(ValueError):
            RoleDiff.compute(frozenset(), UNMANAGED_ROLE, self.managed)
