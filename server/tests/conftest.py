"""Global test fixtures."""

import os

import pytest

# Set secrets before any test modules import Config
# This must happen at module load time, not in a fixture
os.environ.setdefault("ROLESYNC_AUTH__JWT__SECRET", "test-secret-for-unit-tests-min-32")

from fakes import (  # noqa: E402
    EMPIRE_ROLE,
    FREE_ROLE,
    PRO_ROLE,
    STARTER_ROLE,
    FakeCommunityPlatform,
    FakeOAuthProvider,
)
from rolesync.domain.entitlement.model.plan import PlanTier  # noqa: E402
from rolesync.domain.entitlement.service.role_mapper import RoleMapper  # noqa: E402


@pytest.fixture
def role_mapper() -> RoleMapper:
    return RoleMapper(
        _roles={
            PlanTier.FREE: FREE_ROLE,
            PlanTier.STARTER: STARTER_ROLE,
            PlanTier.PRO: PRO_ROLE,
            PlanTier.EMPIRE: EMPIRE_ROLE,
        }
    )


@pytest.fixture
def platform() -> FakeCommunityPlatform:
    return FakeCommunityPlatform()


@pytest.fixture
def oauth_provider() -> FakeOAuthProvider:
    return FakeOAuthProvider()
