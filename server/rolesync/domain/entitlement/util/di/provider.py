"""DI provider for the entitlement domain."""

from dishka import provide

from rolesync.config import Config
from rolesync.domain.entitlement.command.reconcile import (
    ReconcilePlanHandler,
    SweepLinkedAccountsHandler,
)
from rolesync.domain.entitlement.port.community_platform import CommunityPlatform
from rolesync.domain.entitlement.schedule.sweep_schedule import SweepSchedule
from rolesync.domain.entitlement.service.membership import MembershipEnsurer
from rolesync.domain.entitlement.service.reconciler import Reconciler
from rolesync.domain.entitlement.service.role_mapper import RoleMapper
from rolesync.domain.entitlement.service.sweep import SweepService
from rolesync.domain.link.port.repository import LinkedAccountRepository
from rolesync.domain.link.service.identity_linker import IdentityLinker
from rolesync.util.di.base import Provider
from rolesync.util.di.scope import Scope
from rolesync.util.keyed_lock import KeyedLock


class EntitlementProvider(Provider):
    """DI provider for entitlement services and handlers."""

    # Command Handlers
    reconcile_plan_handler = provide(ReconcilePlanHandler, scope=Scope.UOW)
    sweep_linked_accounts_handler = provide(SweepLinkedAccountsHandler, scope=Scope.UOW)

    # Schedules
    sweep_schedule = provide(SweepSchedule, scope=Scope.UOW)

    @provide(scope=Scope.APP)
    def get_role_mapper(self, config: Config) -> RoleMapper:
        """Built once; a missing or invalid mapping fails here, at startup."""
        return RoleMapper.from_config(config.discord.roles)

    @provide(scope=Scope.APP)
    def get_reconcile_locks(self) -> KeyedLock:
        """Per-user locks shared by every unit of work in this process."""
        return KeyedLock()

    @provide(scope=Scope.UOW)
    def get_membership_ensurer(
        self,
        platform: CommunityPlatform,
        linker: IdentityLinker,
        repo: LinkedAccountRepository,
    ) -> MembershipEnsurer:
        return MembershipEnsurer(_platform=platform, _linker=linker, _repo=repo)

    @provide(scope=Scope.UOW)
    def get_reconciler(
        self,
        repo: LinkedAccountRepository,
        membership: MembershipEnsurer,
        role_mapper: RoleMapper,
        platform: CommunityPlatform,
        linker: IdentityLinker,
        locks: KeyedLock,
    ) -> Reconciler:
        return Reconciler(
            _repo=repo,
            _membership=membership,
            _role_mapper=role_mapper,
            _platform=platform,
            _linker=linker,
            _locks=locks,
        )

    @provide(scope=Scope.UOW)
    def get_sweep_service(
        self, config: Config, repo: LinkedAccountRepository, reconciler: Reconciler
    ) -> SweepService:
        return SweepService(
            _repo=repo, _reconciler=reconciler, _account_timeout=config.sweep.account_timeout
        )
