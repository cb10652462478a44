"""Unit tests for Reconciler."""

import asyncio
from datetime import UTC, datetime, timedelta

import httpx
import pytest
from pydantic import SecretStr

from fakes import (
    EMPIRE_ROLE,
    FREE_ROLE,
    PRO_ROLE,
    STARTER_ROLE,
    UNMANAGED_ROLE,
    FakeCommunityPlatform,
    FakeOAuthProvider,
    InMemoryLinkedAccountRepository,
    make_linked_account,
)
from rolesync.config import DiscordConfig
from rolesync.domain.entitlement.model.outcome import MutationAction, ReconciliationStatus
from rolesync.domain.entitlement.model.plan import PlanTier
from rolesync.domain.entitlement.service.membership import MembershipEnsurer
from rolesync.domain.entitlement.service.reconciler import Reconciler
from rolesync.domain.entitlement.service.role_mapper import RoleMapper
from rolesync.domain.link.model.identity import ExternalIdentity, TokenSet
from rolesync.domain.link.model.value import ExternalId, LinkState, UserId
from rolesync.domain.link.service.identity_linker import IdentityLinker
from rolesync.domain.shared.error import (
    IdentityAlreadyLinkedError,
    MembershipNotFoundError,
    NotFoundError,
    TransportError,
    TransportErrorKind,
    UnknownPlanError,
)
from rolesync.infrastructure.discord.guild import DiscordGuildGateway
from rolesync.infrastructure.http.client import RateLimitedClient, TokenBucket
from rolesync.util.keyed_lock import KeyedLock

USER = UserId("user-1")
EXTERNAL_ID = "80351110224678912"


def make_reconciler(
    repo: InMemoryLinkedAccountRepository,
    platform: FakeCommunityPlatform,
    role_mapper: RoleMapper,
    locks: KeyedLock | None = None,
) -> Reconciler:
    """Create a Reconciler wired to in-memory doubles."""
    linker = IdentityLinker(_provider=FakeOAuthProvider(), _repo=repo)
    membership = MembershipEnsurer(_platform=platform, _linker=linker, _repo=repo)
    return Reconciler(
        _repo=repo,
        _membership=membership,
        _role_mapper=role_mapper,
        _platform=platform,
        _linker=linker,
        _locks=locks or KeyedLock(),
    )


def setup_member(platform: FakeCommunityPlatform, roles: set[str]) -> None:
    platform.members[EXTERNAL_ID] = set(roles)


async def cached_roles(repo: InMemoryLinkedAccountRepository) -> frozenset[str]:
    account = await repo.get_by_user_id(USER)
    assert account is not None
    return account.last_known_roles


class TestReconcileNotLinked:
    @pytest.mark.asyncio
    async def test_missing_account_is_not_linked(self, platform, role_mapper):
        reconciler = make_reconciler(InMemoryLinkedAccountRepository(), platform, role_mapper)

        outcome = await reconciler.reconcile(USER, "pro")

        assert outcome.status is ReconciliationStatus.NOT_LINKED
        assert outcome.plan is PlanTier.PRO
        assert platform.calls == []

    @pytest.mark.asyncio
    async def test_unlinked_account_is_not_linked(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository(make_linked_account(state=LinkState.UNLINKED))
        reconciler = make_reconciler(repo, platform, role_mapper)

        outcome = await reconciler.reconcile(USER, "pro")

        assert outcome.status is ReconciliationStatus.NOT_LINKED
        assert platform.calls == []

    @pytest.mark.asyncio
    async def test_unknown_plan_fails_before_any_call(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository(make_linked_account())
        reconciler = make_reconciler(repo, platform, role_mapper)

        with pytest.raises(UnknownPlanError):
            await reconciler.reconcile(USER, "platinum")

        assert platform.calls == []


class TestReconcileScenarios:
    @pytest.mark.asyncio
    async def test_starter_to_pro_removes_then_adds(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository(make_linked_account(roles={STARTER_ROLE}))
        setup_member(platform, {STARTER_ROLE})
        reconciler = make_reconciler(repo, platform, role_mapper)

        outcome = await reconciler.reconcile(USER, "pro")

        assert platform.mutations == [("remove", STARTER_ROLE), ("add", PRO_ROLE)]
        assert outcome.status is ReconciliationStatus.RECONCILED
        assert outcome.removed == [STARTER_ROLE]
        assert outcome.added == [PRO_ROLE]
        assert await cached_roles(repo) == {PRO_ROLE}

    @pytest.mark.asyncio
    async def test_unknown_identity_fails_without_role_calls(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository(make_linked_account(roles={STARTER_ROLE}))
        platform.unknown.add(EXTERNAL_ID)
        reconciler = make_reconciler(repo, platform, role_mapper)

        with pytest.raises(MembershipNotFoundError):
            await reconciler.reconcile(USER, "pro")

        assert platform.mutations == []
        assert await cached_roles(repo) == {STARTER_ROLE}

    @pytest.mark.asyncio
    async def test_non_member_is_joined_before_roles(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository(make_linked_account())
        reconciler = make_reconciler(repo, platform, role_mapper)

        outcome = await reconciler.reconcile(USER, "starter")

        assert platform.calls[:2] == [("get_member", EXTERNAL_ID), ("add_member", EXTERNAL_ID)]
        assert platform.mutations == [("add", STARTER_ROLE)]
        assert outcome.status is ReconciliationStatus.RECONCILED
        account = await repo.get_by_user_id(USER)
        assert account.link_state is LinkState.LINKED

    @pytest.mark.asyncio
    async def test_records_plan_and_reconciled_at(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository(make_linked_account())
        setup_member(platform, set())
        reconciler = make_reconciler(repo, platform, role_mapper)

        await reconciler.reconcile(USER, "EMPIRE")

        account = await repo.get_by_user_id(USER)
        assert account.plan is PlanTier.EMPIRE
        assert account.last_reconciled_at is not None
        assert account.last_known_roles == {EMPIRE_ROLE}


class TestReconcileProperties:
    @pytest.mark.asyncio
    async def test_idempotent(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository(make_linked_account(roles={STARTER_ROLE}))
        setup_member(platform, {STARTER_ROLE})
        reconciler = make_reconciler(repo, platform, role_mapper)

        first = await reconciler.reconcile(USER, "pro")
        roles_after_first = await cached_roles(repo)
        mutations_after_first = len(platform.mutations)
        second = await reconciler.reconcile(USER, "pro")

        assert first.status is ReconciliationStatus.RECONCILED
        assert second.status is ReconciliationStatus.RECONCILED
        assert await cached_roles(repo) == roles_after_first
        assert len(platform.mutations) == mutations_after_first
        assert second.added == []
        assert second.removed == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("plan", list(PlanTier))
    @pytest.mark.parametrize(
        "start",
        [set(), {FREE_ROLE}, {STARTER_ROLE, PRO_ROLE}, {FREE_ROLE, STARTER_ROLE, PRO_ROLE, EMPIRE_ROLE}],
    )
    async def test_converges_to_desired_role(self, platform, role_mapper, plan, start):
        repo = InMemoryLinkedAccountRepository(make_linked_account(roles=start))
        setup_member(platform, start)
        reconciler = make_reconciler(repo, platform, role_mapper)

        outcome = await reconciler.reconcile(USER, plan)

        assert outcome.status is ReconciliationStatus.RECONCILED
        assert await cached_roles(repo) == {role_mapper.desired_role(plan)}

    @pytest.mark.asyncio
    async def test_never_touches_unmanaged_roles(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository(
            make_linked_account(roles={UNMANAGED_ROLE, STARTER_ROLE})
        )
        setup_member(platform, {UNMANAGED_ROLE, STARTER_ROLE})
        reconciler = make_reconciler(repo, platform, role_mapper)

        await reconciler.reconcile(USER, "free")

        touched = {role for _, role in platform.mutations}
        assert touched <= role_mapper.managed_roles
        assert UNMANAGED_ROLE in await cached_roles(repo)
        assert UNMANAGED_ROLE in platform.members[EXTERNAL_ID]

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_stale_role_and_adds_new(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository(make_linked_account(roles={STARTER_ROLE}))
        setup_member(platform, {STARTER_ROLE})
        platform.failures[("remove", STARTER_ROLE)] = TransportError(
            TransportErrorKind.UNAVAILABLE, "Discord is down"
        )
        reconciler = make_reconciler(repo, platform, role_mapper)

        outcome = await reconciler.reconcile(USER, "pro")

        assert outcome.status is ReconciliationStatus.PARTIAL_FAILURE
        assert not outcome.ok
        assert len(outcome.failures) == 1
        failure = outcome.failures[0]
        assert failure.action is MutationAction.REMOVE
        assert failure.role_id == STARTER_ROLE
        assert failure.kind is TransportErrorKind.UNAVAILABLE
        # The add is still attempted after the failed removal
        assert platform.mutations == [("remove", STARTER_ROLE), ("add", PRO_ROLE)]
        assert await cached_roles(repo) == {STARTER_ROLE, PRO_ROLE}

    @pytest.mark.asyncio
    async def test_failed_add_is_not_cached(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository(make_linked_account(roles={STARTER_ROLE}))
        setup_member(platform, {STARTER_ROLE})
        platform.failures[("add", PRO_ROLE)] = TransportError(
            TransportErrorKind.RATE_LIMITED, "Too many requests"
        )
        reconciler = make_reconciler(repo, platform, role_mapper)

        outcome = await reconciler.reconcile(USER, "pro")

        assert outcome.status is ReconciliationStatus.PARTIAL_FAILURE
        assert outcome.removed == [STARTER_ROLE]
        assert outcome.added == []
        assert await cached_roles(repo) == set()

    @pytest.mark.asyncio
    async def test_retry_after_partial_failure_only_redoes_failed_mutation(
        self, platform, role_mapper
    ):
        repo = InMemoryLinkedAccountRepository(make_linked_account(roles={STARTER_ROLE}))
        setup_member(platform, {STARTER_ROLE})
        platform.failures[("remove", STARTER_ROLE)] = TransportError(
            TransportErrorKind.UNAVAILABLE, "Discord is down"
        )
        reconciler = make_reconciler(repo, platform, role_mapper)
        await reconciler.reconcile(USER, "pro")

        platform.failures.clear()
        platform.calls.clear()
        outcome = await reconciler.reconcile(USER, "pro")

        assert outcome.status is ReconciliationStatus.RECONCILED
        assert platform.mutations == [("remove", STARTER_ROLE)]
        assert await cached_roles(repo) == {PRO_ROLE}

    @pytest.mark.asyncio
    async def test_concurrent_runs_for_same_user_do_not_mix(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository(make_linked_account(roles={FREE_ROLE}))
        setup_member(platform, {FREE_ROLE})
        reconciler = make_reconciler(repo, platform, role_mapper)

        await asyncio.gather(
            reconciler.reconcile(USER, "starter"),
            reconciler.reconcile(USER, "pro"),
        )

        final = await cached_roles(repo)
        assert final in ({STARTER_ROLE}, {PRO_ROLE})
        managed_on_platform = platform.members[EXTERNAL_ID] & role_mapper.managed_roles
        assert managed_on_platform == final

    @pytest.mark.asyncio
    async def test_concurrent_runs_for_different_users_both_apply(self, platform, role_mapper):
        other_external = "99999999999999999"
        repo = InMemoryLinkedAccountRepository(
            make_linked_account(),
            make_linked_account(user_id="user-2", external_id=other_external),
        )
        setup_member(platform, set())
        platform.members[other_external] = set()
        reconciler = make_reconciler(repo, platform, role_mapper)

        await asyncio.gather(
            reconciler.reconcile(USER, "starter"),
            reconciler.reconcile(UserId("user-2"), "empire"),
        )

        assert platform.members[EXTERNAL_ID] == {STARTER_ROLE}
        assert platform.members[other_external] == {EMPIRE_ROLE}


class TestReconcileDrift:
    @pytest.mark.asyncio
    async def test_restores_managed_role_removed_by_hand(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository(make_linked_account(roles={PRO_ROLE}))
        setup_member(platform, set())
        reconciler = make_reconciler(repo, platform, role_mapper)

        outcome = await reconciler.reconcile(USER, "pro")

        assert outcome.status is ReconciliationStatus.RECONCILED
        assert platform.mutations == [("add", PRO_ROLE)]
        assert platform.members[EXTERNAL_ID] == {PRO_ROLE}
        assert await cached_roles(repo) == {PRO_ROLE}

    @pytest.mark.asyncio
    async def test_revokes_managed_role_granted_by_hand(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository(make_linked_account(roles={FREE_ROLE}))
        setup_member(platform, {FREE_ROLE, EMPIRE_ROLE, UNMANAGED_ROLE})
        reconciler = make_reconciler(repo, platform, role_mapper)

        outcome = await reconciler.reconcile(USER, "free")

        assert platform.mutations == [("remove", EMPIRE_ROLE)]
        assert outcome.removed == [EMPIRE_ROLE]
        assert platform.members[EXTERNAL_ID] == {FREE_ROLE, UNMANAGED_ROLE}

    @pytest.mark.asyncio
    async def test_omitted_plan_uses_stored_plan(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository(make_linked_account(plan=PlanTier.PRO))
        setup_member(platform, set())
        reconciler = make_reconciler(repo, platform, role_mapper)

        outcome = await reconciler.reconcile(USER)

        assert outcome.plan is PlanTier.PRO
        assert platform.members[EXTERNAL_ID] == {PRO_ROLE}


class TestUnlink:
    @pytest.mark.asyncio
    async def test_revokes_live_managed_roles_and_deletes(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository(make_linked_account(roles={STARTER_ROLE}))
        setup_member(platform, {PRO_ROLE, UNMANAGED_ROLE})
        reconciler = make_reconciler(repo, platform, role_mapper)

        failures = await reconciler.unlink(USER)

        assert failures == []
        assert platform.mutations == [("remove", PRO_ROLE)]
        assert platform.members[EXTERNAL_ID] == {UNMANAGED_ROLE}
        assert await repo.get_by_user_id(USER) is None

    @pytest.mark.asyncio
    async def test_falls_back_to_cached_roles_when_lookup_fails(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository(make_linked_account(roles={PRO_ROLE}))
        platform.unknown.add(EXTERNAL_ID)
        reconciler = make_reconciler(repo, platform, role_mapper)

        await reconciler.unlink(USER)

        assert platform.mutations == [("remove", PRO_ROLE)]

    @pytest.mark.asyncio
    async def test_reports_failures_and_still_deletes(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository(make_linked_account(roles={PRO_ROLE}))
        setup_member(platform, {PRO_ROLE})
        platform.failures[("remove", PRO_ROLE)] = TransportError(
            TransportErrorKind.UNAVAILABLE, "Discord is down"
        )
        reconciler = make_reconciler(repo, platform, role_mapper)

        failures = await reconciler.unlink(USER)

        assert [f.role_id for f in failures] == [PRO_ROLE]
        assert await repo.get_by_user_id(USER) is None

    @pytest.mark.asyncio
    async def test_unknown_user(self, platform, role_mapper):
        reconciler = make_reconciler(InMemoryLinkedAccountRepository(), platform, role_mapper)

        with pytest.raises(NotFoundError):
            await reconciler.unlink(USER)

    @pytest.mark.asyncio
    async def test_unlink_during_upgrade_leaves_no_managed_role(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository(make_linked_account(roles={STARTER_ROLE}))
        setup_member(platform, {STARTER_ROLE})
        reconciler = make_reconciler(repo, platform, role_mapper)

        await asyncio.gather(reconciler.reconcile(USER, "pro"), reconciler.unlink(USER))

        assert platform.members[EXTERNAL_ID] & role_mapper.managed_roles == set()
        assert await repo.get_by_user_id(USER) is None


class TestLinkIdentity:
    NEW_EXTERNAL_ID = "222222222222222222"

    def identity(self, external_id: str) -> ExternalIdentity:
        return ExternalIdentity(external_id=ExternalId(external_id), username="nelly")

    def tokens(self) -> TokenSet:
        return TokenSet(
            access_token=SecretStr("relinked-access"),
            refresh_token=SecretStr("relinked-refresh"),
            expires_at=datetime.now(UTC) + timedelta(days=7),
        )

    @pytest.mark.asyncio
    async def test_first_link_creates_account(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository()
        reconciler = make_reconciler(repo, platform, role_mapper)

        account = await reconciler.link_identity(USER, self.tokens(), self.identity(EXTERNAL_ID))

        assert account.external_id == EXTERNAL_ID
        assert await repo.get_by_user_id(USER) is not None
        assert platform.calls == []

    @pytest.mark.asyncio
    async def test_same_identity_keeps_roles(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository(make_linked_account(roles={PRO_ROLE}))
        setup_member(platform, {PRO_ROLE})
        reconciler = make_reconciler(repo, platform, role_mapper)

        await reconciler.link_identity(USER, self.tokens(), self.identity(EXTERNAL_ID))

        assert platform.mutations == []
        assert await cached_roles(repo) == {PRO_ROLE}

    @pytest.mark.asyncio
    async def test_switching_identity_revokes_old_roles(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository(
            make_linked_account(roles={PRO_ROLE}, plan=PlanTier.PRO)
        )
        setup_member(platform, {PRO_ROLE})
        platform.members[self.NEW_EXTERNAL_ID] = set()
        reconciler = make_reconciler(repo, platform, role_mapper)

        await reconciler.link_identity(USER, self.tokens(), self.identity(self.NEW_EXTERNAL_ID))
        await reconciler.reconcile(USER, "pro")

        assert platform.members[EXTERNAL_ID] == set()
        assert platform.members[self.NEW_EXTERNAL_ID] == {PRO_ROLE}
        account = await repo.get_by_user_id(USER)
        assert account.external_id == self.NEW_EXTERNAL_ID

    @pytest.mark.asyncio
    async def test_identity_owned_by_another_user_revokes_nothing(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository(
            make_linked_account(roles={PRO_ROLE}),
            make_linked_account(user_id="user-2", external_id=self.NEW_EXTERNAL_ID),
        )
        setup_member(platform, {PRO_ROLE})
        reconciler = make_reconciler(repo, platform, role_mapper)

        with pytest.raises(IdentityAlreadyLinkedError):
            await reconciler.link_identity(
                USER, self.tokens(), self.identity(self.NEW_EXTERNAL_ID)
            )

        assert platform.mutations == []
        assert platform.members[EXTERNAL_ID] == {PRO_ROLE}

    @pytest.mark.asyncio
    async def test_switch_during_upgrade_is_not_overwritten(self, platform, role_mapper):
        repo = InMemoryLinkedAccountRepository(make_linked_account(roles={STARTER_ROLE}))
        setup_member(platform, {STARTER_ROLE})
        platform.members[self.NEW_EXTERNAL_ID] = set()
        reconciler = make_reconciler(repo, platform, role_mapper)

        await asyncio.gather(
            reconciler.reconcile(USER, "pro"),
            reconciler.link_identity(USER, self.tokens(), self.identity(self.NEW_EXTERNAL_ID)),
        )

        account = await repo.get_by_user_id(USER)
        assert account.external_id == self.NEW_EXTERNAL_ID
        assert account.access_token.get_secret_value() == "relinked-access"
        assert platform.members[EXTERNAL_ID] & role_mapper.managed_roles == set()


class TestReconcileOverDiscord:
    """Reconciler driving the Discord adapter through the rate-limited transport."""

    @pytest.mark.asyncio
    async def test_rate_limited_add_is_retried_and_reconciled(self, role_mapper):
        member_path = f"/api/v10/guilds/555/members/{EXTERNAL_ID}"
        role_puts = 0
        sleeps: list[float] = []

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal role_puts
            path = request.url.path
            if request.method == "GET" and path == member_path:
                return httpx.Response(
                    200, json={"user": {"id": EXTERNAL_ID}, "roles": [STARTER_ROLE]}
                )
            if request.method == "DELETE" and path == f"{member_path}/roles/{STARTER_ROLE}":
                return httpx.Response(204)
            if request.method == "PUT" and path == f"{member_path}/roles/{PRO_ROLE}":
                role_puts += 1
                if role_puts == 1:
                    return httpx.Response(
                        429,
                        json={"message": "You are being rate limited.", "retry_after": 2.0},
                    )
                return httpx.Response(204)
            return httpx.Response(404, json={"message": "404: Not Found", "code": 0})

        async def sleep(seconds: float) -> None:
            sleeps.append(seconds)

        config = DiscordConfig(
            client_id="1234",
            client_secret="client-secret",
            bot_token="bot-token",
            guild_id="555",
            api_base_url="https://discord.test/api/v10",
            authorize_url="https://discord.test/oauth2/authorize",
        )
        http = httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url=config.api_base_url
        )
        client = RateLimitedClient(
            http, default_bucket=lambda: TokenBucket(100, 100.0), sleep=sleep
        )
        gateway = DiscordGuildGateway(config, client)
        repo = InMemoryLinkedAccountRepository(make_linked_account(roles={STARTER_ROLE}))
        linker = IdentityLinker(_provider=FakeOAuthProvider(), _repo=repo)
        reconciler = Reconciler(
            _repo=repo,
            _membership=MembershipEnsurer(_platform=gateway, _linker=linker, _repo=repo),
            _role_mapper=role_mapper,
            _platform=gateway,
            _linker=linker,
            _locks=KeyedLock(),
        )

        outcome = await reconciler.reconcile(USER, "pro")
        await http.aclose()

        assert outcome.status is ReconciliationStatus.RECONCILED
        assert outcome.failures == []
        assert outcome.removed == [STARTER_ROLE]
        assert outcome.added == [PRO_ROLE]
        assert role_puts == 2
        assert sleeps[0] >= 2.0
        assert await cached_roles(repo) == {PRO_ROLE}
