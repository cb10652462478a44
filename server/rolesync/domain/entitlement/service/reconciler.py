"""Reconciliation of managed community roles against a subscription plan."""

import logging

from rolesync.domain.entitlement.model.diff import RoleDiff
from rolesync.domain.entitlement.model.outcome import (
    FailedMutation,
    MutationAction,
    ReconciliationOutcome,
    ReconciliationRun,
    ReconciliationStage,
    ReconciliationStatus,
)
from rolesync.domain.entitlement.model.plan import PlanTier
from rolesync.domain.entitlement.port.community_platform import CommunityPlatform
from rolesync.domain.entitlement.service.membership import MembershipEnsurer
from rolesync.domain.entitlement.service.role_mapper import RoleMapper
from rolesync.domain.link.model.identity import ExternalIdentity, TokenSet
from rolesync.domain.link.model.linked_account import LinkedAccount
from rolesync.domain.link.model.value import LinkState, RoleId, UserId
from rolesync.domain.link.port.repository import LinkedAccountRepository
from rolesync.domain.link.service.identity_linker import IdentityLinker
from rolesync.domain.shared.error import NotFoundError, TransportError
from rolesync.domain.shared.model.deadline import Deadline
from rolesync.domain.shared.service import Service
from rolesync.util.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)


class Reconciler(Service):
    """Brings a linked identity's managed roles in line with a plan.

    Runs for the same user are serialized with a per-user lock held across
    the whole run; runs for different users proceed concurrently. Each run
    reads the freshest LinkedAccount snapshot, diffs the member's live managed
    roles against the desired role, removes stale roles before granting the
    new one, and persists exactly the mutations that took effect.

    Linking a new identity and unlinking take the same lock, so neither can
    interleave with a run and leave a paid role behind.
    """

    _repo: LinkedAccountRepository
    _membership: MembershipEnsurer
    _role_mapper: RoleMapper
    _platform: CommunityPlatform
    _linker: IdentityLinker
    _locks: KeyedLock

    async def reconcile(
        self,
        user_id: UserId,
        plan: PlanTier | str | None = None,
        *,
        deadline: Deadline | None = None,
    ) -> ReconciliationOutcome:
        """Reconcile one user to `plan`, or to the stored plan when `plan` is None.

        Returns NOT_LINKED when there is nothing to reconcile, RECONCILED when
        every mutation took effect and PARTIAL_FAILURE listing the mutations
        that did not.

        Raises:
            UnknownPlanError: `plan` is not one of the enumerated tiers
            MembershipError: Membership could not be ensured; no role was touched
            TransportError: The membership lookup failed after retries
        """
        tier = PlanTier.parse(plan) if plan is not None else None
        async with self._locks.hold(str(user_id)):
            account = await self._repo.get_by_user_id(user_id)
            if account is None or account.link_state is LinkState.UNLINKED:
                logger.debug("Nothing to reconcile: user_id=%s is not linked", user_id)
                return ReconciliationOutcome.not_linked(str(user_id), tier)
            return await self._run(account, tier if tier is not None else account.plan, deadline)

    async def link_identity(
        self,
        user_id: UserId,
        tokens: TokenSet,
        identity: ExternalIdentity,
        *,
        deadline: Deadline | None = None,
    ) -> LinkedAccount:
        """Record a new or refreshed link for `user_id`.

        When the user switches to a different external identity, the managed
        roles the old identity holds are revoked first (best effort), so one
        subscription never grants roles to two identities.

        Raises:
            IdentityAlreadyLinkedError: The external identity belongs to another user
        """
        async with self._locks.hold(str(user_id)):
            current = await self._repo.get_by_user_id(user_id)
            if current is not None and current.external_id != identity.external_id:
                await self._linker.ensure_unclaimed(user_id, identity.external_id)
                failures = await self._release(current, deadline)
                if failures:
                    logger.warning(
                        "Switching identity with %d managed role(s) still held: "
                        "user_id=%s, old_external_id=%s",
                        len(failures),
                        user_id,
                        current.external_id,
                    )
            return await self._linker.upsert_linked_account(user_id, tokens, identity)

    async def unlink(
        self,
        user_id: UserId,
        *,
        deadline: Deadline | None = None,
    ) -> list[FailedMutation]:
        """Revoke every managed role the identity holds, then delete the link.

        Role removal is best effort: failures are returned, not raised, and the
        record is deleted regardless.

        Raises:
            NotFoundError: The user has no link
        """
        async with self._locks.hold(str(user_id)):
            account = await self._repo.get_by_user_id(user_id)
            if account is None:
                raise NotFoundError(f"No linked account for user {user_id}", code="not_linked")
            failures = await self._release(account, deadline)
            await self._repo.delete(user_id)
            return failures

    async def _release(
        self,
        account: LinkedAccount,
        deadline: Deadline | None,
    ) -> list[FailedMutation]:
        """Remove the managed roles the identity holds. Caller holds the user's lock."""
        managed = self._role_mapper.managed_roles
        held = account.last_known_roles & managed
        try:
            member = await self._platform.get_member(account.external_id, deadline=deadline)
        except TransportError as e:
            logger.warning(
                "Member lookup failed, releasing cached roles: user_id=%s, kind=%s",
                account.user_id,
                e.kind,
            )
        else:
            held = member.roles & managed if member is not None else frozenset()

        return await self._apply(
            account, MutationAction.REMOVE, sorted(held), set(account.last_known_roles), deadline
        )

    async def _run(
        self,
        account: LinkedAccount,
        plan: PlanTier,
        deadline: Deadline | None,
    ) -> ReconciliationOutcome:
        run = ReconciliationRun(str(account.user_id))

        member = await self._membership.ensure_member(account, deadline=deadline)
        run.advance(ReconciliationStage.MEMBERSHIP_CHECKED)

        managed = self._role_mapper.managed_roles
        # The live member is authoritative for managed roles
        observed = (account.last_known_roles - managed) | (member.roles & managed)
        desired = self._role_mapper.desired_role(plan)
        diff = RoleDiff.compute(last_known=observed, desired=desired, managed=managed)
        run.advance(ReconciliationStage.ROLES_DIFFED)

        confirmed = set(observed)
        failures: list[FailedMutation] = []
        if not diff.is_empty:
            run.advance(ReconciliationStage.ROLES_MUTATING)
            # Removals first so two paid tiers are never held at once
            failures += await self._apply(
                account, MutationAction.REMOVE, sorted(diff.to_remove), confirmed, deadline
            )
            failures += await self._apply(
                account, MutationAction.ADD, sorted(diff.to_add), confirmed, deadline
            )

        account.record_reconciliation(frozenset(confirmed), plan)
        await self._repo.save(account)
        run.advance(ReconciliationStage.FINISHED)

        status = (
            ReconciliationStatus.PARTIAL_FAILURE if failures else ReconciliationStatus.RECONCILED
        )
        removed = sorted(diff.to_remove - confirmed)
        added = sorted(diff.to_add & confirmed)
        if failures:
            logger.warning(
                "Reconciliation partially failed: user_id=%s, plan=%s, failed=%d",
                account.user_id,
                plan,
                len(failures),
            )
        else:
            logger.info(
                "Reconciled: user_id=%s, plan=%s, added=%s, removed=%s",
                account.user_id,
                plan,
                added,
                removed,
            )

        return ReconciliationOutcome(
            status=status,
            user_id=str(account.user_id),
            plan=plan,
            desired_role=desired,
            added=added,
            removed=removed,
            failures=failures,
            last_known_roles=sorted(confirmed),
        )

    async def _apply(
        self,
        account: LinkedAccount,
        action: MutationAction,
        role_ids: list[RoleId],
        confirmed: set[RoleId],
        deadline: Deadline | None,
    ) -> list[FailedMutation]:
        """Issue one mutation per role, collecting failures instead of stopping.

        `confirmed` is updated in place for every mutation that took effect.
        """
        failures: list[FailedMutation] = []
        for role_id in role_ids:
            try:
                if action is MutationAction.ADD:
                    await self._platform.add_role(account.external_id, role_id, deadline=deadline)
                    confirmed.add(role_id)
                else:
                    await self._platform.remove_role(
                        account.external_id, role_id, deadline=deadline
                    )
                    confirmed.discard(role_id)
            except TransportError as e:
                logger.warning(
                    "Role %s failed: user_id=%s, role_id=%s, kind=%s",
                    action,
                    account.user_id,
                    role_id,
                    e.kind,
                )
                failures.append(
                    FailedMutation(action=action, role_id=role_id, kind=e.kind, message=e.message)
                )
        return failures
