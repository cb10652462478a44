"""Unit tests for IdentityLinker."""

from datetime import timedelta

import pytest

from fakes import (
    PRO_ROLE,
    FakeOAuthProvider,
    InMemoryLinkedAccountRepository,
    make_linked_account,
)
from rolesync.domain.link.model.identity import ExternalIdentity
from rolesync.domain.link.model.value import ExternalId, LinkState, UserId
from rolesync.domain.link.service.identity_linker import IdentityLinker
from rolesync.domain.shared.error import (
    IdentityAlreadyLinkedError,
    TokenExpiredError,
)


def make_linker(repo: InMemoryLinkedAccountRepository, oauth: FakeOAuthProvider) -> IdentityLinker:
    return IdentityLinker(_provider=oauth, _repo=repo)


class TestUpsertLinkedAccount:
    @pytest.mark.asyncio
    async def test_creates_account(self, oauth_provider):
        repo = InMemoryLinkedAccountRepository()
        tokens = await oauth_provider.exchange_code("code-123", "https://app.test/callback")

        account = await make_linker(repo, oauth_provider).upsert_linked_account(
            UserId("user-1"), tokens, oauth_provider.identity
        )

        assert account.external_id == "80351110224678912"
        assert account.access_token.get_secret_value() == "exchanged-access"
        assert await repo.get_by_user_id(UserId("user-1")) is not None

    @pytest.mark.asyncio
    async def test_external_identity_owned_by_other_user_is_refused(self, oauth_provider):
        repo = InMemoryLinkedAccountRepository(make_linked_account(user_id="someone-else"))
        tokens = await oauth_provider.exchange_code("code", "https://x")

        with pytest.raises(IdentityAlreadyLinkedError):
            await make_linker(repo, oauth_provider).upsert_linked_account(
                UserId("user-1"), tokens, oauth_provider.identity
            )

        assert await repo.get_by_user_id(UserId("user-1")) is None

    @pytest.mark.asyncio
    async def test_relink_updates_existing_account(self, oauth_provider):
        existing = make_linked_account(roles={PRO_ROLE}, state=LinkState.ERRORED)
        repo = InMemoryLinkedAccountRepository(existing)
        tokens = await oauth_provider.exchange_code("code", "https://x")

        account = await make_linker(repo, oauth_provider).upsert_linked_account(
            UserId("user-1"), tokens, oauth_provider.identity
        )

        assert account.id == existing.id
        assert account.link_state is LinkState.LINKED
        assert account.last_known_roles == {PRO_ROLE}

    @pytest.mark.asyncio
    async def test_relink_to_new_identity_clears_roles(self, oauth_provider):
        repo = InMemoryLinkedAccountRepository(make_linked_account(roles={PRO_ROLE}))
        identity = ExternalIdentity(external_id=ExternalId("123"), username="alt")
        tokens = await oauth_provider.exchange_code("code", "https://x")

        account = await make_linker(repo, oauth_provider).upsert_linked_account(
            UserId("user-1"), tokens, identity
        )

        assert account.external_id == "123"
        assert account.last_known_roles == frozenset()


class TestEnsureUnclaimed:
    @pytest.mark.asyncio
    async def test_own_identity_is_allowed(self, oauth_provider):
        repo = InMemoryLinkedAccountRepository(make_linked_account())

        await make_linker(repo, oauth_provider).ensure_unclaimed(
            UserId("user-1"), ExternalId("80351110224678912")
        )

    @pytest.mark.asyncio
    async def test_identity_of_another_user_is_refused(self, oauth_provider):
        repo = InMemoryLinkedAccountRepository(make_linked_account(user_id="someone-else"))

        with pytest.raises(IdentityAlreadyLinkedError):
            await make_linker(repo, oauth_provider).ensure_unclaimed(
                UserId("user-1"), ExternalId("80351110224678912")
            )


class TestEnsureFreshToken:
    @pytest.mark.asyncio
    async def test_fresh_token_is_untouched(self, oauth_provider):
        account = make_linked_account()
        repo = InMemoryLinkedAccountRepository(account)

        result = await make_linker(repo, oauth_provider).ensure_fresh_token(account)

        assert result is account
        assert oauth_provider.refreshed == 0

    @pytest.mark.asyncio
    async def test_expiring_token_is_refreshed_and_saved(self, oauth_provider):
        account = make_linked_account(expires_in=timedelta(seconds=30))
        repo = InMemoryLinkedAccountRepository(account)

        result = await make_linker(repo, oauth_provider).ensure_fresh_token(account)

        assert oauth_provider.refreshed == 1
        assert result.access_token.get_secret_value() == "refreshed-access"
        stored = await repo.get_by_user_id(UserId("user-1"))
        assert stored.refresh_token.get_secret_value() == "refreshed-refresh"

    @pytest.mark.asyncio
    async def test_missing_refresh_token_marks_errored(self, oauth_provider):
        account = make_linked_account(expires_in=timedelta(seconds=-1), refresh_token=None)
        repo = InMemoryLinkedAccountRepository(account)

        with pytest.raises(TokenExpiredError):
            await make_linker(repo, oauth_provider).ensure_fresh_token(account)

        stored = await repo.get_by_user_id(UserId("user-1"))
        assert stored.link_state is LinkState.ERRORED
        assert oauth_provider.refreshed == 0

    @pytest.mark.asyncio
    async def test_rejected_refresh_marks_errored(self, oauth_provider):
        account = make_linked_account(expires_in=timedelta(seconds=-1))
        repo = InMemoryLinkedAccountRepository(account)
        oauth_provider.refresh_error = TokenExpiredError()

        with pytest.raises(TokenExpiredError):
            await make_linker(repo, oauth_provider).ensure_fresh_token(account)

        stored = await repo.get_by_user_id(UserId("user-1"))
        assert stored.link_state is LinkState.ERRORED


class TestAuthorizationUrl:
    def test_delegates_to_provider(self, oauth_provider):
        linker = make_linker(InMemoryLinkedAccountRepository(), oauth_provider)

        url = linker.build_authorization_url("https://app.test/callback", state="abc")

        assert "state=abc" in url
