"""SQLAlchemy repository implementation for the link domain."""

from datetime import UTC, datetime
from uuid import UUID

from pydantic import SecretStr
from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rolesync.domain.entitlement.model.plan import PlanTier
from rolesync.domain.link.model.linked_account import LinkedAccount
from rolesync.domain.link.model.value import (
    ExternalId,
    LinkedAccountId,
    LinkState,
    RoleId,
    UserId,
)
from rolesync.domain.link.port.repository import LinkedAccountRepository
from rolesync.domain.shared.error import ConflictError, IdentityAlreadyLinkedError
from rolesync.infrastructure.persistence.tables import linked_accounts_table


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything is stored in UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _row_to_linked_account(row: dict) -> LinkedAccount:
    """Convert a database row to a LinkedAccount model."""
    refresh_token = row["refresh_token"]
    return LinkedAccount(
        id=LinkedAccountId(UUID(row["id"])),
        user_id=UserId(row["user_id"]),
        external_id=ExternalId(row["external_id"]),
        username=row["username"],
        access_token=SecretStr(row["access_token"]),
        refresh_token=SecretStr(refresh_token) if refresh_token else None,
        token_expires_at=_as_utc(row["token_expires_at"]),
        scope=row["scope"] or "",
        last_known_roles=frozenset(RoleId(r) for r in row["last_known_roles"] or []),
        link_state=LinkState(row["link_state"]),
        plan=PlanTier(row["plan"]),
        connected_at=_as_utc(row["connected_at"]),
        last_reconciled_at=_as_utc(row["last_reconciled_at"]),
        updated_at=_as_utc(row["updated_at"]),
    )


def _linked_account_to_dict(account: LinkedAccount) -> dict:
    """Convert a LinkedAccount model to a database row dict."""
    return {
        "id": str(account.id),
        "user_id": str(account.user_id),
        "external_id": account.external_id,
        "username": account.username,
        "access_token": account.access_token.get_secret_value(),
        "refresh_token": (
            account.refresh_token.get_secret_value() if account.refresh_token else None
        ),
        "token_expires_at": account.token_expires_at,
        "scope": account.scope,
        "last_known_roles": sorted(account.last_known_roles),
        "link_state": account.link_state.value,
        "plan": account.plan.value,
        "connected_at": account.connected_at,
        "last_reconciled_at": account.last_reconciled_at,
        "updated_at": account.updated_at,
    }


class SQLAlchemyLinkedAccountRepository(LinkedAccountRepository):
    """SQLAlchemy implementation of LinkedAccountRepository.

    Every write commits immediately so the new state is visible to other
    units of work as soon as `save` or `delete` returns.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_user_id(self, user_id: UserId) -> LinkedAccount | None:
        stmt = select(linked_accounts_table).where(
            linked_accounts_table.c.user_id == str(user_id)
        )
        result = await self.session.execute(stmt)
        row = result.mappings().first()
        return _row_to_linked_account(dict(row)) if row else None

    async def get_by_external_id(self, external_id: ExternalId) -> LinkedAccount | None:
        stmt = select(linked_accounts_table).where(
            linked_accounts_table.c.external_id == external_id
        )
        result = await self.session.execute(stmt)
        row = result.mappings().first()
        return _row_to_linked_account(dict(row)) if row else None

    async def list_by_state(self, *states: LinkState) -> list[LinkedAccount]:
        stmt = select(linked_accounts_table).order_by(linked_accounts_table.c.connected_at)
        if states:
            stmt = stmt.where(linked_accounts_table.c.link_state.in_([s.value for s in states]))
        result = await self.session.execute(stmt)
        return [_row_to_linked_account(dict(row)) for row in result.mappings().all()]

    async def save(self, account: LinkedAccount) -> None:
        values = _linked_account_to_dict(account)
        exists = await self.session.execute(
            select(linked_accounts_table.c.id).where(linked_accounts_table.c.id == values["id"])
        )

        if exists.first() is not None:
            stmt = (
                update(linked_accounts_table)
                .where(linked_accounts_table.c.id == values["id"])
                .values(**values)
            )
        else:
            stmt = insert(linked_accounts_table).values(**values)

        try:
            await self.session.execute(stmt)
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            if "external_id" in str(e.orig):
                raise IdentityAlreadyLinkedError() from e
            raise ConflictError(
                f"Linked account for user {account.user_id} already exists",
                code="link_conflict",
            ) from e

    async def delete(self, user_id: UserId) -> bool:
        result = await self.session.execute(
            delete(linked_accounts_table).where(linked_accounts_table.c.user_id == str(user_id))
        )
        await self.session.commit()
        return result.rowcount > 0
