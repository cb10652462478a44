"""add_linked_accounts

Add the linked_accounts table: one Discord identity per internal user.

Revision ID: add_linked_accounts
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "add_linked_accounts"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add linked accounts table."""
    op.create_table(
        "linked_accounts",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("external_id", sa.String(64), nullable=False),
        sa.Column("username", sa.String(255), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scope", sa.String(255), nullable=False, server_default=""),
        sa.Column("last_known_roles", sa.JSON(), nullable=False),
        sa.Column("link_state", sa.String(32), nullable=False),
        sa.Column("plan", sa.String(32), nullable=False),
        sa.Column("connected_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_reconciled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", name="uq_linked_accounts_user_id"),
        sa.UniqueConstraint("external_id", name="uq_linked_accounts_external_id"),
    )
    op.create_index("ix_linked_accounts_link_state", "linked_accounts", ["link_state"])


def downgrade() -> None:
    """Remove linked accounts table."""
    op.drop_index("ix_linked_accounts_link_state", table_name="linked_accounts")
    op.drop_table("linked_accounts")
