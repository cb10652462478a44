"""SQLAlchemy table definitions - dialect-agnostic (works with SQLite and PostgreSQL)."""

from sqlalchemy import (
    Column,
    DateTime,
    Index,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.types import JSON

# Metadata object for all tables
metadata = MetaData()

# ============================================================================
# LINKED ACCOUNTS TABLE
# ============================================================================
linked_accounts_table = Table(
    "linked_accounts",
    metadata,
    Column("id", String, primary_key=True),  # UUID as string
    Column("user_id", String(255), nullable=False),  # Owned by the billing/user system
    Column("external_id", String(64), nullable=False),  # Discord snowflake
    Column("username", String(255), nullable=False),
    Column("access_token", Text, nullable=False),
    Column("refresh_token", Text, nullable=True),
    Column("token_expires_at", DateTime(timezone=True), nullable=False),
    Column("scope", String(255), nullable=False, server_default=""),
    Column("last_known_roles", JSON, nullable=False),  # List of role ids
    Column("link_state", String(32), nullable=False),  # LinkState as string
    Column("plan", String(32), nullable=False),  # PlanTier as string
    Column("connected_at", DateTime(timezone=True), nullable=False),
    Column("last_reconciled_at", DateTime(timezone=True), nullable=True),
    Column("updated_at", DateTime(timezone=True), nullable=True),
    UniqueConstraint("user_id", name="uq_linked_accounts_user_id"),
    UniqueConstraint("external_id", name="uq_linked_accounts_external_id"),
)

Index("ix_linked_accounts_link_state", linked_accounts_table.c.link_state)
