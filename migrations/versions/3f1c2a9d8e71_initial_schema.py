"""initial schema

Revision ID: 3f1c2a9d8e71
Revises:
Create Date: 2026-10-19 09:12:44.318205

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3f1c2a9d8e71"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create delegation, rate limit and issued credential tables."""
    op.create_table(
        "delegation",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("issuer_address", sa.String(length=42), nullable=False),
        sa.Column("smart_account_address", sa.String(length=42), nullable=False),
        sa.Column("backend_address", sa.String(length=42), nullable=False),
        sa.Column("delegation_payload", sa.JSON(), nullable=False),
        sa.Column("contract_address", sa.String(length=42), nullable=True),
        sa.Column("caveats", sa.JSON(), nullable=False),
        sa.Column("max_calls", sa.Integer(), nullable=False),
        sa.Column("calls_used", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_revoked", sa.Boolean(), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_reason", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("calls_used <= max_calls", name="ck_delegation_calls_within_max"),
    )
    op.create_index("ix_delegation_issuer_address", "delegation", ["issuer_address"])
    op.create_index("ix_delegation_smart_account_address", "delegation", ["smart_account_address"])
    op.create_index("ix_delegation_backend_address", "delegation", ["backend_address"])
    op.create_index("ix_delegation_expires_at", "delegation", ["expires_at"])
    op.create_index(
        "ix_delegation_active_lookup",
        "delegation",
        ["issuer_address", "is_revoked", "expires_at"],
    )

    op.create_table(
        "rate_limit_entry",
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False),
        sa.Column("reset_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )
    op.create_index("ix_rate_limit_entry_reset_at", "rate_limit_entry", ["reset_at"])

    op.create_table(
        "issued_credential",
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), autoincrement=True, nullable=False),
        sa.Column("token_id", sa.String(length=78), nullable=False),
        sa.Column("transaction_hash", sa.String(length=66), nullable=False),
        sa.Column("recipient_address", sa.String(length=42), nullable=False),
        sa.Column("recipient_name", sa.Text(), nullable=False),
        sa.Column("issuer_address", sa.String(length=42), nullable=False),
        sa.Column("issuer_name", sa.Text(), nullable=False),
        sa.Column("credential_type", sa.Text(), nullable=False),
        sa.Column("credential_data", sa.JSON(), nullable=False),
        sa.Column("metadata_uri", sa.Text(), nullable=False),
        sa.Column("delegation_id", sa.String(length=32), nullable=False),
        sa.Column("risk_level", sa.String(length=8), nullable=True),
        sa.Column("risk_score", sa.SmallInteger(), nullable=True),
        sa.Column("recommendation", sa.Text(), nullable=True),
        sa.Column("is_revoked", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["delegation_id"], ["delegation.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_hash"),
    )
    op.create_index("ix_issued_credential_token_id", "issued_credential", ["token_id"])
    op.create_index(
        "ix_issued_credential_recipient_address", "issued_credential", ["recipient_address"]
    )
    op.create_index("ix_issued_credential_issuer_address", "issued_credential", ["issuer_address"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("issued_credential")
    op.drop_table("rate_limit_entry")
    op.drop_table("delegation")
