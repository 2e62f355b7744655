"""Initial schema for users, domain records, credentials, config, and gates.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

DOMAIN_TABLES = ("github_data", "contracts_data", "onchain_data", "user_scores", "developer_worth")


def _domain_columns() -> list[sa.Column]:
    return [
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("last_fetched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("github_username", sa.String(100), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("air_user_id", sa.String(100), nullable=True),
        sa.Column("air_did", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("last_fetched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("github_username"),
    )
    op.create_index("idx_users_air_user_id", "users", ["air_user_id"])
    op.create_index("idx_users_air_did", "users", ["air_did"])
    op.create_index("idx_users_email", "users", ["email"])

    op.create_table(
        "wallets",
        sa.Column("id", sa.String(200), nullable=False),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("address", sa.String(100), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("address"),
    )
    op.create_index("idx_wallets_user_id", "wallets", ["user_id"])

    for table in DOMAIN_TABLES:
        extra: list[sa.Column] = []
        if table == "user_scores":
            extra = [
                sa.Column("total_score", sa.Float(), nullable=False, server_default="0"),
                sa.Column("last_score", sa.Float(), nullable=True),
            ]
        elif table == "developer_worth":
            extra = [
                sa.Column("total_worth", sa.Float(), nullable=False, server_default="0"),
                sa.Column("last_worth", sa.Float(), nullable=True),
            ]
        op.create_table(table, *_domain_columns(), *extra, sa.PrimaryKeyConstraint("user_id"))

    op.create_table(
        "user_credentials",
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("credential_id", sa.String(255), nullable=True),
        sa.Column("issuer_did", sa.String(255), nullable=True),
        sa.Column("credential_hash", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("subject", sa.JSON(), nullable=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "platform_config",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(50), nullable=False, server_default="default"),
        sa.Column("enabled_chains", sa.JSON(), nullable=True),
        sa.Column("thresholds", sa.JSON(), nullable=True),
        sa.Column("weights", sa.JSON(), nullable=True),
        sa.Column("worth_multipliers", sa.JSON(), nullable=True),
        sa.Column("notable_repositories", sa.JSON(), nullable=True),
        sa.Column("tvl_tokens", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "klyro_gates",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("requires_approval", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
    )

    op.create_table(
        "gate_verifications",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("gate_id", sa.String(36), sa.ForeignKey("klyro_gates.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("credential_results", sa.JSON(), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("gate_id", "user_id", name="uq_gate_verifications_gate_user"),
    )
    op.create_index("idx_gate_verifications_user", "gate_verifications", ["user_id"])


def downgrade() -> None:
    op.drop_index("idx_gate_verifications_user", table_name="gate_verifications")
    op.drop_table("gate_verifications")
    op.drop_table("klyro_gates")
    op.drop_table("platform_config")
    op.drop_table("user_credentials")
    for table in reversed(DOMAIN_TABLES):
        op.drop_table(table)
    op.drop_index("idx_wallets_user_id", table_name="wallets")
    op.drop_table("wallets")
    op.drop_index("idx_users_email", table_name="users")
    op.drop_index("idx_users_air_did", table_name="users")
    op.drop_index("idx_users_air_user_id", table_name="users")
    op.drop_table("users")
