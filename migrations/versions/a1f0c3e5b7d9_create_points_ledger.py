"""create points ledger

Revision ID: a1f0c3e5b7d9
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "a1f0c3e5b7d9"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(table_name: str) -> bool:
    return table_name in sa.inspect(op.get_bind()).get_table_names()


def upgrade() -> None:
    if not _table_exists("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column("sustainability_points", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_staff", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_users_email", "users", ["email"], unique=True)

    if not _table_exists("point_earning_rules"):
        op.create_table(
            "point_earning_rules",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("rule_name", sa.String(length=100), nullable=False, unique=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("points_per_purchase", sa.Integer(), nullable=False, server_default="10"),
            sa.Column("points_per_collection", sa.Integer(), nullable=False, server_default="50"),
            sa.Column("points_per_review", sa.Integer(), nullable=False, server_default="20"),
            sa.Column("points_per_referral", sa.Integer(), nullable=False, server_default="100"),
            sa.Column("signup_bonus", sa.Integer(), nullable=False, server_default="50"),
            sa.Column("daily_login_points", sa.Integer(), nullable=False, server_default="5"),
            sa.Column("point_value_in_currency", sa.Integer(), nullable=False, server_default="100"),
            sa.Column("minimum_redemption_points", sa.Integer(), nullable=False, server_default="100"),
            sa.Column("points_expire_in_days", sa.Integer(), nullable=True, server_default="365"),
            sa.Column("expiration_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("event_multiplier", sa.Float(), nullable=True, server_default="1.0"),
            sa.Column("event_start_date", sa.DateTime(), nullable=True),
            sa.Column("event_end_date", sa.DateTime(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_point_earning_rules_is_active", "point_earning_rules", ["is_active"])
        op.create_index("ix_point_earning_rules_created_at", "point_earning_rules", ["created_at"])

    if not _table_exists("point_transactions"):
        op.create_table(
            "point_transactions",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("transaction_type", sa.String(length=32), nullable=False),
            sa.Column("points_amount", sa.Integer(), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("balance_before", sa.Integer(), nullable=False),
            sa.Column("balance_after", sa.Integer(), nullable=False),
            sa.Column("expires_at", sa.DateTime(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="COMPLETED"),
            sa.Column("order_id", sa.String(length=36), nullable=True),
            sa.Column("item_id", sa.String(length=36), nullable=True),
            sa.Column("collection_request_id", sa.String(length=36), nullable=True),
            sa.Column("related_transaction_id", sa.String(length=36), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint("points_amount >= 0", name="ck_point_transactions_amount_non_negative"),
            sa.CheckConstraint("balance_after >= 0", name="ck_point_transactions_balance_non_negative"),
        )
        op.create_index("ix_point_transactions_user_id", "point_transactions", ["user_id"])
        op.create_index("ix_point_transactions_transaction_type", "point_transactions", ["transaction_type"])
        op.create_index("ix_point_transactions_expires_at", "point_transactions", ["expires_at"])
        op.create_index("ix_point_transactions_status", "point_transactions", ["status"])
        op.create_index("ix_point_transactions_created_at", "point_transactions", ["created_at"])


def downgrade() -> None:
    if _table_exists("point_transactions"):
        op.drop_index("ix_point_transactions_created_at", table_name="point_transactions")
        op.drop_index("ix_point_transactions_status", table_name="point_transactions")
        op.drop_index("ix_point_transactions_expires_at", table_name="point_transactions")
        op.drop_index("ix_point_transactions_transaction_type", table_name="point_transactions")
        op.drop_index("ix_point_transactions_user_id", table_name="point_transactions")
        op.drop_table("point_transactions")
    if _table_exists("point_earning_rules"):
        op.drop_index("ix_point_earning_rules_created_at", table_name="point_earning_rules")
        op.drop_index("ix_point_earning_rules_is_active", table_name="point_earning_rules")
        op.drop_table("point_earning_rules")
