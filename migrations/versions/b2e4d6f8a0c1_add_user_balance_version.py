"""add user balance version

Revision ID: b2e4d6f8a0c1
Revises: a1f0c3e5b7d9
Create Date: 2026-10-19 15:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


def column_exists(table_name: str, column_name: str) -> bool:
    """Check whether a column exists in the target table."""
    inspector = sa.inspect(op.get_bind())
    return any(col["name"] == column_name for col in inspector.get_columns(table_name))


revision: str = "b2e4d6f8a0c1"
down_revision: Union[str, None] = "a1f0c3e5b7d9"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    if not column_exists("users", "version"):
        op.add_column(
            "users",
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        )


def downgrade() -> None:
    if column_exists("users", "version"):
        op.drop_column("users", "version")
