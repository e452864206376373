"""Auth link records table.

Creates the records table (AUTHLINKER_TABLE_NAME, default auth_records) with
lookup indexes and the partial unique index that allows at most one unused
record per (subject_id, action).

Revision ID: 001_auth_records
Revises: None
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op
from authlinker.config import get_settings

revision: str = "001_auth_records"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

TABLE = get_settings().table_name


def upgrade() -> None:
    """Create the records table."""
    op.create_table(
        TABLE,
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("subject_id", sa.String(36), nullable=False),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("token", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), server_default="unused", nullable=False),
        sa.Column("is_used", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("status IN ('unused', 'used', 'covered')", name=f"ck_{TABLE}_status"),
    )
    op.create_index(f"ix_{TABLE}_subject_id", TABLE, ["subject_id"])
    op.create_index(f"ix_{TABLE}_token", TABLE, ["token"])
    op.create_index(f"ix_{TABLE}_expires_at", TABLE, ["expires_at"])
    op.create_index(
        f"uq_{TABLE}_active",
        TABLE,
        ["subject_id", "action"],
        unique=True,
        postgresql_where=sa.text("status = 'unused'"),
        sqlite_where=sa.text("status = 'unused'"),
    )


def downgrade() -> None:
    """Drop the records table."""
    op.drop_index(f"uq_{TABLE}_active", table_name=TABLE)
    op.drop_index(f"ix_{TABLE}_expires_at", table_name=TABLE)
    op.drop_index(f"ix_{TABLE}_token", table_name=TABLE)
    op.drop_index(f"ix_{TABLE}_subject_id", table_name=TABLE)
    op.drop_table(TABLE)
