"""ORM models for issued authentication link records."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, String, false, text
from sqlalchemy.orm import Mapped, mapped_column

from authlinker.config import get_settings
from authlinker.db.base import Base

STATUS_UNUSED = "unused"
STATUS_USED = "used"
STATUS_COVERED = "covered"

# Read once at import; the migration creates the same table.
TABLE_NAME = get_settings().table_name


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps read back from backends without tz support."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Auth link records
# ---------------------------------------------------------------------------


class AuthRecord(Base):
    """One issued link: the authoritative answer to "is this token still valid"."""

    __tablename__ = TABLE_NAME
    __table_args__ = (
        CheckConstraint("status IN ('unused', 'used', 'covered')", name=f"ck_{TABLE_NAME}_status"),
        Index(f"ix_{TABLE_NAME}_subject_id", "subject_id"),
        Index(f"ix_{TABLE_NAME}_token", "token"),
        Index(f"ix_{TABLE_NAME}_expires_at", "expires_at"),
        # At most one unused record per (subject, action).
        Index(
            f"uq_{TABLE_NAME}_active",
            "subject_id",
            "action",
            unique=True,
            postgresql_where=text("status = 'unused'"),
            sqlite_where=text("status = 'unused'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    subject_id: Mapped[str] = mapped_column(String(36), nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    token: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_UNUSED, server_default=STATUS_UNUSED)
    is_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
