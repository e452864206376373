"""
Authoritative store of issued link records.

Every public method opens its own session and transaction, so the store can be
shared by any number of concurrent issuers and verifiers.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from authlinker.db.models import (
    STATUS_COVERED,
    STATUS_UNUSED,
    STATUS_USED,
    AuthRecord,
    as_utc,
)
from authlinker.links.errors import CooldownError, StorageError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = structlog.get_logger()

# Attempts for supersede+insert when a concurrent issuer for the same pair wins the race.
MAX_SUPERSEDE_ATTEMPTS = 3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecordStore:
    """Lifecycle operations on AuthRecord rows."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    async def write(
        self,
        record_id: str,
        subject_id: str,
        action: str,
        token: str,
        expires_at: datetime,
    ) -> bool:
        """Insert a new unused record. Returns False on any storage error."""
        try:
            async with self._session_factory() as session, session.begin():
                session.add(self._new_record(record_id, subject_id, action, token, expires_at))
        except SQLAlchemyError as e:
            logger.error("record_write_failed", record_id=record_id, subject_id=subject_id, action=action, error=str(e))
            return False
        return True

    async def supersede_active(self, subject_id: str, action: str) -> str | None:
        """
        Mark every unused record of the pair as covered.

        Returns:
            The id of the record that was still unexpired, if there was one.

        Raises:
            StorageError: If the update fails.
        """
        try:
            async with self._session_factory() as session, session.begin():
                return await self._supersede(session, subject_id, action)
        except SQLAlchemyError as e:
            logger.error("record_supersede_failed", subject_id=subject_id, action=action, error=str(e))
            msg = "Could not supersede active record"
            raise StorageError(msg) from e

    async def supersede_and_write(
        self,
        record_id: str,
        subject_id: str,
        action: str,
        token: str,
        expires_at: datetime,
        cooldown: timedelta | None = None,
    ) -> str | None:
        """
        Cover the pair's active record and insert the new one in a single transaction.

        If a concurrent issuance for the same pair commits first, the partial
        unique index rejects this insert. The transaction is then restarted and
        covers the winner, so exactly one unused record survives.

        With a ``cooldown`` window the pair's history is checked inside the same
        transaction, after the covering update has taken the write lock. A
        restarted loser therefore sees the winner's row and is refused.

        Returns:
            The id of the superseded record, if any.

        Raises:
            CooldownError: If a record of the pair is younger than ``cooldown``.
            StorageError: If the transaction fails or conflicts persist.
        """
        for attempt in range(1, MAX_SUPERSEDE_ATTEMPTS + 1):
            try:
                async with self._session_factory() as session, session.begin():
                    previous_id = await self._supersede(session, subject_id, action)
                    if cooldown is not None:
                        await self._enforce_cooldown(session, subject_id, action, cooldown)
                    session.add(self._new_record(record_id, subject_id, action, token, expires_at))
            except IntegrityError as e:
                logger.warning(
                    "record_issue_conflict",
                    record_id=record_id,
                    subject_id=subject_id,
                    action=action,
                    attempt=attempt,
                    error=str(e.orig),
                )
                continue
            except SQLAlchemyError as e:
                logger.error("record_issue_failed", record_id=record_id, subject_id=subject_id, action=action, error=str(e))
                msg = "Could not write auth record"
                raise StorageError(msg) from e

            if previous_id is not None:
                logger.info("record_superseded", previous_id=previous_id, record_id=record_id, subject_id=subject_id, action=action)
            return previous_id

        msg = "Could not write auth record: concurrent issuance conflict"
        raise StorageError(msg)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def get(self, record_id: str) -> AuthRecord | None:
        """Fetch a record by id."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(AuthRecord).where(AuthRecord.id == record_id))
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("record_lookup_failed", record_id=record_id, error=str(e))
            msg = "Could not read auth record"
            raise StorageError(msg) from e

    async def is_valid(self, record_id: str, token: str) -> bool:
        """True iff the record exists with this token, is unused, and has not expired."""
        now = self._clock()
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(AuthRecord.id).where(
                        AuthRecord.id == record_id,
                        AuthRecord.token == token,
                        AuthRecord.status == STATUS_UNUSED,
                        AuthRecord.is_used == False,  # noqa: E712
                        AuthRecord.expires_at > now,
                    )
                )
                return result.scalar_one_or_none() is not None
        except SQLAlchemyError as e:
            logger.error("record_validation_failed", record_id=record_id, error=str(e))
            return False

    async def mark_used(self, record_id: str) -> bool:
        """
        Transition unused -> used.

        The update is conditional on the current status, so only one of several
        concurrent verifications can succeed.
        """
        now = self._clock()
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    update(AuthRecord)
                    .where(AuthRecord.id == record_id)
                    .where(AuthRecord.status == STATUS_UNUSED)
                    .values(status=STATUS_USED, is_used=True, updated_at=now)
                )
        except SQLAlchemyError as e:
            logger.error("record_mark_used_failed", record_id=record_id, error=str(e))
            return False
        return bool(result.rowcount)

    # ------------------------------------------------------------------
    # Cooldown fallback and maintenance
    # ------------------------------------------------------------------

    async def last_issued_at(self, subject_id: str, action: str) -> datetime | None:
        """Most recent created_at for the pair, whatever its status."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(func.max(AuthRecord.created_at)).where(
                        AuthRecord.subject_id == subject_id,
                        AuthRecord.action == action,
                    )
                )
                latest = result.scalar()
        except SQLAlchemyError as e:
            logger.error("record_last_issued_failed", subject_id=subject_id, action=action, error=str(e))
            msg = "Could not read issuance history"
            raise StorageError(msg) from e
        if latest is None:
            return None
        return as_utc(latest)

    async def sweep_expired(self) -> int:
        """Delete rows whose deadline has passed. Returns the number removed."""
        now = self._clock()
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(delete(AuthRecord).where(AuthRecord.expires_at < now))
        except SQLAlchemyError as e:
            logger.error("record_sweep_failed", error=str(e))
            msg = "Could not sweep expired records"
            raise StorageError(msg) from e
        return result.rowcount  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _new_record(
        self,
        record_id: str,
        subject_id: str,
        action: str,
        token: str,
        expires_at: datetime,
    ) -> AuthRecord:
        now = self._clock()
        return AuthRecord(
            id=record_id,
            subject_id=subject_id,
            action=action,
            token=token,
            status=STATUS_UNUSED,
            is_used=False,
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
        )

    async def _enforce_cooldown(
        self, session: AsyncSession, subject_id: str, action: str, cooldown: timedelta
    ) -> None:
        result = await session.execute(
            select(func.max(AuthRecord.created_at)).where(
                AuthRecord.subject_id == subject_id,
                AuthRecord.action == action,
            )
        )
        latest = result.scalar()
        if latest is None:
            return
        left = (as_utc(latest) + cooldown - self._clock()).total_seconds()
        if left > 0:
            # Raising inside the transaction rolls back the covering update.
            raise CooldownError(math.ceil(left))

    async def _supersede(self, session: AsyncSession, subject_id: str, action: str) -> str | None:
        now = self._clock()
        result = await session.execute(
            update(AuthRecord)
            .where(
                and_(
                    AuthRecord.subject_id == subject_id,
                    AuthRecord.action == action,
                    AuthRecord.status == STATUS_UNUSED,
                )
            )
            .values(status=STATUS_COVERED, is_used=True, updated_at=now)
            .returning(AuthRecord.id, AuthRecord.expires_at)
        )
        previous_id = None
        for row_id, expires_at in result.all():
            if as_utc(expires_at) > now:
                previous_id = row_id
        return previous_id
