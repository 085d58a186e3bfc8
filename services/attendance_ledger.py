"""
Attendance Ledger

Records at most one attendance event per student per calendar day.

The (student_id, attendance_date) unique constraint in the database is the
authority: a lookup short-circuits the common duplicate case, and an insert
that loses a race to a concurrent writer is reported as "already recorded"
by re-reading the winning row.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.connection import get_session_factory
from database.models import AttendanceRecord
from services.exceptions import ValidationError

logger = logging.getLogger(__name__)


@dataclass
class LedgerResult:
    """Outcome of record_if_absent()"""
    created: bool
    event: AttendanceRecord


def _as_day(day) -> date:
    if isinstance(day, datetime):
        return day.date()
    if isinstance(day, date):
        return day
    raise ValidationError(f"Invalid attendance date: {day!r}", {"field": "attendance_date"})


class AttendanceLedger:
    """
    Insert-if-absent store for attendance events.

    Features:
    - One event per (student, day), enforced by the database
    - Idempotent: repeating a record call never changes the stored event
    - Daily counts and date-range queries
    """

    def __init__(self, session_factory: async_sessionmaker = None):
        """
        Args:
            session_factory: Async session factory (defaults to the shared one)
        """
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    @staticmethod
    async def _find(session: AsyncSession, student_id: str, day: date) -> Optional[AttendanceRecord]:
        stmt = select(AttendanceRecord).where(
            AttendanceRecord.student_id == student_id,
            AttendanceRecord.attendance_date == day,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def record_if_absent(
        self,
        student_id: str,
        day,
        timestamp: datetime = None,
        confidence: float = None,
        photo_path: str = None
    ) -> LedgerResult:
        """
        Record attendance unless the student already has an event that day.

        Args:
            student_id: Student identifier
            day: Calendar day of the event
            timestamp: Check-in time (defaults to now)
            confidence: Match confidence, if any
            photo_path: Relative path of the evidence image, if any

        Returns:
            LedgerResult(created=True, new event) or
            LedgerResult(created=False, existing event)
        """
        if not student_id or not str(student_id).strip():
            raise ValidationError("student_id is required", {"field": "student_id"})

        student_id = str(student_id).strip()
        day = _as_day(day)
        timestamp = timestamp or datetime.now()

        async with self.session_factory() as session:
            existing = await self._find(session, student_id, day)
            if existing is not None:
                logger.info("Attendance already recorded for %s on %s", student_id, day)
                return LedgerResult(created=False, event=existing)

            event = AttendanceRecord(
                student_id=student_id,
                attendance_date=day,
                check_in_time=timestamp,
                confidence=confidence,
                photo_path=photo_path,
            )
            session.add(event)

            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                existing = await self._find(session, student_id, day)
                if existing is None:
                    # Not the (student, day) constraint; nothing to fall back to
                    raise
                logger.info("Concurrent attendance insert lost for %s on %s", student_id, day)
                return LedgerResult(created=False, event=existing)

        logger.info("Attendance recorded for %s on %s", student_id, day)
        return LedgerResult(created=True, event=event)

    async def find_by_identity_and_day(self, student_id: str, day) -> Optional[AttendanceRecord]:
        async with self.session_factory() as session:
            return await self._find(session, student_id, _as_day(day))

    async def count_for_day(self, day) -> int:
        """Number of students recorded on a day"""
        stmt = select(func.count(AttendanceRecord.id)).where(
            AttendanceRecord.attendance_date == _as_day(day)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one()

    async def count(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(select(func.count(AttendanceRecord.id)))
            return result.scalar_one()

    async def find_by_date_range(
        self,
        start,
        end,
        student_id: str = None
    ) -> List[AttendanceRecord]:
        """
        Events between two days, both inclusive.

        Args:
            start: First day
            end: Last day
            student_id: Restrict to one student (optional)

        Returns:
            Events ordered by day, then check-in time
        """
        start = _as_day(start)
        end = _as_day(end)
        if end < start:
            raise ValidationError(
                "End date is before start date",
                {"start": start.isoformat(), "end": end.isoformat()}
            )

        stmt = select(AttendanceRecord).where(
            AttendanceRecord.attendance_date >= start,
            AttendanceRecord.attendance_date <= end,
        )
        if student_id:
            stmt = stmt.where(AttendanceRecord.student_id == student_id)
        stmt = stmt.order_by(AttendanceRecord.attendance_date, AttendanceRecord.check_in_time)

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def delete_for_identity(self, student_id: str, session: AsyncSession = None) -> int:
        """
        Delete every event of one student.

        When a session is given the delete joins its transaction and the
        caller commits; otherwise it commits on its own.
        """
        stmt = delete(AttendanceRecord).where(AttendanceRecord.student_id == student_id)

        if session is not None:
            result = await session.execute(stmt)
            return result.rowcount

        async with self.session_factory() as own_session:
            result = await own_session.execute(stmt)
            await own_session.commit()
            return result.rowcount

    async def purge(self, session: AsyncSession = None) -> int:
        """Delete all attendance events. Returns the number removed."""
        stmt = delete(AttendanceRecord)

        if session is not None:
            result = await session.execute(stmt)
            return result.rowcount

        async with self.session_factory() as own_session:
            result = await own_session.execute(stmt)
            await own_session.commit()
        logger.warning("Attendance ledger purged: %d records", result.rowcount)
        return result.rowcount


# Singleton instance
_ledger_instance: Optional[AttendanceLedger] = None


def get_attendance_ledger() -> AttendanceLedger:
    """Get or create AttendanceLedger singleton"""
    global _ledger_instance
    if _ledger_instance is None:
        _ledger_instance = AttendanceLedger()
    return _ledger_instance
