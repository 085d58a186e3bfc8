"""
Student Registry

Registration, lookup and deletion of students, plus the ordered snapshot
of registered faces that matching runs against.
"""

import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.connection import get_session_factory
from database.models import Student
from models.face_comparator import FaceRepresentation
from models.match_selector import RegistryEntry
from services.attendance_ledger import AttendanceLedger, get_attendance_ledger
from services.exceptions import DuplicateIdentityError, NotFoundError, StorageIOError, ValidationError
from services.file_storage import FACES, FileStore, get_file_store

logger = logging.getLogger(__name__)


@dataclass
class DeletionReport:
    """What a student deletion removed"""
    student_id: str
    attendance_deleted: int
    face_image_deleted: bool


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class StudentRegistry:
    """Registered students backed by the ``students`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker = None,
        file_store: FileStore = None,
        ledger: AttendanceLedger = None
    ):
        self._session_factory = session_factory
        self._file_store = file_store
        self._ledger = ledger

    @property
    def session_factory(self) -> async_sessionmaker:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    @property
    def file_store(self) -> FileStore:
        if self._file_store is None:
            self._file_store = get_file_store()
        return self._file_store

    @property
    def ledger(self) -> AttendanceLedger:
        if self._ledger is None:
            self._ledger = get_attendance_ledger()
        return self._ledger

    @staticmethod
    async def _find(session: AsyncSession, student_id: str) -> Optional[Student]:
        result = await session.execute(select(Student).where(Student.student_id == student_id))
        return result.scalar_one_or_none()

    async def register(
        self,
        student_id: str,
        name: str,
        email: str = None,
        class_section: str = None,
        face_image: bytes = None,
        filename: str = None
    ) -> Student:
        """
        Register a new student, storing the face image first if one is given.

        Args:
            student_id: Unique identifier
            name: Display name
            email: Optional contact
            class_section: Optional group label
            face_image: Raw face image bytes
            filename: Original upload name (for the extension)

        Returns:
            The created Student
        """
        student_id = _clean(student_id)
        name = _clean(name)
        if not student_id:
            raise ValidationError("student_id cannot be empty", {"field": "student_id"})
        if not name:
            raise ValidationError("name cannot be empty", {"field": "name"})

        logger.info("Registration attempt for student_id='%s', name='%s'", student_id, name)

        async with self.session_factory() as session:
            if await self._find(session, student_id) is not None:
                raise DuplicateIdentityError("Student ID already exists", {"student_id": student_id})

        face_image_path = None
        if face_image:
            prefix = f"{student_id}_{int(time.time() * 1000)}"
            face_image_path = self.file_store.save(face_image, FACES, prefix, filename)
            logger.info("Face image saved to: %s", face_image_path)

        student = Student(
            student_id=student_id,
            name=name,
            email=_clean(email),
            class_section=_clean(class_section),
            face_image_path=face_image_path,
        )

        try:
            async with self.session_factory() as session:
                session.add(student)
                await session.commit()
        except IntegrityError as e:
            self._discard(face_image_path)
            raise DuplicateIdentityError("Student ID already exists", {"student_id": student_id}) from e
        except Exception:
            self._discard(face_image_path)
            raise

        logger.info("Student %s registered", student_id)
        return student

    def _discard(self, path: Optional[str]):
        """Remove a face image whose student row was never created"""
        if not path:
            return
        try:
            self.file_store.delete(path)
        except StorageIOError as e:
            logger.error("Could not remove orphaned face image %s: %s", path, e)

    async def find(self, student_id: str) -> Optional[Student]:
        async with self.session_factory() as session:
            return await self._find(session, student_id)

    async def get(self, student_id: str) -> Student:
        student = await self.find(student_id)
        if student is None:
            raise NotFoundError("Student not found", {"student_id": student_id})
        return student

    async def list_students(self) -> List[Student]:
        """All students sorted by name"""
        async with self.session_factory() as session:
            result = await session.execute(select(Student).order_by(Student.name, Student.id))
            return list(result.scalars().all())

    async def count(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(select(func.count(Student.id)))
            return result.scalar_one()

    async def registry_snapshot(self) -> List[RegistryEntry]:
        """
        Students with a stored face, in registration order.

        Students registered after this call are not part of the snapshot.
        """
        stmt = (
            select(Student)
            .where(Student.face_image_path.is_not(None))
            .order_by(Student.id)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            students = result.scalars().all()

        return [
            RegistryEntry(identity=student, representation=FaceRepresentation.from_path(student.face_image_path))
            for student in students
        ]

    async def delete(self, student_id: str) -> DeletionReport:
        """
        Delete a student in explicit steps:

        1. delete the student's attendance events
        2. delete the student row
        (1 and 2 commit together)
        3. delete the stored face image
        """
        async with self.session_factory() as session:
            student = await self._find(session, student_id)
            if student is None:
                raise NotFoundError("Student not found", {"student_id": student_id})

            face_image_path = student.face_image_path
            attendance_deleted = await self.ledger.delete_for_identity(student_id, session=session)
            await session.delete(student)
            await session.commit()

        face_image_deleted = False
        if face_image_path:
            try:
                face_image_deleted = self.file_store.delete(face_image_path)
            except StorageIOError as e:
                logger.error("Student %s deleted but face image remains: %s", student_id, e)

        logger.info("Student %s deleted (%d attendance records)", student_id, attendance_deleted)
        return DeletionReport(
            student_id=student_id,
            attendance_deleted=attendance_deleted,
            face_image_deleted=face_image_deleted,
        )

    async def purge(self, session: AsyncSession = None) -> int:
        """Delete all student rows. Attendance must be removed first."""
        if session is not None:
            result = await session.execute(delete(Student))
            return result.rowcount

        async with self.session_factory() as own_session:
            result = await own_session.execute(delete(Student))
            await own_session.commit()
            return result.rowcount


# Singleton instance
_registry_instance: Optional[StudentRegistry] = None


def get_student_registry() -> StudentRegistry:
    """Get or create StudentRegistry singleton"""
    global _registry_instance
    if _registry_instance is None:
        _registry_instance = StudentRegistry()
    return _registry_instance
