"""
SQLAlchemy Models for the Attendance System

Defines the database schema for registered students and their daily
attendance records.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Date, DateTime, Float, ForeignKey, UniqueConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Student(Base):
    """
    Registered students table.

    Attributes:
        id: Auto-increment primary key (also the registration order)
        student_id: Unique external identifier (e.g., 23CS041)
        name: Display name
        email: Optional contact
        class_section: Optional group label
        face_image_path: Stored face image, relative to the upload root
        created_at: Registration timestamp
    """
    __tablename__ = "students"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True)
    class_section = Column(String(100), nullable=True)
    face_image_path = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    def to_dict(self) -> dict:
        face_image_url = f"/api/uploads/{self.face_image_path}" if self.face_image_path else None
        return {
            "student_id": self.student_id,
            "name": self.name,
            "email": self.email,
            "class_section": self.class_section,
            "face_image_path": self.face_image_path,
            "face_image_url": face_image_url,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Student(id={self.id}, student_id='{self.student_id}', name='{self.name}')>"


class AttendanceRecord(Base):
    """
    One attendance event per student per calendar day.

    The (student_id, attendance_date) pair is unique at the database level;
    concurrent inserts for the same pair fail with an IntegrityError.
    """
    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("student_id", "attendance_date", name="uix_student_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String(50), ForeignKey("students.student_id"), nullable=False, index=True)
    attendance_date = Column(Date, nullable=False, index=True)
    check_in_time = Column(DateTime, nullable=False, default=datetime.now)
    photo_path = Column(String(500), nullable=True)
    confidence = Column(Float, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "attendance_date": self.attendance_date.isoformat(),
            "check_in_time": self.check_in_time.isoformat(),
            "time": self.check_in_time.strftime("%H:%M:%S"),
            "confidence": self.confidence,
            "photo_path": self.photo_path,
            "photo_url": f"/api/uploads/{self.photo_path}" if self.photo_path else None,
        }

    def __repr__(self):
        return (
            f"<AttendanceRecord(id={self.id}, student_id='{self.student_id}', "
            f"date='{self.attendance_date}')>"
        )
