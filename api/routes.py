"""
API Routes for the Attendance System

FastAPI endpoints for:
- Health checks
- Student registration and management
- Attendance capture and queries
- Migration import and purge
- Stored image files
"""
from fastapi import APIRouter, Body, File, Form, HTTPException, Query, Response, UploadFile
from fastapi.responses import FileResponse
from typing import Any, Dict, List, Optional
from datetime import date, datetime

from .schemas import (
    RegisterResponse, StudentListResponse, GetStudentResponse, DeleteStudentResponse,
    AttendanceItem, MarkAttendanceResponse, AttendanceListResponse, AttendanceStatsResponse,
    ImportRecordResponse, ImportBatchResponse, ClearDataResponse,
    HealthResponse, DetailedHealthResponse
)

import config
from database.connection import ping_database
from database.models import AttendanceRecord, Student
from services.attendance_ledger import get_attendance_ledger
from services.attendance_service import IngestionState, get_attendance_service
from services.exceptions import NotFoundError, ValidationError
from services.file_storage import get_file_store
from services.migration import get_migration_service
from services.student_registry import get_student_registry
from utils.date_utils import parse_day, parse_timestamp

router = APIRouter()


def serialize_attendance(record: AttendanceRecord, student: Optional[Student]) -> AttendanceItem:
    data = record.to_dict()
    return AttendanceItem(
        **data,
        name=student.name if student else None,
        class_section=student.class_section if student else None,
        status="Present" if record.photo_path else "Absent"
    )


# ==================== Health ====================

@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Health check endpoint
    """
    students = await get_student_registry().count()
    today_attendance = await get_attendance_ledger().count_for_day(date.today())

    return HealthResponse(
        status="ok",
        message="Backend is running",
        version=config.APP_VERSION,
        students=students,
        today_attendance=today_attendance
    )


@router.get("/health/detailed", response_model=DetailedHealthResponse)
async def health_check_detailed(response: Response):
    """
    Detailed health check: database connectivity and recognition mode
    """
    db_connected = await ping_database()
    service = get_attendance_service()
    comparator_mode = getattr(service.comparator, "mode", type(service.comparator).__name__)

    if not db_connected:
        response.status_code = 500

    return DetailedHealthResponse(
        status="healthy" if db_connected else "unhealthy",
        version=config.APP_VERSION,
        database="connected" if db_connected else "error",
        face_recognition="loaded" if config.RECOGNITION_ENABLED else "not_loaded",
        comparator=comparator_mode,
        threshold=service.threshold,
        timestamp=datetime.now().isoformat()
    )


# ==================== Students ====================

@router.post("/register", response_model=RegisterResponse)
async def register_student(
    student_id: str = Form(...),
    name: str = Form(...),
    email: Optional[str] = Form(None),
    class_form: Optional[str] = Form(None, alias="class"),
    class_section: Optional[str] = Form(None),
    course: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None)
):
    """
    Register a new student with an optional face image
    """
    face_image = None
    filename = None
    if file is not None:
        face_image = await file.read()
        filename = file.filename

    student = await get_student_registry().register(
        student_id=student_id,
        name=name,
        email=email,
        class_section=class_section or course or class_form,
        face_image=face_image,
        filename=filename
    )

    return RegisterResponse(
        success=True,
        message=f"Student {student.name} registered",
        student=student.to_dict()
    )


@router.get("/students", response_model=StudentListResponse)
async def list_students():
    """
    List all students sorted by name
    """
    students = await get_student_registry().list_students()
    return StudentListResponse(
        success=True,
        students=[student.to_dict() for student in students],
        total=len(students)
    )


@router.get("/students/{student_id}", response_model=GetStudentResponse)
async def get_student(student_id: str):
    """
    Get one student by identifier
    """
    student = await get_student_registry().get(student_id)
    return GetStudentResponse(success=True, student=student.to_dict())


@router.delete("/students/{student_id}", response_model=DeleteStudentResponse)
async def delete_student(student_id: str):
    """
    Delete a student, their attendance records and their face image
    """
    try:
        report = await get_student_registry().delete(student_id)
    except NotFoundError:
        return DeleteStudentResponse(success=False, message="Student not found")

    return DeleteStudentResponse(
        success=True,
        message="Student deleted",
        attendance_deleted=report.attendance_deleted
    )


# ==================== Attendance ====================

@router.post("/attendance", response_model=MarkAttendanceResponse)
async def mark_attendance(
    response: Response,
    file: UploadFile = File(...),
    timestamp: Optional[str] = Form(None)
):
    """
    Match a captured face and record today's attendance
    """
    contents = await file.read()
    declared_time = parse_timestamp(timestamp)

    outcome = await get_attendance_service().ingest(contents, filename=file.filename, timestamp=declared_time)

    messages = {
        IngestionState.RECORDED: "Attendance recorded",
        IngestionState.DUPLICATE: "Attendance already recorded today",
        IngestionState.REJECTED: "Face not recognized",
        IngestionState.FAILED: "Error recording attendance",
    }

    if outcome.state == IngestionState.FAILED:
        response.status_code = 500

    return MarkAttendanceResponse(
        success=outcome.state in (IngestionState.RECORDED, IngestionState.DUPLICATE),
        message=messages.get(outcome.state, outcome.state.value),
        status=outcome.status,
        state=outcome.state.value,
        student_id=outcome.student.student_id if outcome.student else None,
        name=outcome.student.name if outcome.student else None,
        confidence=outcome.confidence,
        attendance=serialize_attendance(outcome.event, outcome.student) if outcome.event else None,
        error=outcome.error.to_dict() if outcome.error else None
    )


@router.get("/attendance", response_model=AttendanceListResponse)
async def list_attendance(
    date: Optional[str] = Query(None, description="Single day (YYYY-MM-DD), defaults to today"),
    start: Optional[str] = Query(None, description="Range start (YYYY-MM-DD)"),
    end: Optional[str] = Query(None, description="Range end (YYYY-MM-DD)"),
    student_id: Optional[str] = Query(None)
):
    """
    Attendance for a day, or for an inclusive date range
    """
    if start or end:
        start_day = parse_day(start, field="start")
        end_day = parse_day(end, field="end")
    else:
        start_day = end_day = parse_day(date, field="date") if date else datetime.now().date()

    records = await get_attendance_ledger().find_by_date_range(start_day, end_day, student_id=student_id)
    students = {student.student_id: student for student in await get_student_registry().list_students()}

    return AttendanceListResponse(
        success=True,
        records=[serialize_attendance(record, students.get(record.student_id)) for record in records],
        total=len(records),
        start_date=start_day.isoformat(),
        end_date=end_day.isoformat()
    )


@router.get("/attendance/stats", response_model=AttendanceStatsResponse)
async def attendance_stats(date: Optional[str] = Query(None)):
    """
    Number of students present on a day
    """
    day = parse_day(date, field="date") if date else datetime.now().date()
    present = await get_attendance_ledger().count_for_day(day)
    total_students = await get_student_registry().count()

    return AttendanceStatsResponse(
        success=True,
        date=day.isoformat(),
        present=present,
        total_students=total_students
    )


# ==================== Migration ====================

@router.post("/migrate/attendance", response_model=ImportRecordResponse)
async def import_attendance_record(payload: Dict[str, Any] = Body(...)):
    """
    Import one attendance record from the old backend

    Expected JSON payload:
    {
      "studentId": "23CS041",
      "attendanceDate": "2025-10-13",
      "checkInTime": "2025-10-13T07:55:37",
      "photoPath": "attendance/attendance_23CS041_20251013075537.jpg",
      "confidence": 0.95
    }
    """
    result = await get_migration_service().import_record(payload)

    if not result.created:
        return ImportRecordResponse(
            success=False,
            message="Attendance record already exists for this student on this date",
            id=result.event.id
        )

    return ImportRecordResponse(
        success=True,
        message="Attendance record imported successfully",
        id=result.event.id
    )


@router.post("/migrate/attendance/batch", response_model=ImportBatchResponse)
async def import_attendance_batch(records: List[Any] = Body(...)):
    """
    Import many records; malformed ones are reported and skipped
    """
    report = await get_migration_service().import_records(records)
    return ImportBatchResponse(success=True, **report.to_dict())


@router.delete("/migrate/clear", response_model=ClearDataResponse)
async def clear_all_data(confirmation: Optional[str] = Query(None)):
    """
    Clear all data (for testing/reset purposes)
    """
    counts = await get_migration_service().clear_all(confirmation)
    return ClearDataResponse(success=True, message="All data cleared", **counts)


# ==================== Files ====================

@router.get("/uploads/{path:path}")
async def get_uploaded_file(path: str):
    """
    Serve a stored face or evidence image
    """
    store = get_file_store()
    try:
        found = store.exists(path)
    except ValidationError:
        found = False

    if not found:
        raise HTTPException(status_code=404, detail="File not found")

    return FileResponse(str(store.resolve(path)))
