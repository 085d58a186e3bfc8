"""
Pydantic Schemas for API Request/Response Models
"""
from pydantic import BaseModel, Field
from typing import List, Dict, Optional, Any


# ==================== Errors ====================

class ErrorResponse(BaseModel):
    """Error envelope for core errors"""
    success: bool = False
    message: str
    kind: str
    context: Dict[str, Any] = Field(default_factory=dict)


# ==================== Students ====================

class StudentRecord(BaseModel):
    """Registered student"""
    student_id: str
    name: str
    email: Optional[str] = None
    class_section: Optional[str] = None
    face_image_path: Optional[str] = None
    face_image_url: Optional[str] = None
    created_at: Optional[str] = None


class RegisterResponse(BaseModel):
    """Response for student registration"""
    success: bool
    message: str
    student: Optional[StudentRecord] = None


class StudentListResponse(BaseModel):
    """Response for listing students"""
    success: bool
    students: List[StudentRecord]
    total: int


class GetStudentResponse(BaseModel):
    """Response for a single student"""
    success: bool
    student: Optional[StudentRecord] = None
    message: Optional[str] = None


class DeleteStudentResponse(BaseModel):
    """Response for student deletion"""
    success: bool
    message: str
    attendance_deleted: int = 0


# ==================== Attendance ====================

class AttendanceItem(BaseModel):
    """Attendance record joined with its student"""
    id: int
    student_id: str
    name: Optional[str] = None
    class_section: Optional[str] = None
    attendance_date: str
    check_in_time: str
    time: str
    status: str = Field(..., description="Present when evidence exists, Absent otherwise")
    confidence: Optional[float] = None
    photo_path: Optional[str] = None
    photo_url: Optional[str] = None


class MarkAttendanceResponse(BaseModel):
    """Response for a capture submission"""
    success: bool
    message: str
    status: str = Field(..., description="Present, Duplicate, No match or Error")
    state: str
    student_id: Optional[str] = None
    name: Optional[str] = None
    confidence: float = 0.0
    attendance: Optional[AttendanceItem] = None
    error: Optional[Dict[str, Any]] = None


class AttendanceListResponse(BaseModel):
    """Response for attendance queries"""
    success: bool
    records: List[AttendanceItem]
    total: int
    start_date: str
    end_date: str


class AttendanceStatsResponse(BaseModel):
    """Attendance count for one day"""
    success: bool
    date: str
    present: int
    total_students: int


# ==================== Migration ====================

class ImportRecordResponse(BaseModel):
    """Response for importing one record"""
    success: bool
    message: str
    id: Optional[int] = None


class ImportBatchResponse(BaseModel):
    """Response for a batch import"""
    success: bool
    created: int
    skipped: int
    duplicates: int
    failed: int
    total: int
    errors: List[Dict[str, Any]] = Field(default_factory=list)


class ClearDataResponse(BaseModel):
    """Response for the administrative purge"""
    success: bool
    message: str
    attendance_records_deleted: int
    students_deleted: int


# ==================== Health Check ====================

class HealthResponse(BaseModel):
    """API health check response"""
    status: str
    message: str
    version: str
    students: int
    today_attendance: int


class DetailedHealthResponse(BaseModel):
    """Detailed health check response"""
    status: str
    version: str
    database: str
    face_recognition: str
    comparator: str
    threshold: float
    timestamp: str
