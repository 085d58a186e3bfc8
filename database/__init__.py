# Database package
from .connection import (
    build_engine,
    create_session_factory,
    get_async_engine,
    get_session_factory,
    init_database,
    close_database,
    ping_database,
)
from .models import Base, Student, AttendanceRecord

__all__ = [
    "build_engine",
    "create_session_factory",
    "get_async_engine",
    "get_session_factory",
    "init_database",
    "close_database",
    "ping_database",
    "Base",
    "Student",
    "AttendanceRecord",
]
