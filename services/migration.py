"""
Migration Service

Bulk import of pre-built attendance records (from the old backend or a CSV
backfill file) and the administrative purge.

Imported records bypass matching and go straight to the ledger, so
re-running an import never creates duplicates. A malformed record is
counted and skipped; it never aborts the batch.
"""

import csv
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

import config
from services.attendance_ledger import AttendanceLedger, LedgerResult, get_attendance_ledger
from services.exceptions import AttendanceError, NotFoundError, ValidationError
from services.student_registry import StudentRegistry, get_student_registry
from utils.date_utils import parse_confidence, parse_day, parse_timestamp

logger = logging.getLogger(__name__)

# CSV format: studentId,attendanceDate,checkInTime,photoPath,confidence
CSV_COLUMNS = ("studentId", "attendanceDate", "checkInTime", "photoPath", "confidence")

# Accepted spellings per field (old backend JSON uses camelCase)
_FIELD_ALIASES = {
    "student_id": ("studentId", "student_id"),
    "attendance_date": ("attendanceDate", "attendance_date", "date"),
    "check_in_time": ("checkInTime", "check_in_time", "timestamp"),
    "photo_path": ("photoPath", "photo_path"),
    "confidence": ("confidence",),
}


@dataclass
class AttendanceCandidate:
    """A parsed import record, ready for the ledger"""
    student_id: str
    attendance_date: date
    check_in_time: datetime
    photo_path: Optional[str] = None
    confidence: Optional[float] = None


@dataclass
class ImportReport:
    """Counts for one import batch"""
    created: int = 0
    duplicates: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        """Records that did not create an event (duplicates and malformed)"""
        return self.duplicates + self.failed

    @property
    def total(self) -> int:
        return self.created + self.skipped

    def to_dict(self) -> Dict[str, Any]:
        return {
            'created': self.created,
            'skipped': self.skipped,
            'duplicates': self.duplicates,
            'failed': self.failed,
            'total': self.total,
            'errors': self.errors
        }


def _pick(raw: Mapping, name: str):
    for key in _FIELD_ALIASES[name]:
        if key in raw:
            return raw[key]
    return None


def _text(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip().strip('"').strip()
    return value or None


def parse_record(raw: Mapping) -> AttendanceCandidate:
    """
    Validate one raw import record.

    Raises:
        ValidationError: missing student id, missing or malformed date/time
    """
    if not isinstance(raw, Mapping):
        raise ValidationError("Import record must be an object", {"record": repr(raw)})

    student_id = _text(_pick(raw, "student_id"))
    if not student_id:
        raise ValidationError("studentId is required", {"field": "studentId"})

    attendance_date = parse_day(_text(_pick(raw, "attendance_date")), field="attendanceDate")
    check_in_time = parse_timestamp(_text(_pick(raw, "check_in_time")), field="checkInTime")

    return AttendanceCandidate(
        student_id=student_id,
        attendance_date=attendance_date,
        check_in_time=check_in_time or datetime.now(),
        photo_path=_text(_pick(raw, "photo_path")),
        confidence=parse_confidence(_pick(raw, "confidence")),
    )


def read_csv_records(path: Path) -> Iterator[Dict[str, Any]]:
    """
    Rows of a migration CSV file as import records.

    Blank lines, '#' comments and a header row are skipped. Each record
    carries its line number under "_line".
    """
    with open(path, newline="", encoding="utf-8") as f:
        for line_number, row in enumerate(csv.reader(f), start=1):
            if not row or not "".join(row).strip():
                continue
            if row[0].lstrip().startswith("#"):
                continue
            if row[0].strip().lower() == "studentid":
                continue

            record: Dict[str, Any] = {"_line": line_number}
            for column, value in zip(CSV_COLUMNS, row):
                record[column] = value
            yield record


class MigrationService:
    """Imports attendance records and purges data."""

    def __init__(self, ledger: AttendanceLedger = None, registry: StudentRegistry = None):
        self.ledger = ledger or get_attendance_ledger()
        self.registry = registry or get_student_registry()

    async def import_record(self, raw: Mapping) -> LedgerResult:
        """
        Import a single record.

        Raises:
            ValidationError: the record is malformed
            NotFoundError: the student is not registered
        """
        candidate = parse_record(raw)

        if await self.registry.find(candidate.student_id) is None:
            raise NotFoundError(
                f"Student not found: {candidate.student_id}",
                {"student_id": candidate.student_id}
            )

        result = await self.ledger.record_if_absent(
            candidate.student_id,
            candidate.attendance_date,
            timestamp=candidate.check_in_time,
            confidence=candidate.confidence,
            photo_path=candidate.photo_path,
        )
        if not result.created:
            logger.warning(
                "Attendance record already exists for %s on %s",
                candidate.student_id, candidate.attendance_date
            )
        return result

    async def import_records(self, records: Iterable[Any]) -> ImportReport:
        """
        Import a batch, counting created, duplicate and malformed records.

        Args:
            records: Raw records (mappings); anything else counts as malformed

        Returns:
            ImportReport
        """
        report = ImportReport()

        for index, raw in enumerate(records):
            row = raw.get("_line", index + 1) if isinstance(raw, Mapping) else index + 1
            try:
                result = await self.import_record(raw)
            except AttendanceError as e:
                report.failed += 1
                report.errors.append({"row": row, **e.to_dict()})
                logger.warning("Skipping import row %s: %s", row, e.message)
                continue

            if result.created:
                report.created += 1
            else:
                report.duplicates += 1

        logger.info(
            "Import completed: %d imported, %d skipped (%d duplicates, %d malformed)",
            report.created, report.skipped, report.duplicates, report.failed
        )
        return report

    async def import_csv(self, path: Path) -> ImportReport:
        path = Path(path)
        if not path.is_file():
            raise NotFoundError(f"Migration file not found: {path}", {"path": str(path)})
        logger.info("Importing attendance records from %s", path)
        return await self.import_records(read_csv_records(path))

    async def run_startup_migration(self, path: Path = None) -> Optional[ImportReport]:
        """Import the migration CSV if present; no-op otherwise."""
        path = Path(path or config.MIGRATION_DATA_FILE)
        if not path.is_file():
            logger.debug("No migration data file found: %s", path)
            return None

        logger.info("Found migration data file, starting import...")
        return await self.import_csv(path)

    async def clear_all(self, confirmation: str) -> Dict[str, int]:
        """
        Delete every attendance record, then every student.

        Stored image files are left on disk.
        """
        if confirmation != config.CLEAR_CONFIRMATION:
            raise ValidationError(
                f"Please confirm by passing confirmation={config.CLEAR_CONFIRMATION}",
                {"field": "confirmation"}
            )

        async with self.ledger.session_factory() as session:
            records_deleted = await self.ledger.purge(session=session)
            students_deleted = await self.registry.purge(session=session)
            await session.commit()

        logger.warning(
            "All data cleared: %d attendance records, %d students",
            records_deleted, students_deleted
        )
        return {
            'attendance_records_deleted': records_deleted,
            'students_deleted': students_deleted
        }


# Singleton instance
_migration_service_instance: Optional[MigrationService] = None


def get_migration_service() -> MigrationService:
    """Get or create MigrationService singleton"""
    global _migration_service_instance
    if _migration_service_instance is None:
        _migration_service_instance = MigrationService()
    return _migration_service_instance
