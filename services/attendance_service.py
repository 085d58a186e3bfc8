"""
Attendance Service

Runs one capture through the match-and-record pipeline:

    RECEIVED -> MATCHED | REJECTED
    MATCHED  -> STORED -> RECORDED | DUPLICATE -> DONE

Any unexpected error ends the attempt in FAILED. "No match" is the normal
REJECTED outcome, never an exception.
"""

import importlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Protocol

import config
from database.models import AttendanceRecord, Student
from models.face_comparator import FaceComparator, FaceRepresentation, create_comparator
from models.match_selector import MatchSelector
from services.attendance_ledger import AttendanceLedger, get_attendance_ledger
from services.exceptions import AttendanceError, IngestionError, StorageIOError, ValidationError
from services.file_storage import EVIDENCE, FileStore, get_file_store
from services.student_registry import StudentRegistry, get_student_registry

logger = logging.getLogger(__name__)


class IngestionState(Enum):
    """Pipeline state of one capture"""
    RECEIVED = "received"
    MATCHED = "matched"
    REJECTED = "rejected"
    STORED = "stored"
    RECORDED = "recorded"
    DUPLICATE = "duplicate"
    DONE = "done"
    FAILED = "failed"


# User-facing status per final state
STATUS_LABELS = {
    IngestionState.RECORDED: "Present",
    IngestionState.DUPLICATE: "Duplicate",
    IngestionState.REJECTED: "No match",
    IngestionState.FAILED: "Error",
}


class FeatureExtractor(Protocol):
    """Turns raw capture bytes into a comparable representation."""

    def extract(self, image_bytes: bytes) -> FaceRepresentation:
        ...


class RawImageExtractor:
    """Uses the image bytes themselves as the representation."""

    def extract(self, image_bytes: bytes) -> FaceRepresentation:
        return FaceRepresentation.from_bytes(image_bytes)


def load_extractor(path: str) -> FeatureExtractor:
    """
    Instantiate a FeatureExtractor from a "package.module:ClassName" path.

    Raises:
        ValueError: malformed path or missing attribute
    """
    module_name, _, class_name = path.partition(":")
    if not module_name or not class_name:
        raise ValueError(f"FEATURE_EXTRACTOR must look like 'package.module:ClassName', got {path!r}")

    module = importlib.import_module(module_name)
    try:
        extractor_class = getattr(module, class_name)
    except AttributeError as e:
        raise ValueError(f"{module_name} has no attribute {class_name}") from e

    logger.info("Loading feature extractor %s", path)
    return extractor_class()


@dataclass
class IngestionOutcome:
    """Result of one ingestion attempt"""
    state: IngestionState
    student: Optional[Student] = None
    confidence: float = 0.0
    event: Optional[AttendanceRecord] = None
    created: bool = False
    photo_path: Optional[str] = None
    error: Optional[AttendanceError] = None
    trace: List[IngestionState] = field(default_factory=list)

    @property
    def status(self) -> str:
        return STATUS_LABELS.get(self.state, self.state.value)


class AttendanceService:
    """
    Composes registry, matcher, file store and ledger for one capture.

    Features:
    - Pluggable feature extractor and comparator; registered faces go
      through the same extractor as captures
    - Embedding comparison refuses to start without a real extractor
    - Evidence stored only for matched captures
    - Duplicate evidence kept or removed per KEEP_DUPLICATE_EVIDENCE
    """

    def __init__(
        self,
        registry: StudentRegistry = None,
        ledger: AttendanceLedger = None,
        file_store: FileStore = None,
        comparator: FaceComparator = None,
        extractor: FeatureExtractor = None,
        threshold: float = None,
        keep_duplicate_evidence: bool = None
    ):
        self.registry = registry or get_student_registry()
        self.ledger = ledger or get_attendance_ledger()
        self.file_store = file_store or get_file_store()
        if extractor is None and config.FEATURE_EXTRACTOR:
            extractor = load_extractor(config.FEATURE_EXTRACTOR)
        self.extractor = extractor or RawImageExtractor()
        self._payload_cache: Dict[str, bytes] = {}
        self.comparator = comparator or create_comparator(config.RECOGNITION_ENABLED, self._registered_payload)

        if getattr(self.comparator, "mode", None) == "embedding" and isinstance(self.extractor, RawImageExtractor):
            raise ValueError(
                "Embedding comparison needs a feature extractor: set FEATURE_EXTRACTOR "
                "or disable RECOGNITION_ENABLED"
            )

        self.selector = MatchSelector(self.comparator, threshold)
        if keep_duplicate_evidence is None:
            keep_duplicate_evidence = config.KEEP_DUPLICATE_EVIDENCE
        self.keep_duplicate_evidence = keep_duplicate_evidence

    @property
    def threshold(self) -> float:
        return self.selector.threshold

    def _registered_payload(self, path: str) -> bytes:
        """A stored face image as the comparator sees it, after extraction"""
        if isinstance(self.extractor, RawImageExtractor):
            return self.file_store.read(path)

        payload = self._payload_cache.get(path)
        if payload is None:
            payload = self.extractor.extract(self.file_store.read(path)).data
            self._payload_cache[path] = payload
        return payload

    async def ingest(
        self,
        capture: bytes,
        filename: str = None,
        timestamp: datetime = None
    ) -> IngestionOutcome:
        """
        Match a capture and record attendance for the matched student.

        Args:
            capture: Raw image bytes
            filename: Original upload name (for the evidence extension)
            timestamp: Declared capture time, must fall on today (defaults to now)

        Returns:
            IngestionOutcome in RECORDED, DUPLICATE, REJECTED or FAILED state

        Raises:
            ValidationError: empty capture, or a timestamp on another day
        """
        if not capture:
            raise ValidationError("Capture image is empty", {"field": "file"})

        now = datetime.now()
        today = now.date()
        if timestamp is None:
            timestamp = now
        elif timestamp.date() != today:
            raise ValidationError(
                "Capture timestamp must fall on today",
                {"field": "timestamp", "value": timestamp.isoformat(), "today": today.isoformat()}
            )

        outcome = IngestionOutcome(state=IngestionState.RECEIVED)
        outcome.trace.append(IngestionState.RECEIVED)

        # 1. Match against the registry snapshot
        try:
            candidate = self.extractor.extract(capture)
            registry = await self.registry.registry_snapshot()
            match = self.selector.select(candidate, registry)
        except Exception as e:
            return self._fail(outcome, e)

        outcome.confidence = match.confidence
        if not match.is_match:
            self._advance(outcome, IngestionState.REJECTED)
            outcome.trace.append(IngestionState.DONE)
            return outcome

        student: Student = match.identity
        outcome.student = student
        self._advance(outcome, IngestionState.MATCHED)

        # 2. Store evidence
        prefix = f"attendance_{student.student_id}_{now:%Y%m%d%H%M%S}"
        try:
            outcome.photo_path = self.file_store.save(capture, EVIDENCE, prefix, filename)
        except Exception as e:
            return self._fail(outcome, e)
        self._advance(outcome, IngestionState.STORED)

        # 3. Record, always attempted once evidence is stored
        try:
            result = await self.ledger.record_if_absent(
                student.student_id,
                today,
                timestamp=timestamp,
                confidence=match.confidence,
                photo_path=outcome.photo_path,
            )
        except Exception as e:
            self._discard_evidence(outcome)
            return self._fail(outcome, e)

        outcome.event = result.event
        outcome.created = result.created

        if result.created:
            self._advance(outcome, IngestionState.RECORDED)
        else:
            if not self.keep_duplicate_evidence:
                self._discard_evidence(outcome)
            self._advance(outcome, IngestionState.DUPLICATE)

        outcome.trace.append(IngestionState.DONE)
        return outcome

    @staticmethod
    def _advance(outcome: IngestionOutcome, state: IngestionState):
        outcome.state = state
        outcome.trace.append(state)

    def _fail(self, outcome: IngestionOutcome, exc: Exception) -> IngestionOutcome:
        step = outcome.state
        if isinstance(exc, AttendanceError):
            error = exc
        else:
            error = IngestionError(
                f"Ingestion failed after {step.value}",
                {"step": step.value, "error": str(exc)}
            )
        logger.error("Ingestion failed after %s: %s", step.value, exc, exc_info=not isinstance(exc, AttendanceError))

        outcome.error = error
        self._advance(outcome, IngestionState.FAILED)
        return outcome

    def _discard_evidence(self, outcome: IngestionOutcome):
        if not outcome.photo_path:
            return
        try:
            self.file_store.delete(outcome.photo_path)
            outcome.photo_path = None
        except StorageIOError as e:
            logger.error("Could not remove evidence %s: %s", outcome.photo_path, e)


# Singleton instance
_attendance_service_instance: Optional[AttendanceService] = None


def get_attendance_service() -> AttendanceService:
    """Get or create AttendanceService singleton"""
    global _attendance_service_instance
    if _attendance_service_instance is None:
        _attendance_service_instance = AttendanceService()
    return _attendance_service_instance
