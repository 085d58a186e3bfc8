from datetime import date, datetime, time, timedelta

import numpy as np
import pytest

import config
from models.face_comparator import FaceRepresentation, create_comparator, embedding_to_bytes
from services.attendance_service import AttendanceService, IngestionState, RawImageExtractor, load_extractor
from services.exceptions import StorageIOError, ValidationError


def evidence_files(file_store):
    return sorted(p.name for p in (file_store.root / "attendance").iterdir())


@pytest.fixture
def roster(loop, registry):
    """Two students whose stored faces have the same size"""
    loop.run_until_complete(registry.register("S1", "Alice", face_image=b"a" * 1000))
    loop.run_until_complete(registry.register("S2", "Bob", face_image=b"b" * 1000))
    return registry


@pytest.fixture
def service(registry, ledger, file_store):
    return AttendanceService(registry=registry, ledger=ledger, file_store=file_store)


class FailingFileStore:
    """Delegates reads but refuses to store evidence"""

    def __init__(self, inner):
        self.inner = inner

    def read(self, path):
        return self.inner.read(path)

    def save(self, *args, **kwargs):
        raise StorageIOError("Cannot write file", {"path": "attendance/x.jpg"})

    def delete(self, path):
        return self.inner.delete(path)


class ByteHistogramExtractor:
    """Embeds an image as the histogram of its byte values"""

    def extract(self, image_bytes):
        histogram = np.bincount(np.frombuffer(image_bytes, dtype=np.uint8), minlength=256)
        return FaceRepresentation.from_bytes(embedding_to_bytes(histogram))


class BrokenLedger:
    async def record_if_absent(self, *args, **kwargs):
        raise RuntimeError("database went away")


class TestIngest:
    def test_match_records_attendance(self, loop, roster, service, ledger, file_store):
        outcome = loop.run_until_complete(service.ingest(b"c" * 1000, filename="cam.jpg"))

        assert outcome.state == IngestionState.RECORDED
        assert outcome.status == "Present"
        assert outcome.student.student_id == "S1"
        assert outcome.confidence == pytest.approx(0.8)
        assert outcome.created is True
        assert outcome.event.photo_path == outcome.photo_path
        assert outcome.photo_path.startswith("attendance/attendance_S1_")
        assert outcome.trace == [
            IngestionState.RECEIVED,
            IngestionState.MATCHED,
            IngestionState.STORED,
            IngestionState.RECORDED,
            IngestionState.DONE,
        ]
        assert loop.run_until_complete(ledger.count_for_day(date.today())) == 1

    def test_second_capture_same_day_is_duplicate(self, loop, roster, service, ledger, file_store):
        first = loop.run_until_complete(service.ingest(b"c" * 1000))
        second = loop.run_until_complete(service.ingest(b"d" * 1000))

        assert second.state == IngestionState.DUPLICATE
        assert second.status == "Duplicate"
        assert second.created is False
        assert second.event.id == first.event.id
        assert second.event.photo_path == first.photo_path
        # evidence of the duplicate capture is retained by default
        assert len(evidence_files(file_store)) == 2
        assert loop.run_until_complete(ledger.count()) == 1

    def test_duplicate_evidence_removed_when_configured(self, loop, roster, registry, ledger, file_store):
        service = AttendanceService(
            registry=registry, ledger=ledger, file_store=file_store, keep_duplicate_evidence=False
        )
        loop.run_until_complete(service.ingest(b"c" * 1000))
        second = loop.run_until_complete(service.ingest(b"d" * 1000))

        assert second.state == IngestionState.DUPLICATE
        assert second.photo_path is None
        assert len(evidence_files(file_store)) == 1

    def test_empty_registry_is_rejected_without_writes(self, loop, service, ledger, file_store):
        outcome = loop.run_until_complete(service.ingest(b"c" * 1000))

        assert outcome.state == IngestionState.REJECTED
        assert outcome.status == "No match"
        assert outcome.student is None
        assert outcome.confidence == 0.0
        assert evidence_files(file_store) == []
        assert loop.run_until_complete(ledger.count()) == 0

    def test_below_threshold_reports_best_confidence(self, loop, roster, registry, ledger, file_store):
        service = AttendanceService(registry=registry, ledger=ledger, file_store=file_store, threshold=0.9)

        outcome = loop.run_until_complete(service.ingest(b"c" * 1000))

        assert outcome.state == IngestionState.REJECTED
        assert outcome.confidence == pytest.approx(0.8)
        assert outcome.trace == [IngestionState.RECEIVED, IngestionState.REJECTED, IngestionState.DONE]
        assert evidence_files(file_store) == []

    def test_declared_timestamp_kept_as_check_in_time(self, loop, roster, service):
        declared = datetime.combine(date.today(), time(7, 55, 37))
        outcome = loop.run_until_complete(service.ingest(b"c" * 1000, timestamp=declared))

        assert outcome.event.attendance_date == date.today()
        assert outcome.event.check_in_time == declared

    def test_timestamp_on_another_day_rejected(self, loop, roster, service, ledger, file_store):
        for declared in (datetime.now() - timedelta(days=30), datetime.now() + timedelta(days=1)):
            with pytest.raises(ValidationError) as excinfo:
                loop.run_until_complete(service.ingest(b"c" * 1000, timestamp=declared))
            assert excinfo.value.context["field"] == "timestamp"

        assert evidence_files(file_store) == []
        assert loop.run_until_complete(ledger.count()) == 0

        outcome = loop.run_until_complete(service.ingest(b"c" * 1000))
        assert outcome.state == IngestionState.RECORDED
        assert outcome.event.attendance_date == date.today()

    def test_empty_capture_rejected(self, loop, service):
        with pytest.raises(ValidationError):
            loop.run_until_complete(service.ingest(b""))

    def test_storage_failure_ends_in_failed(self, loop, roster, registry, ledger, file_store):
        service = AttendanceService(registry=registry, ledger=ledger, file_store=FailingFileStore(file_store))

        outcome = loop.run_until_complete(service.ingest(b"c" * 1000))

        assert outcome.state == IngestionState.FAILED
        assert outcome.status == "Error"
        assert outcome.error.kind == "storage_io"
        assert IngestionState.STORED not in outcome.trace
        assert loop.run_until_complete(ledger.count()) == 0

    def test_ledger_failure_ends_in_failed_and_cleans_evidence(self, loop, roster, registry, file_store):
        service = AttendanceService(registry=registry, ledger=BrokenLedger(), file_store=file_store)

        outcome = loop.run_until_complete(service.ingest(b"c" * 1000))

        assert outcome.state == IngestionState.FAILED
        assert outcome.error.kind == "ingestion"
        assert outcome.error.context["step"] == "stored"
        assert evidence_files(file_store) == []

    def test_unreadable_registered_face_does_not_match(self, loop, registry, service, file_store):
        student = loop.run_until_complete(registry.register("S1", "Alice", face_image=b"a" * 1000))
        file_store.delete(student.face_image_path)

        outcome = loop.run_until_complete(service.ingest(b"c" * 1000))

        assert outcome.state == IngestionState.REJECTED
        assert outcome.confidence == 0.0


class TestRecognitionEnabled:
    def test_embedding_match_records_attendance(self, loop, roster, registry, ledger, file_store, monkeypatch):
        monkeypatch.setattr(config, "RECOGNITION_ENABLED", True)
        service = AttendanceService(
            registry=registry, ledger=ledger, file_store=file_store, extractor=ByteHistogramExtractor()
        )

        outcome = loop.run_until_complete(service.ingest(b"a" * 1000))

        assert service.comparator.mode == "embedding"
        assert outcome.state == IngestionState.RECORDED
        assert outcome.student.student_id == "S1"
        assert outcome.confidence == pytest.approx(1.0)

    def test_embedding_mismatch_is_rejected(self, loop, roster, registry, ledger, file_store, monkeypatch):
        monkeypatch.setattr(config, "RECOGNITION_ENABLED", True)
        service = AttendanceService(
            registry=registry, ledger=ledger, file_store=file_store, extractor=ByteHistogramExtractor()
        )

        outcome = loop.run_until_complete(service.ingest(b"z" * 1000))

        assert outcome.state == IngestionState.REJECTED
        assert outcome.confidence == pytest.approx(0.0)

    def test_enabled_without_extractor_fails_at_construction(self, registry, ledger, file_store, monkeypatch):
        monkeypatch.setattr(config, "RECOGNITION_ENABLED", True)
        monkeypatch.setattr(config, "FEATURE_EXTRACTOR", "")

        with pytest.raises(ValueError):
            AttendanceService(registry=registry, ledger=ledger, file_store=file_store)

        with pytest.raises(ValueError):
            AttendanceService(
                registry=registry, ledger=ledger, file_store=file_store,
                comparator=create_comparator(True, file_store.read),
            )

    def test_extractor_loaded_from_config(self, registry, ledger, file_store, monkeypatch):
        monkeypatch.setattr(config, "FEATURE_EXTRACTOR", "services.attendance_service:RawImageExtractor")

        service = AttendanceService(registry=registry, ledger=ledger, file_store=file_store)

        assert isinstance(service.extractor, RawImageExtractor)

    @pytest.mark.parametrize("path", ["services.attendance_service", "services.attendance_service:Missing"])
    def test_bad_extractor_path(self, path):
        with pytest.raises(ValueError):
            load_extractor(path)
