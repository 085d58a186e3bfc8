import asyncio

import pytest

import config
from database import connection
from database.connection import build_engine, create_session_factory
from database.models import Base
from services import attendance_ledger, attendance_service, file_storage, migration, student_registry
from services.attendance_ledger import AttendanceLedger
from services.file_storage import FileStore
from services.student_registry import StudentRegistry


@pytest.fixture
def loop():
    """Fresh event loop per test; async services run through it"""
    loop = asyncio.new_event_loop()
    yield loop
    loop.close()


@pytest.fixture
def engine(loop, tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    async def create_tables():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    loop.run_until_complete(create_tables())
    yield engine
    loop.run_until_complete(engine.dispose())


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def file_store(tmp_path):
    return FileStore(root=str(tmp_path / "uploads"))


@pytest.fixture
def ledger(session_factory):
    return AttendanceLedger(session_factory)


@pytest.fixture
def registry(session_factory, file_store, ledger):
    return StudentRegistry(session_factory, file_store, ledger)


@pytest.fixture
def app_env(tmp_path, monkeypatch):
    """Point the app's settings at a temporary database and upload dir"""
    monkeypatch.setattr(config, "DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setattr(config, "UPLOAD_DIR", tmp_path / "uploads")
    monkeypatch.setattr(config, "MIGRATION_DATA_FILE", tmp_path / "migration_data.csv")
    monkeypatch.setattr(config, "RECOGNITION_ENABLED", False)
    monkeypatch.setattr(config, "FEATURE_EXTRACTOR", "")
    monkeypatch.setattr(config, "MATCH_THRESHOLD", 0.5)

    # Drop singletons so they are rebuilt from the settings above
    monkeypatch.setattr(connection, "_engine", None)
    monkeypatch.setattr(connection, "_async_session_factory", None)
    monkeypatch.setattr(file_storage, "_file_store_instance", None)
    monkeypatch.setattr(attendance_ledger, "_ledger_instance", None)
    monkeypatch.setattr(student_registry, "_registry_instance", None)
    monkeypatch.setattr(attendance_service, "_attendance_service_instance", None)
    monkeypatch.setattr(migration, "_migration_service_instance", None)
    return tmp_path
