from __future__ import annotations

import csv
import os
import tempfile

import pytest
from fastapi.testclient import TestClient

# Settings are read at import time; point them at throwaway resources first
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ.setdefault("UPLOADS_DIR", tempfile.mkdtemp(prefix="power-importer-uploads-"))
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")

from power_importer.api.dependencies.engine import get_import_engine  # noqa: E402
from power_importer.db import models  # noqa: E402,F401
from power_importer.db.base import Base  # noqa: E402
from power_importer.db.session import build_engine, build_session_factory  # noqa: E402
from power_importer.main import app  # noqa: E402
from power_importer.services.chunk_executor import ChunkExecutor  # noqa: E402
from power_importer.services.dispatcher import Dispatcher  # noqa: E402
from power_importer.services.job_engine import ImportJobEngine  # noqa: E402
from power_importer.services.job_store import SqlJobStore, SqlLogSink  # noqa: E402

HEADER = ("Name", "SKU", "Type")


class RecordingTrigger:
    """Stands in for the Celery publish; records job ids or raises ``error``."""

    def __init__(self) -> None:
        self.calls: list[int] = []
        self.error: Exception | None = None

    def __call__(self, job_id: int) -> None:
        if self.error is not None:
            raise self.error
        self.calls.append(job_id)


@pytest.fixture
def session_factory():
    db_engine = build_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(db_engine)
    try:
        yield build_session_factory(db_engine)
    finally:
        db_engine.dispose()


@pytest.fixture
def store(session_factory) -> SqlJobStore:
    return SqlJobStore(session_factory)


@pytest.fixture
def logs(session_factory) -> SqlLogSink:
    return SqlLogSink(session_factory)


@pytest.fixture
def trigger() -> RecordingTrigger:
    return RecordingTrigger()


@pytest.fixture
def executor(session_factory, logs) -> ChunkExecutor:
    return ChunkExecutor(session_factory, logs)


@pytest.fixture
def engine(store, logs, executor, trigger) -> ImportJobEngine:
    return ImportJobEngine(store, logs, executor, Dispatcher(store, logs, trigger))


@pytest.fixture
def write_csv(tmp_path):
    def _write(rows, header=HEADER, name="products.csv"):
        path = tmp_path / name
        with path.open("w", newline="", encoding="utf-8") as handle:
            writer = csv.writer(handle)
            if header is not None:
                writer.writerow(header)
            writer.writerows(rows)
        return path

    return _write


@pytest.fixture
def simple_rows():
    def _rows(count, prefix="SKU"):
        return [(f"Product {i}", f"{prefix}-{i:03d}", "simple") for i in range(1, count + 1)]

    return _rows


@pytest.fixture
def make_job(engine, write_csv):
    """Create a job over ``rows``; validated and started unless told otherwise."""

    def _make(rows, *, header=HEADER, validate=True, start=True):
        path = write_csv(rows, header=header)
        job = engine.create_job(path.name, path)
        if validate:
            job = engine.validate(job.id)
        if start:
            job = engine.start(job.id)
        return job

    return _make


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_import_engine] = lambda: engine
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
