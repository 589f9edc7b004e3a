"""Wire the engine from settings and a session factory."""

from __future__ import annotations

from sqlalchemy.orm import Session, sessionmaker

from power_importer.core.config import Settings, get_settings
from power_importer.services.chunk_executor import ChunkExecutor
from power_importer.services.dispatcher import BackgroundTrigger, Dispatcher, celery_trigger
from power_importer.services.job_engine import ImportJobEngine
from power_importer.services.job_store import SqlJobStore, SqlLogSink


def build_import_engine(
    session_factory: sessionmaker[Session] | None = None,
    settings: Settings | None = None,
    trigger: BackgroundTrigger | None = None,
) -> ImportJobEngine:
    settings = settings or get_settings()
    if session_factory is None:
        from power_importer.db.session import SessionLocal

        session_factory = SessionLocal

    store = SqlJobStore(session_factory)
    logs = SqlLogSink(session_factory)
    executor = ChunkExecutor(
        session_factory, logs, cache_max_size=settings.dedup_cache_max_size
    )
    dispatcher = Dispatcher(store, logs, trigger or celery_trigger)
    return ImportJobEngine(store, logs, executor, dispatcher)
