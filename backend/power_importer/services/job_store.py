"""Persistence boundary for import jobs and their logs.

The engine only talks to the ``JobStore`` and ``LogSink`` protocols. The
SQLAlchemy implementations below open a short-lived session per call, so
every status change and log line is committed on its own and survives a
chunk that later rolls back.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from datetime import datetime
from enum import Enum
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, sessionmaker

from power_importer.core.errors import JobNotFoundError, StateError
from power_importer.db.models import ImportJob, ImportLog

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    VALIDATED = "validated"
    RUNNING_FOREGROUND = "running_foreground"
    PAUSED = "paused"
    QUEUED_BACKGROUND = "queued_background"
    RUNNING_BACKGROUND = "running_background"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_running(self) -> bool:
        return self in RUNNING_STATUSES


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)
RUNNING_STATUSES = frozenset(
    {JobStatus.RUNNING_FOREGROUND, JobStatus.RUNNING_BACKGROUND}
)
NON_TERMINAL_STATUSES = frozenset(set(JobStatus) - TERMINAL_STATUSES)


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @property
    def stdlib_level(self) -> int:
        if self is LogLevel.SUCCESS:
            return logging.INFO
        return logging.getLevelName(self.value)


class JobRecord(BaseModel):
    """Immutable snapshot of a persisted job."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    file_name: str
    file_path: str
    status: JobStatus
    total_rows: int = 0
    processed_rows: int = 0
    error_message: str | None = None
    dedup_snapshot: dict[str, int] = Field(default_factory=dict)
    created_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def progress(self) -> float:
        if not self.total_rows:
            return 0.0
        return min(self.processed_rows / self.total_rows, 1.0)


class JobPatch(BaseModel):
    """Fields an engine operation may change; unset fields are left alone."""

    model_config = ConfigDict(extra="forbid")

    status: JobStatus | None = None
    total_rows: int | None = Field(default=None, ge=0)
    processed_rows: int | None = Field(default=None, ge=0)
    error_message: str | None = None
    dedup_snapshot: dict[str, int] | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def values(self) -> dict:
        data = self.model_dump(exclude_unset=True)
        if "status" in data and data["status"] is not None:
            data["status"] = JobStatus(data["status"]).value
        return data


class LogEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    job_id: int
    level: LogLevel
    message: str
    created_at: datetime | None = None


class JobStore(Protocol):
    def create(self, file_name: str, file_path: str) -> JobRecord: ...

    def get(self, job_id: int) -> JobRecord | None: ...

    def update(
        self,
        job_id: int,
        patch: JobPatch,
        *,
        expected: Collection[JobStatus] | None = None,
        operation: str | None = None,
        forward_only: bool = False,
    ) -> JobRecord: ...

    def delete_with_logs(self, job_id: int) -> bool: ...

    def list_recent(
        self, limit: int = 50, status: JobStatus | None = None
    ) -> list[JobRecord]: ...

    def delete_finished(self) -> int: ...


class LogSink(Protocol):
    def append(self, job_id: int, level: LogLevel, message: str) -> None: ...

    def list_for_job(self, job_id: int) -> list[LogEntry]: ...


class SqlJobStore:
    """``JobStore`` backed by the ``import_jobs`` table."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def create(self, file_name: str, file_path: str) -> JobRecord:
        with self._session_factory() as session:
            job = ImportJob(
                file_name=file_name,
                file_path=file_path,
                status=JobStatus.PENDING.value,
                total_rows=0,
                processed_rows=0,
                dedup_snapshot={},
            )
            session.add(job)
            session.commit()
            session.refresh(job)
            return JobRecord.model_validate(job)

    def get(self, job_id: int) -> JobRecord | None:
        with self._session_factory() as session:
            job = session.get(ImportJob, job_id)
            return JobRecord.model_validate(job) if job else None

    def update(
        self,
        job_id: int,
        patch: JobPatch,
        *,
        expected: Collection[JobStatus] | None = None,
        operation: str | None = None,
        forward_only: bool = False,
    ) -> JobRecord:
        """Apply ``patch`` only while the job is in one of ``expected``.

        The status check and the write are one UPDATE statement, so two
        callers racing on the same job cannot both pass the guard.
        With ``forward_only`` the patch is also refused if it would move
        ``processed_rows`` backwards.
        """
        with self._session_factory() as session:
            statement = update(ImportJob).where(ImportJob.id == job_id)
            if expected is not None:
                statement = statement.where(
                    ImportJob.status.in_([JobStatus(s).value for s in expected])
                )
            if forward_only and patch.processed_rows is not None:
                statement = statement.where(ImportJob.processed_rows <= patch.processed_rows)
            values = patch.values()
            if values:
                result = session.execute(statement.values(**values))
                session.commit()
                matched = result.rowcount
            else:
                matched = 1 if self._matches(session, job_id, expected) else 0

            job = session.get(ImportJob, job_id, populate_existing=True)
            if job is None:
                raise JobNotFoundError(job_id)
            if not matched:
                raise StateError(
                    job_id,
                    job.status,
                    [JobStatus(s).value for s in expected or ()],
                    operation,
                )
            return JobRecord.model_validate(job)

    @staticmethod
    def _matches(
        session: Session, job_id: int, expected: Collection[JobStatus] | None
    ) -> bool:
        job = session.get(ImportJob, job_id)
        if job is None:
            return False
        return expected is None or JobStatus(job.status) in set(expected)

    def delete_with_logs(self, job_id: int) -> bool:
        with self._session_factory() as session:
            session.execute(delete(ImportLog).where(ImportLog.job_id == job_id))
            result = session.execute(delete(ImportJob).where(ImportJob.id == job_id))
            session.commit()
            return bool(result.rowcount)

    def list_recent(
        self, limit: int = 50, status: JobStatus | None = None
    ) -> list[JobRecord]:
        with self._session_factory() as session:
            query = select(ImportJob)
            if status is not None:
                query = query.where(ImportJob.status == JobStatus(status).value)
            query = query.order_by(ImportJob.id.desc()).limit(limit)
            return [JobRecord.model_validate(job) for job in session.scalars(query)]

    def delete_finished(self) -> int:
        """Delete every terminal job together with its logs."""
        terminal = [status.value for status in TERMINAL_STATUSES]
        with self._session_factory() as session:
            job_ids = list(
                session.scalars(
                    select(ImportJob.id).where(ImportJob.status.in_(terminal))
                )
            )
            if not job_ids:
                return 0
            session.execute(delete(ImportLog).where(ImportLog.job_id.in_(job_ids)))
            session.execute(delete(ImportJob).where(ImportJob.id.in_(job_ids)))
            session.commit()
            return len(job_ids)


class SqlLogSink:
    """``LogSink`` backed by ``import_logs``; mirrors entries to stdlib logging."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def append(self, job_id: int, level: LogLevel, message: str) -> None:
        level = LogLevel(level)
        logger.log(level.stdlib_level, f"[{level.value}] (Job #{job_id}) {message}")
        with self._session_factory() as session:
            session.add(ImportLog(job_id=job_id, level=level.value, message=message))
            session.commit()

    def list_for_job(self, job_id: int) -> list[LogEntry]:
        with self._session_factory() as session:
            entries = session.scalars(
                select(ImportLog)
                .where(ImportLog.job_id == job_id)
                .order_by(ImportLog.id.asc())
            )
            return [LogEntry.model_validate(entry) for entry in entries]
