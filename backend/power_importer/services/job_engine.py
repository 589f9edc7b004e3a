"""Import job lifecycle: the state machine and chunk bookkeeping.

Every transition is a guarded store update: the engine names the statuses
an operation may start from and the store applies the change only if the
persisted status still matches, raising ``StateError`` otherwise. Clients
acting on a stale view of a job (double start, pausing a job that already
finished) are rejected without side effects.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from power_importer.core.errors import ChunkError, JobNotFoundError, StateError, ValidationError
from power_importer.services.chunk_executor import ChunkExecutor
from power_importer.services.dispatcher import Dispatcher
from power_importer.services.job_store import (
    NON_TERMINAL_STATUSES,
    RUNNING_STATUSES,
    JobPatch,
    JobRecord,
    JobStatus,
    JobStore,
    LogEntry,
    LogLevel,
    LogSink,
)
from power_importer.utils.csv_validator import CsvValidation, validate_csv

logger = logging.getLogger(__name__)

VALIDATE_FROM = frozenset({JobStatus.PENDING, JobStatus.VALIDATED})
START_FROM = frozenset(
    {
        JobStatus.PENDING,
        JobStatus.VALIDATED,
        JobStatus.PAUSED,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
    }
)
VALIDATE_ON_START = frozenset({JobStatus.PENDING, JobStatus.FAILED, JobStatus.CANCELLED})
PAUSE_FROM = frozenset({JobStatus.RUNNING_FOREGROUND})
RESUME_FROM = frozenset({JobStatus.PAUSED})
BACKGROUND_FROM = frozenset(
    {JobStatus.VALIDATED, JobStatus.PAUSED, JobStatus.RUNNING_FOREGROUND}
)
BEGIN_BACKGROUND_FROM = frozenset({JobStatus.QUEUED_BACKGROUND})
FAIL_FROM = RUNNING_STATUSES | {JobStatus.QUEUED_BACKGROUND}
CANCEL_FROM = NON_TERMINAL_STATUSES
# An in-flight chunk still records its committed rows after a pause or cancel
PROGRESS_FROM = RUNNING_STATUSES | {
    JobStatus.PAUSED,
    JobStatus.CANCELLED,
    JobStatus.QUEUED_BACKGROUND,
}


class ExecutionMode(str, Enum):
    FOREGROUND = "foreground"
    BACKGROUND = "background"

    @property
    def running_status(self) -> JobStatus:
        if self is ExecutionMode.BACKGROUND:
            return JobStatus.RUNNING_BACKGROUND
        return JobStatus.RUNNING_FOREGROUND


@dataclass
class ChunkReport:
    """What one ``run_chunk`` call did, as returned to the client."""

    processed: int
    total_processed: int
    total_rows: int
    is_complete: bool
    status: JobStatus
    errors: list[str] = field(default_factory=list)
    created: int = 0
    skipped: int = 0

    @property
    def next_offset(self) -> int:
        return self.total_processed


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImportJobEngine:
    def __init__(
        self,
        store: JobStore,
        logs: LogSink,
        executor: ChunkExecutor,
        dispatcher: Dispatcher | None = None,
        *,
        validator: Callable[[str], CsvValidation] = validate_csv,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.logs = logs
        self.executor = executor
        self.dispatcher = dispatcher
        self._validator = validator
        self._clock = clock

    # -- queries -------------------------------------------------------

    def get_job(self, job_id: int) -> JobRecord:
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    get_status = get_job

    def list_jobs(self, limit: int = 50, status: JobStatus | None = None) -> list[JobRecord]:
        return self.store.list_recent(limit=limit, status=status)

    def get_logs(self, job_id: int) -> list[LogEntry]:
        self.get_job(job_id)
        return self.logs.list_for_job(job_id)

    def log(self, job_id: int, level: LogLevel, message: str) -> None:
        self.logs.append(job_id, level, message)

    # -- lifecycle -----------------------------------------------------

    def create_job(self, file_name: str, file_path: str | Path) -> JobRecord:
        job = self.store.create(file_name, str(file_path))
        self.log(job.id, LogLevel.INFO, f"Job created for file '{file_name}'.")
        return job

    def validate(self, job_id: int) -> JobRecord:
        """Check headers, count rows and move the job to ``validated``."""
        job = self._require(job_id, VALIDATE_FROM, "validate")
        try:
            validation = self._validator(job.file_path)
        except ValidationError as e:
            self._fail_validation(job, e, VALIDATE_FROM)
            raise

        job = self._guarded_update(
            job_id,
            JobPatch(
                status=JobStatus.VALIDATED,
                total_rows=validation.total_rows,
                error_message=None,
                finished_at=None,
            ),
            VALIDATE_FROM,
            "validate",
        )
        self.log(
            job_id,
            LogLevel.INFO,
            f"CSV validation completed. Total data rows: {validation.total_rows}",
        )
        return job

    def start(self, job_id: int) -> JobRecord:
        """Begin a fresh foreground run; progress restarts at row zero."""
        job = self._require(job_id, START_FROM, "start")
        patch = JobPatch(
            status=JobStatus.RUNNING_FOREGROUND,
            started_at=self._clock(),
            finished_at=None,
            processed_rows=0,
            error_message=None,
        )
        if job.status in VALIDATE_ON_START:
            # Unvalidated, or a retry over a file that may have been replaced
            try:
                validation = self._validator(job.file_path)
            except ValidationError as e:
                self._fail_validation(job, e, {job.status})
                raise
            patch.total_rows = validation.total_rows
            self.log(
                job_id,
                LogLevel.INFO,
                f"CSV validation completed. Total data rows: {validation.total_rows}",
            )

        job = self._guarded_update(job_id, patch, START_FROM, "start")
        self.log(job_id, LogLevel.INFO, "Foreground import started.")
        return job

    def pause(self, job_id: int) -> JobRecord:
        job = self._transition(job_id, PAUSE_FROM, JobPatch(status=JobStatus.PAUSED), "pause")
        self.log(job_id, LogLevel.INFO, "Import paused by user.")
        return job

    def resume(self, job_id: int) -> JobRecord:
        job = self._transition(
            job_id, RESUME_FROM, JobPatch(status=JobStatus.RUNNING_FOREGROUND), "resume"
        )
        self.log(
            job_id,
            LogLevel.INFO,
            f"Import resumed by user at row {job.processed_rows}.",
        )
        return job

    def cancel(self, job_id: int) -> JobRecord:
        job = self._transition(
            job_id,
            CANCEL_FROM,
            JobPatch(status=JobStatus.CANCELLED, finished_at=self._clock()),
            "cancel",
        )
        self.log(job_id, LogLevel.INFO, "Import cancelled by user.")
        return job

    def reset(self, job_id: int) -> JobRecord:
        """Return any job to ``pending`` with progress, timestamps and errors cleared."""
        self.get_job(job_id)
        job = self.store.update(
            job_id,
            JobPatch(
                status=JobStatus.PENDING,
                total_rows=0,
                processed_rows=0,
                started_at=None,
                finished_at=None,
                error_message=None,
                dedup_snapshot={},
            ),
            operation="reset",
        )
        self.log(job_id, LogLevel.INFO, "Job has been reset to pending status.")
        return job

    def fail(
        self, job_id: int, message: str, *, level: LogLevel = LogLevel.ERROR
    ) -> JobRecord:
        job = self._transition(
            job_id,
            FAIL_FROM,
            JobPatch(
                status=JobStatus.FAILED,
                error_message=message,
                finished_at=self._clock(),
            ),
            "fail",
        )
        self.log(job_id, level, f"Import failed: {message}")
        return job

    def enable_background(self, job_id: int) -> JobRecord:
        """Queue the job for a dispatched background run."""
        self._require(job_id, BACKGROUND_FROM, "enable background mode for")
        if self.dispatcher is None:
            raise RuntimeError("No dispatcher configured for background execution")
        try:
            return self.dispatcher.dispatch(job_id, expected=BACKGROUND_FROM)
        except StateError as e:
            self._log_rejection(e)
            raise

    def begin_background(self, job_id: int) -> JobRecord | None:
        """Flip a queued job to ``running_background``; None if it was cancelled."""
        job = self.get_job(job_id)
        if job.status is JobStatus.CANCELLED:
            self.log(job_id, LogLevel.INFO, "Background run aborted: job was cancelled.")
            return None
        job = self._guarded_update(
            job_id,
            JobPatch(
                status=JobStatus.RUNNING_BACKGROUND,
                started_at=job.started_at or self._clock(),
            ),
            BEGIN_BACKGROUND_FROM,
            "begin background run for",
        )
        self.log(job_id, LogLevel.INFO, "Background processing started.")
        return job

    def delete_job(self, job_id: int) -> None:
        if not self.store.delete_with_logs(job_id):
            raise JobNotFoundError(job_id)
        logger.info(f"Deleted job {job_id} and its logs")

    def clear_finished_jobs(self) -> int:
        deleted = self.store.delete_finished()
        logger.info(f"Cleared {deleted} finished jobs")
        return deleted

    # -- chunks --------------------------------------------------------

    def run_chunk(
        self,
        job_id: int,
        chunk_size: int,
        *,
        mode: ExecutionMode = ExecutionMode.FOREGROUND,
    ) -> ChunkReport:
        """Process the next ``chunk_size`` rows after the persisted offset.

        The status is re-read first, so a client that keeps polling after a
        pause, cancel or switch to background gets ``StateError`` and no rows
        are touched.
        """
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")

        running = mode.running_status
        job = self.get_job(job_id)
        if job.status is not running:
            self.log(
                job_id,
                LogLevel.WARNING,
                f"Chunk requested but job status is '{job.status.value}', "
                f"not '{running.value}'.",
            )
            raise StateError(job_id, job.status.value, [running.value], "run a chunk for")

        offset = job.processed_rows
        try:
            result = self.executor.execute(job, offset, chunk_size)
        except ChunkError as e:
            self.log(
                job_id,
                LogLevel.ERROR,
                f"Chunk processing error at row offset {offset}: {e.message}",
            )
            raise

        processed = offset + result.rows_consumed
        if job.total_rows:
            processed = min(processed, job.total_rows)

        try:
            job = self.store.update(
                job_id,
                JobPatch(processed_rows=processed, dedup_snapshot=result.dedup_snapshot),
                expected=PROGRESS_FROM,
                operation="record progress for",
                forward_only=True,
            )
        except StateError as e:
            current = self.store.get(job_id)
            if current is not None and current.processed_rows > processed:
                self.log(
                    job_id,
                    LogLevel.WARNING,
                    f"Chunk at row offset {offset} finished after the job reached row "
                    f"{current.processed_rows}; its progress was discarded.",
                )
            else:
                self._log_rejection(e)
            raise

        is_complete = False
        if result.is_source_exhausted or processed >= job.total_rows:
            try:
                job = self.store.update(
                    job_id,
                    JobPatch(status=JobStatus.COMPLETED, finished_at=self._clock()),
                    expected={running},
                    operation="complete",
                )
            except StateError as e:
                self.log(
                    job_id,
                    LogLevel.INFO,
                    f"Reached the end of the file but job is now '{e.current}'; "
                    "leaving status unchanged.",
                )
                job = self.get_job(job_id)
            else:
                is_complete = True
                self.log(
                    job_id,
                    LogLevel.SUCCESS,
                    f"Import completed successfully ({processed} rows).",
                )

        return ChunkReport(
            processed=result.rows_consumed,
            total_processed=job.processed_rows,
            total_rows=job.total_rows,
            is_complete=is_complete,
            status=job.status,
            errors=[str(error) for error in result.errors],
            created=len(result.created_ids),
            skipped=result.skipped,
        )

    # -- helpers -------------------------------------------------------

    def _require(
        self, job_id: int, allowed: Collection[JobStatus], operation: str
    ) -> JobRecord:
        job = self.get_job(job_id)
        if job.status not in allowed:
            error = StateError(job_id, job.status.value, [s.value for s in allowed], operation)
            self._log_rejection(error)
            raise error
        return job

    def _transition(
        self,
        job_id: int,
        allowed: Collection[JobStatus],
        patch: JobPatch,
        operation: str,
    ) -> JobRecord:
        self.get_job(job_id)
        return self._guarded_update(job_id, patch, allowed, operation)

    def _guarded_update(
        self,
        job_id: int,
        patch: JobPatch,
        allowed: Collection[JobStatus],
        operation: str,
    ) -> JobRecord:
        try:
            return self.store.update(job_id, patch, expected=allowed, operation=operation)
        except StateError as e:
            self._log_rejection(e)
            raise

    def _log_rejection(self, error: StateError) -> None:
        self.log(
            error.job_id,
            LogLevel.WARNING,
            f"Attempt to {error.operation or 'change'} job in status '{error.current}' "
            "was prevented.",
        )

    def _fail_validation(
        self,
        job: JobRecord,
        error: ValidationError,
        expected: Collection[JobStatus],
    ) -> None:
        self.log(job.id, LogLevel.ERROR, f"CSV validation failed: {error.message}")
        self.store.update(
            job.id,
            JobPatch(
                status=JobStatus.FAILED,
                error_message=error.message,
                finished_at=self._clock(),
            ),
            expected=expected,
            operation="validate",
        )
