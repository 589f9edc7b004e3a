"""Shared helpers for shaping job responses and mapping engine errors."""
from __future__ import annotations

from fastapi import HTTPException, status

from power_importer.api.schemas.job import ChunkResponse, JobRead, LogRead
from power_importer.core.errors import (
    ChunkError,
    DispatchError,
    ImporterError,
    JobNotFoundError,
    StateError,
    ValidationError,
)
from power_importer.services.job_engine import ChunkReport
from power_importer.services.job_store import JobRecord, JobStatus, LogEntry

ERROR_STATUS_CODES: dict[type[ImporterError], int] = {
    JobNotFoundError: status.HTTP_404_NOT_FOUND,
    StateError: status.HTTP_409_CONFLICT,
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    DispatchError: status.HTTP_502_BAD_GATEWAY,
    ChunkError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def serialize_job(job: JobRecord) -> JobRead:
    """Shape a job snapshot for polling dashboards."""
    total_display = job.total_rows if job.total_rows else "?"
    message = f"Processed {job.processed_rows}/{total_display} rows"
    if job.status is JobStatus.COMPLETED:
        message = "Import complete"
    elif job.status is JobStatus.FAILED and job.error_message:
        message = f"Import failed: {job.error_message}"

    return JobRead(
        id=job.id,
        file_name=job.file_name,
        status=job.status.value,
        progress=job.progress,
        message=message,
        total_rows=job.total_rows,
        processed_rows=job.processed_rows,
        error_message=job.error_message,
        created_at=job.created_at,
        started_at=job.started_at,
        finished_at=job.finished_at,
    )


def serialize_chunk(report: ChunkReport) -> ChunkResponse:
    return ChunkResponse(
        processed=report.processed,
        total_processed=report.total_processed,
        total_rows=report.total_rows,
        is_complete=report.is_complete,
        status=JobStatus(report.status).value,
        errors=report.errors,
        created=report.created,
        skipped=report.skipped,
    )


def serialize_log(entry: LogEntry) -> LogRead:
    return LogRead(
        id=entry.id, level=entry.level.value, message=entry.message, created_at=entry.created_at
    )


def http_error(error: ImporterError) -> HTTPException:
    """Translate an engine error into the ``{"detail": {code, message}}`` shape."""
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, code in ERROR_STATUS_CODES.items():
        if isinstance(error, error_type):
            status_code = code
            break

    detail: dict = {"code": error.code, "message": error.message}
    if isinstance(error, StateError):
        detail["current_status"] = error.current
        detail["allowed"] = error.expected
    return HTTPException(status_code=status_code, detail=detail)
