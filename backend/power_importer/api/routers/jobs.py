"""Import job lifecycle endpoints: status, control actions and chunk runs."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, status

from power_importer.api.dependencies.engine import get_import_engine
from power_importer.api.routers.job_helpers import (
    http_error,
    serialize_chunk,
    serialize_job,
    serialize_log,
)
from power_importer.api.schemas.job import (
    ChunkRequest,
    ChunkResponse,
    ClearJobsResponse,
    FailRequest,
    JobRead,
    LogRead,
)
from power_importer.core.errors import ImporterError
from power_importer.services.job_engine import ImportJobEngine
from power_importer.services.job_store import JobStatus
from power_importer.storage.uploads import delete_upload

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", summary="List recent import jobs", response_model=list[JobRead])
def list_jobs(
    limit: int = Query(50, ge=1, le=500, description="Maximum number of jobs to return"),
    status_filter: JobStatus | None = Query(None, alias="status", description="Filter by status"),
    engine: ImportJobEngine = Depends(get_import_engine),
) -> list[JobRead]:
    """Newest first."""
    return [serialize_job(job) for job in engine.list_jobs(limit=limit, status=status_filter)]


@router.delete("/", summary="Delete finished jobs", response_model=ClearJobsResponse)
def clear_finished_jobs(
    engine: ImportJobEngine = Depends(get_import_engine),
) -> ClearJobsResponse:
    """Remove completed, failed and cancelled jobs together with their logs."""
    return ClearJobsResponse(deleted=engine.clear_finished_jobs())


@router.get("/{job_id}", summary="Fetch job status and progress", response_model=JobRead)
def get_job(job_id: int, engine: ImportJobEngine = Depends(get_import_engine)) -> JobRead:
    try:
        return serialize_job(engine.get_status(job_id))
    except ImporterError as exc:
        raise http_error(exc) from exc


@router.delete(
    "/{job_id}", summary="Delete a job, its logs and its upload", status_code=status.HTTP_204_NO_CONTENT
)
def delete_job(job_id: int, engine: ImportJobEngine = Depends(get_import_engine)) -> None:
    try:
        job = engine.get_job(job_id)
        engine.delete_job(job_id)
    except ImporterError as exc:
        raise http_error(exc) from exc
    delete_upload(job.file_path)


@router.get("/{job_id}/logs", summary="Job log entries, oldest first", response_model=list[LogRead])
def get_logs(job_id: int, engine: ImportJobEngine = Depends(get_import_engine)) -> list[LogRead]:
    try:
        return [serialize_log(entry) for entry in engine.get_logs(job_id)]
    except ImporterError as exc:
        raise http_error(exc) from exc


def _run_action(engine: ImportJobEngine, action: str, job_id: int) -> JobRead:
    try:
        job = getattr(engine, action)(job_id)
    except ImporterError as exc:
        logger.info(f"{action} rejected for job {job_id}: {exc.message}")
        raise http_error(exc) from exc
    return serialize_job(job)


@router.post("/{job_id}/validate", summary="Validate the CSV and count rows", response_model=JobRead)
def validate_job(job_id: int, engine: ImportJobEngine = Depends(get_import_engine)) -> JobRead:
    return _run_action(engine, "validate", job_id)


@router.post("/{job_id}/start", summary="Start a foreground run", response_model=JobRead)
def start_job(job_id: int, engine: ImportJobEngine = Depends(get_import_engine)) -> JobRead:
    return _run_action(engine, "start", job_id)


@router.post("/{job_id}/pause", summary="Pause a foreground run", response_model=JobRead)
def pause_job(job_id: int, engine: ImportJobEngine = Depends(get_import_engine)) -> JobRead:
    return _run_action(engine, "pause", job_id)


@router.post("/{job_id}/resume", summary="Resume a paused run", response_model=JobRead)
def resume_job(job_id: int, engine: ImportJobEngine = Depends(get_import_engine)) -> JobRead:
    return _run_action(engine, "resume", job_id)


@router.post("/{job_id}/cancel", summary="Cancel a job", response_model=JobRead)
def cancel_job(job_id: int, engine: ImportJobEngine = Depends(get_import_engine)) -> JobRead:
    return _run_action(engine, "cancel", job_id)


@router.post("/{job_id}/reset", summary="Reset a job to pending", response_model=JobRead)
def reset_job(job_id: int, engine: ImportJobEngine = Depends(get_import_engine)) -> JobRead:
    return _run_action(engine, "reset", job_id)


@router.post(
    "/{job_id}/background",
    summary="Hand the job to the background worker",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=JobRead,
)
def enable_background(
    job_id: int, engine: ImportJobEngine = Depends(get_import_engine)
) -> JobRead:
    return _run_action(engine, "enable_background", job_id)


@router.post("/{job_id}/chunks", summary="Process the next chunk", response_model=ChunkResponse)
def run_chunk(
    job_id: int,
    request: ChunkRequest,
    engine: ImportJobEngine = Depends(get_import_engine),
) -> ChunkResponse:
    """Process up to ``chunk_size`` rows after the job's persisted offset.

    Called repeatedly by the foreground client; a 409 means the job is no
    longer running in the foreground and the client should stop.
    """
    try:
        report = engine.run_chunk(job_id, request.chunk_size)
    except ImporterError as exc:
        raise http_error(exc) from exc
    return serialize_chunk(report)


@router.post("/{job_id}/fail", summary="Mark a running job failed", response_model=JobRead)
def fail_job(
    job_id: int,
    request: FailRequest,
    engine: ImportJobEngine = Depends(get_import_engine),
) -> JobRead:
    try:
        return serialize_job(engine.fail(job_id, request.message))
    except ImporterError as exc:
        raise http_error(exc) from exc
