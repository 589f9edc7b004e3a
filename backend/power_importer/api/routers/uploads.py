"""Endpoint for staging CSV uploads as import jobs."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from power_importer.api.dependencies.engine import get_import_engine
from power_importer.api.routers.job_helpers import serialize_job
from power_importer.api.schemas.job import JobRead
from power_importer.services.job_engine import ImportJobEngine
from power_importer.storage.uploads import save_upload

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/",
    summary="Upload a CSV and create an import job",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=JobRead,
)
def create_import(
    file: UploadFile = File(...),
    engine: ImportJobEngine = Depends(get_import_engine),
) -> JobRead:
    """Store the file and create a ``pending`` job; validation is a separate call."""
    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Filename is required",
        )
    if not file.filename.lower().endswith(".csv"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only CSV uploads are supported",
        )

    try:
        staged_path = save_upload(file.file, file.filename)
    except OSError as exc:
        logger.error(f"OS error staging file: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save uploaded file",
        ) from exc

    job = engine.create_job(file.filename, staged_path)
    logger.info(f"Created import job {job.id} for file {file.filename}")
    return serialize_job(job)
