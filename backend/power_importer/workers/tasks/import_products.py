"""Celery task that runs a queued import job to the end."""

from __future__ import annotations

import logging

from power_importer.core.config import get_settings
from power_importer.services.drivers import BackgroundDriver
from power_importer.services.factory import build_import_engine
from power_importer.utils.memory_monitor import parse_memory_limit
from power_importer.workers.celery_app import IMPORT_TASK_NAME, celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name=IMPORT_TASK_NAME)
def run_background_import(self, job_id: int) -> dict:
    """Drive ``job_id`` from ``queued_background`` until it stops or completes."""
    settings = get_settings()
    logger.info(f"Background import task {self.request.id} picked up job {job_id}")

    driver = BackgroundDriver(
        build_import_engine(settings=settings),
        chunk_size=settings.background_chunk_size,
        memory_limit=parse_memory_limit(settings.background_memory_limit),
    )
    job = driver.run(job_id)
    if job is None:
        return {"job_id": job_id, "status": None, "processed_rows": 0}
    return {
        "job_id": job_id,
        "status": job.status.value,
        "processed_rows": job.processed_rows,
        "total_rows": job.total_rows,
    }
