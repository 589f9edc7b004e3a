"""Hand a job to the background worker."""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection
from datetime import datetime, timezone

from power_importer.core.errors import DispatchError, StateError
from power_importer.services.job_store import (
    JobPatch,
    JobRecord,
    JobStatus,
    JobStore,
    LogLevel,
    LogSink,
)

logger = logging.getLogger(__name__)

BackgroundTrigger = Callable[[int], object]


def celery_trigger(job_id: int) -> object:
    """Publish ``run_background_import`` for ``job_id`` on the imports queue."""
    # Imported here so the engine can be built without a broker configured
    from power_importer.workers.tasks.import_products import run_background_import

    result = run_background_import.apply_async(args=[job_id], queue="imports", retry=False)
    logger.info(f"Background import task {result.id} published for job {job_id}")
    return result


class Dispatcher:
    """Marks a job ``queued_background`` and publishes the worker task.

    If publishing fails the job is failed right away, so it never sits in
    ``queued_background`` with nothing coming to pick it up.
    """

    def __init__(
        self,
        store: JobStore,
        logs: LogSink,
        trigger: BackgroundTrigger = celery_trigger,
    ) -> None:
        self.store = store
        self.logs = logs
        self.trigger = trigger

    def dispatch(self, job_id: int, *, expected: Collection[JobStatus]) -> JobRecord:
        current = self.store.get(job_id)
        started_at = current.started_at if current and current.started_at else _now()

        job = self.store.update(
            job_id,
            JobPatch(
                status=JobStatus.QUEUED_BACKGROUND,
                started_at=started_at,
                finished_at=None,
                error_message=None,
            ),
            expected=expected,
            operation="enable background mode for",
        )
        self.logs.append(job_id, LogLevel.INFO, "Job queued for background processing.")

        try:
            self.trigger(job_id)
        except Exception as e:
            message = f"Failed to dispatch background task: {e}"
            logger.error(f"Dispatch of job {job_id} failed: {e}", exc_info=True)
            self.logs.append(job_id, LogLevel.ERROR, message)
            try:
                self.store.update(
                    job_id,
                    JobPatch(
                        status=JobStatus.FAILED,
                        error_message=message,
                        finished_at=_now(),
                    ),
                    expected={JobStatus.QUEUED_BACKGROUND},
                    operation="fail",
                )
            except StateError as state_error:
                logger.warning(
                    f"Job {job_id} left queued_background before dispatch failure "
                    f"was recorded: {state_error}"
                )
            raise DispatchError(message) from e

        self.logs.append(job_id, LogLevel.INFO, "Background task dispatched.")
        return job


def _now() -> datetime:
    return datetime.now(timezone.utc)
