"""Loops that push a job through its chunks.

``ForegroundDriver`` is the client-side loop: it asks for one chunk at a
time (through the HTTP API or an engine directly), waits between chunks and
retries a failed chunk with exponential backoff. ``BackgroundDriver`` runs
inside the worker and keeps going until the job leaves
``running_background``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from power_importer.core.errors import ChunkError, JobNotFoundError, StateError
from power_importer.services.job_engine import ChunkReport, ExecutionMode, ImportJobEngine
from power_importer.services.job_store import JobRecord, JobStatus, LogLevel
from power_importer.utils.memory_monitor import (
    DEFAULT_MEMORY_LIMIT,
    check_memory_exceeded,
    force_gc,
    format_bytes,
    log_memory_status,
)

logger = logging.getLogger(__name__)


class ChunkRunner(Protocol):
    def run_chunk(self, job_id: int, chunk_size: int) -> ChunkReport: ...

    def fail(self, job_id: int, message: str) -> object: ...


@dataclass
class ForegroundOutcome:
    status: str
    total_processed: int = 0
    total_rows: int = 0
    chunks: int = 0
    retries: int = 0
    errors: list[str] = field(default_factory=list)
    error_message: str | None = None


class ForegroundDriver:
    def __init__(
        self,
        runner: ChunkRunner,
        *,
        chunk_size: int = 10,
        delay_seconds: float = 1.0,
        max_retries: int = 3,
        backoff_base_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        on_chunk: Callable[[ChunkReport], None] | None = None,
    ) -> None:
        self.runner = runner
        self.chunk_size = chunk_size
        self.delay_seconds = delay_seconds
        self.max_retries = max_retries
        self.backoff_base_seconds = backoff_base_seconds
        self._sleep = sleep
        self._on_chunk = on_chunk

    def run(self, job_id: int) -> ForegroundOutcome:
        """Drive ``job_id`` until it completes, stops or exhausts its retries.

        A ``StateError`` means someone else paused, cancelled or backgrounded
        the job; the loop stops quietly with the status it was told about.
        """
        outcome = ForegroundOutcome(status=JobStatus.RUNNING_FOREGROUND.value)
        attempt = 0

        while True:
            try:
                report = self.runner.run_chunk(job_id, self.chunk_size)
            except StateError as e:
                logger.info(f"Foreground loop for job {job_id} stopped: {e.message}")
                outcome.status = str(e.current)
                return outcome
            except ChunkError as e:
                if attempt >= self.max_retries:
                    message = f"Chunk failed after {self.max_retries} retries: {e.message}"
                    logger.error(f"Job {job_id}: {message}")
                    outcome.error_message = message
                    outcome.status = JobStatus.FAILED.value
                    try:
                        self.runner.fail(job_id, message)
                    except StateError as state_error:
                        outcome.status = str(state_error.current)
                    return outcome
                delay = self.backoff_base_seconds * (2**attempt)
                attempt += 1
                outcome.retries += 1
                logger.warning(
                    f"Chunk for job {job_id} failed ({e.message}); "
                    f"retry {attempt}/{self.max_retries} in {delay:.1f}s"
                )
                self._sleep(delay)
                continue

            attempt = 0
            outcome.chunks += 1
            outcome.total_processed = report.total_processed
            outcome.total_rows = report.total_rows
            outcome.errors.extend(report.errors)
            outcome.status = JobStatus(report.status).value
            if self._on_chunk is not None:
                self._on_chunk(report)

            if report.is_complete or outcome.status != JobStatus.RUNNING_FOREGROUND.value:
                return outcome
            if self.delay_seconds > 0:
                self._sleep(self.delay_seconds)


class BackgroundDriver:
    def __init__(
        self,
        engine: ImportJobEngine,
        *,
        chunk_size: int = 100,
        memory_limit: int = DEFAULT_MEMORY_LIMIT,
    ) -> None:
        self.engine = engine
        self.chunk_size = chunk_size
        self.memory_limit = memory_limit

    def run(self, job_id: int) -> JobRecord | None:
        """Claim a queued job and process it to the end.

        Status and memory are checked between chunks, so a cancel, pause or
        reset takes effect after the chunk in flight. A job deleted mid-run
        just ends the loop. Any other failure fails the job; unexpected
        exceptions are re-raised after that so the worker records them too.
        """
        try:
            job = self.engine.begin_background(job_id)
        except (JobNotFoundError, StateError) as e:
            logger.warning(f"Background run for job {job_id} not started: {e.message}")
            return None
        if job is None:
            return None

        log_memory_status(self.memory_limit, f"job {job_id} start")
        try:
            while True:
                job = self.engine.get_job(job_id)
                if job.status is not JobStatus.RUNNING_BACKGROUND:
                    self.engine.log(
                        job_id,
                        LogLevel.INFO,
                        f"Background processing stopped: job is now '{job.status.value}'.",
                    )
                    return job

                exceeded, current, limit = check_memory_exceeded(self.memory_limit)
                if exceeded:
                    force_gc()
                    raise ChunkError(
                        f"Memory limit exceeded: {format_bytes(current)} >= {format_bytes(limit)}"
                    )

                report = self.engine.run_chunk(
                    job_id, self.chunk_size, mode=ExecutionMode.BACKGROUND
                )
                logger.info(
                    f"Job {job_id}: {report.total_processed}/{report.total_rows} rows processed"
                )
                if report.is_complete:
                    log_memory_status(self.memory_limit, f"job {job_id} complete")
                    return self.engine.get_job(job_id)
        except JobNotFoundError:
            logger.warning(f"Job {job_id} was deleted during its background run; stopping")
            return None
        except StateError as e:
            logger.info(f"Background run for job {job_id} stopped: {e.message}")
            return self.engine.store.get(job_id)
        except ChunkError as e:
            return self._fail(job_id, e.message, LogLevel.ERROR)
        except Exception as e:
            logger.error(f"Background import for job {job_id} crashed: {e}", exc_info=True)
            self._fail(job_id, f"Critical error in background processing: {e}", LogLevel.CRITICAL)
            raise

    def _fail(self, job_id: int, message: str, level: LogLevel) -> JobRecord | None:
        try:
            return self.engine.fail(job_id, message, level=level)
        except (JobNotFoundError, StateError) as e:
            logger.warning(f"Could not mark job {job_id} failed: {e.message}")
            return self.engine.store.get(job_id)
