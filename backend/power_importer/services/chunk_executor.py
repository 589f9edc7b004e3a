"""Process one bounded chunk of a job's source file."""

from __future__ import annotations

import csv
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from power_importer.core.errors import ChunkError, RowError
from power_importer.services.dedup_cache import DEFAULT_MAX_SIZE, SkuCache, SkuIndex, SqlSkuIndex
from power_importer.services.job_store import JobRecord, LogLevel, LogSink
from power_importer.services.product_translator import ProductRowTranslator, RowTranslator
from power_importer.utils.csv_source import (
    iter_data_rows,
    make_reader,
    open_source,
    read_header,
    skip_rows,
)

logger = logging.getLogger(__name__)

# Failures that say the environment is broken rather than the row
CHUNK_FATAL_ERRORS = (
    OSError,
    MemoryError,
    OperationalError,
    InterfaceError,
    UnicodeDecodeError,
    csv.Error,
)


@dataclass
class ChunkResult:
    rows_consumed: int = 0
    errors: list[RowError] = field(default_factory=list)
    is_source_exhausted: bool = False
    created_ids: list[int] = field(default_factory=list)
    skipped: int = 0
    dedup_snapshot: dict[str, int] = field(default_factory=dict)


class ChunkExecutor:
    """Reads ``chunk_size`` rows after ``offset`` and translates each one.

    Per-row problems become ``RowError`` entries in the result; only
    failures of the file or the database abort the chunk with ``ChunkError``.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        logs: LogSink,
        *,
        translator_factory: Callable[[Session], RowTranslator] = ProductRowTranslator,
        index_factory: Callable[[Session], SkuIndex] = SqlSkuIndex,
        cache_max_size: int = DEFAULT_MAX_SIZE,
    ) -> None:
        self._session_factory = session_factory
        self._logs = logs
        self._translator_factory = translator_factory
        self._index_factory = index_factory
        self.cache_max_size = cache_max_size

    def execute(self, job: JobRecord, offset: int, chunk_size: int) -> ChunkResult:
        path = Path(job.file_path)
        if not path.is_file():
            raise ChunkError(f"CSV file not found or not readable during chunk processing: {path}")

        try:
            with open_source(path) as handle, self._session_factory() as session:
                reader = make_reader(handle)
                headers = read_header(reader)
                if not headers:
                    raise ChunkError("Failed to read CSV headers during chunk processing")

                rows = iter_data_rows(reader)
                skip_rows(rows, offset)

                cache = SkuCache(
                    self._index_factory(session),
                    max_size=self.cache_max_size,
                    pending=job.dedup_snapshot,
                )
                translator = self._translator_factory(session)
                result = self._process_rows(
                    job, headers, rows, offset, chunk_size, session, cache, translator
                )
                result.is_source_exhausted = next(rows, None) is None
                result.dedup_snapshot = cache.snapshot()
                return result
        except ChunkError:
            raise
        except CHUNK_FATAL_ERRORS as e:
            logger.error(f"Chunk at offset {offset} for job {job.id} aborted: {e}", exc_info=True)
            raise ChunkError(f"{type(e).__name__}: {e}") from e

    def _process_rows(
        self,
        job: JobRecord,
        headers: list[str],
        rows: Iterator[list[str]],
        offset: int,
        chunk_size: int,
        session: Session,
        cache: SkuCache,
        translator: RowTranslator,
    ) -> ChunkResult:
        result = ChunkResult()

        def log(level: LogLevel, message: str) -> None:
            self._logs.append(job.id, level, message)

        while result.rows_consumed < chunk_size:
            values = next(rows, None)
            if values is None:
                break
            result.rows_consumed += 1
            row_number = offset + result.rows_consumed

            if len(values) != len(headers):
                self._row_error(
                    job,
                    result,
                    row_number,
                    f"Column count mismatch. Expected {len(headers)}, got {len(values)}. Skipping row.",
                    LogLevel.WARNING,
                )
                continue

            row = dict(zip(headers, values))
            try:
                outcome = translator.translate(row, cache, row_number=row_number, log=log)
            except CHUNK_FATAL_ERRORS:
                session.rollback()
                raise
            except Exception as e:
                session.rollback()
                logger.warning(f"Row {row_number} of job {job.id} failed: {e}", exc_info=True)
                self._row_error(job, result, row_number, f"Error - {e}", LogLevel.ERROR)
                continue

            result.created_ids.extend(outcome.entity_ids)
            if outcome.skipped:
                result.skipped += 1
            for message in outcome.errors:
                self._row_error(job, result, row_number, message, LogLevel.ERROR)

        return result

    def _row_error(
        self,
        job: JobRecord,
        result: ChunkResult,
        row_number: int,
        message: str,
        level: LogLevel,
    ) -> None:
        error = RowError(row_number=row_number, message=message)
        result.errors.append(error)
        self._logs.append(job.id, level, str(error))
