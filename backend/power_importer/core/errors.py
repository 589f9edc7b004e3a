"""Error taxonomy for the import job engine."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass


class ImporterError(Exception):
    """Base class for failures surfaced to callers as typed errors."""

    code = "importer_error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        self.message = message
        if code:
            self.code = code
        super().__init__(message)


class JobNotFoundError(ImporterError):
    code = "job_not_found"

    def __init__(self, job_id: int) -> None:
        self.job_id = job_id
        super().__init__(f"Job #{job_id} not found")


class ValidationError(ImporterError):
    """Source file cannot be imported; terminal for the job."""

    code = "validation_failed"


class StateError(ImporterError):
    """Operation attempted from a status that does not allow it."""

    code = "invalid_state"

    def __init__(
        self,
        job_id: int,
        current: str,
        expected: Iterable[str],
        operation: str | None = None,
    ) -> None:
        self.job_id = job_id
        self.current = current
        self.expected = sorted(expected)
        self.operation = operation
        action = operation or "operation"
        super().__init__(
            f"Cannot {action} job #{job_id} from status '{current}' "
            f"(allowed: {', '.join(self.expected)})"
        )


class ChunkError(ImporterError):
    """A chunk aborted; nothing about its progress was recorded."""

    code = "chunk_failed"


class DispatchError(ImporterError):
    """The background trigger could not be published."""

    code = "dispatch_failed"


@dataclass(frozen=True)
class RowError:
    """Recoverable per-row failure, reported as data alongside a chunk."""

    row_number: int
    message: str

    def __str__(self) -> str:
        return f"Row {self.row_number}: {self.message}"
