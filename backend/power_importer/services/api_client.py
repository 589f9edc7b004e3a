"""HTTP client for the jobs API, used by the foreground driver script."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from power_importer.core.errors import (
    ChunkError,
    DispatchError,
    ImporterError,
    JobNotFoundError,
    StateError,
    ValidationError,
)
from power_importer.services.job_engine import ChunkReport
from power_importer.services.job_store import JobStatus

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class ImporterClient:
    """Talks to ``/api/jobs`` and turns error responses back into typed errors.

    Transport failures and 5xx responses become ``ChunkError`` so the
    foreground driver retries them; 409 becomes ``StateError`` so it stops.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.Client | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> ImporterClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _request(self, method: str, path: str, job_id: int | None = None, **kwargs: Any) -> Any:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ChunkError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise ChunkError(f"Request failed: {e}") from e

        if response.is_success:
            return response.json()
        raise self._error_from_response(response, job_id)

    @staticmethod
    def _error_from_response(response: httpx.Response, job_id: int | None) -> ImporterError:
        try:
            detail = response.json().get("detail")
        except ValueError:
            detail = None
        if not isinstance(detail, dict):
            detail = {"message": str(detail or response.text[:200])}
        message = detail.get("message") or f"HTTP {response.status_code}"

        if response.status_code == 404 and job_id is not None:
            return JobNotFoundError(job_id)
        if response.status_code == 409:
            return StateError(
                job_id if job_id is not None else 0,
                detail.get("current_status", "unknown"),
                detail.get("allowed", []),
                detail.get("operation"),
            )
        if response.status_code == 422:
            return ValidationError(message, code=detail.get("code"))
        if response.status_code == 502:
            return DispatchError(message)
        if response.status_code >= 500:
            return ChunkError(f"HTTP {response.status_code}: {message}")
        return ImporterError(f"HTTP {response.status_code}: {message}", code=detail.get("code"))

    def _job_action(self, job_id: int, action: str) -> dict:
        return self._request("POST", f"/api/jobs/{job_id}/{action}", job_id)

    def get_status(self, job_id: int) -> dict:
        return self._request("GET", f"/api/jobs/{job_id}", job_id)

    def validate(self, job_id: int) -> dict:
        return self._job_action(job_id, "validate")

    def start(self, job_id: int) -> dict:
        return self._job_action(job_id, "start")

    def pause(self, job_id: int) -> dict:
        return self._job_action(job_id, "pause")

    def resume(self, job_id: int) -> dict:
        return self._job_action(job_id, "resume")

    def cancel(self, job_id: int) -> dict:
        return self._job_action(job_id, "cancel")

    def enable_background(self, job_id: int) -> dict:
        return self._job_action(job_id, "background")

    def run_chunk(self, job_id: int, chunk_size: int) -> ChunkReport:
        data = self._request(
            "POST", f"/api/jobs/{job_id}/chunks", job_id, json={"chunk_size": chunk_size}
        )
        return ChunkReport(
            processed=data["processed"],
            total_processed=data["total_processed"],
            total_rows=data["total_rows"],
            is_complete=data["is_complete"],
            status=JobStatus(data["status"]),
            errors=list(data.get("errors", [])),
            created=data.get("created", 0),
            skipped=data.get("skipped", 0),
        )

    def fail(self, job_id: int, message: str) -> dict:
        logger.error(f"Marking job {job_id} failed: {message}")
        return self._request(
            "POST", f"/api/jobs/{job_id}/fail", job_id, json={"message": message}
        )
