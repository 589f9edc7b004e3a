"""Job payloads for the jobs and uploads endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field


class JobRead(BaseModel):
    id: int
    file_name: str
    status: str = Field(
        ...,
        description="pending|validated|running_foreground|paused|queued_background|"
        "running_background|completed|failed|cancelled",
    )
    progress: float = Field(0.0, description="0-1 range for UI progress bars")
    message: str | None = None
    total_rows: int = 0
    processed_rows: int = 0
    error_message: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None


class ChunkRequest(BaseModel):
    chunk_size: int = Field(10, ge=1, le=10000)


class ChunkResponse(BaseModel):
    processed: int = Field(..., description="Rows consumed by this chunk")
    total_processed: int
    total_rows: int
    is_complete: bool
    status: str
    errors: list[str] = Field(default_factory=list)
    created: int = 0
    skipped: int = 0


class FailRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000)


class LogRead(BaseModel):
    id: int
    level: str
    message: str
    created_at: datetime | None = None


class ClearJobsResponse(BaseModel):
    deleted: int
