"""Pydantic request/response schemas for the import API.

Request schemas end with ``Request``, response schemas with ``Response``.
FastAPI validates bodies against them and builds the OpenAPI docs from
their ``Field`` descriptions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from setlist_import.models.import_job import ImportJob
from setlist_import.models.results import InitiateResult


class ImportRequest(BaseModel):
    """Start an import for one artist."""

    artist_key: str = Field(
        ..., min_length=1, max_length=64, description="Ticketmaster attraction id."
    )


class BatchImportRequest(BaseModel):
    """Start imports for several artists, run a few at a time."""

    artist_keys: list[str] = Field(..., min_length=1, max_length=50)


class ImportStartedResponse(BaseModel):
    """Returned once the artist row exists and the import runs in the background."""

    job_id: str
    status: str = "started"
    artist: InitiateResult


class BatchImportResponse(BaseModel):
    accepted: list[str]
    status: str = "accepted"


class ImportStatusResponse(BaseModel):
    """Last known progress of an import job."""

    job_id: str
    stage: str
    progress: float
    message: str
    error: str | None = None
    phase_timings: dict[str, float] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_job(cls, job: ImportJob) -> ImportStatusResponse:
        return cls(
            job_id=job.job_id,
            stage=job.stage.value,
            progress=job.progress,
            message=job.message,
            error=job.error,
            phase_timings=dict(job.phase_timings),
            metadata=dict(job.metadata),
            started_at=job.started_at,
            updated_at=job.updated_at,
            completed_at=job.completed_at,
        )


class ActiveImportsResponse(BaseModel):
    imports: list[ImportStatusResponse] = Field(default_factory=list)


class OptimizerStatsResponse(BaseModel):
    """Batch optimizer queues, breakers and rate-limit windows per provider."""

    providers: dict[str, Any] = Field(default_factory=dict)
    in_flight_batches: int = 0
    cache_size: int = 0


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    providers: dict[str, Any]


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str | None = None
