"""Import job state models.

ImportJob is the persisted, subscribable record of one artist import.  Like
every model in this package it is frozen: the Progress Bus produces a new
snapshot per report via ``model_copy(update={...})`` and upserts it by
``job_id``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ImportStage(str, Enum):  # noqa: UP042
    """Stages of an artist import.

    initializing -> syncing-identifiers -> {importing-shows, importing-songs}
    -> creating-setlists -> wrap-up -> completed | failed
    """

    INITIALIZING = "initializing"
    SYNCING_IDENTIFIERS = "syncing-identifiers"
    IMPORTING_SHOWS = "importing-shows"
    IMPORTING_SONGS = "importing-songs"
    CREATING_SETLISTS = "creating-setlists"
    WRAP_UP = "wrap-up"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ImportStage.COMPLETED, ImportStage.FAILED)


# Stages that carry phase timers, in pipeline order.  The two parallel
# stages are both timed; whichever is reported later closes the earlier.
TIMED_STAGES: tuple[ImportStage, ...] = (
    ImportStage.INITIALIZING,
    ImportStage.SYNCING_IDENTIFIERS,
    ImportStage.IMPORTING_SHOWS,
    ImportStage.IMPORTING_SONGS,
    ImportStage.CREATING_SETLISTS,
    ImportStage.WRAP_UP,
)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


class ImportJob(BaseModel):
    """Last-known progress of one import, keyed by ``job_id``.

    ``phase_timings`` holds ``{stage}_start`` / ``{stage}_end`` /
    ``{stage}_duration`` entries in epoch milliseconds (durations in ms).
    """

    model_config = ConfigDict(frozen=True)

    job_id: str = Field(description="Import job key (the internal artist id).")
    stage: ImportStage = ImportStage.INITIALIZING
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    message: str = ""
    error: str | None = None
    phase_timings: dict[str, float] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return not self.stage.is_terminal

    def to_event(self) -> dict[str, Any]:
        """Flatten into the JSON-safe dict sent to subscribers."""
        return {
            "job_id": self.job_id,
            "stage": self.stage.value,
            "progress": self.progress,
            "message": self.message,
            "error": self.error,
            "phase_timings": dict(self.phase_timings),
            "metadata": dict(self.metadata),
            "started_at": self.started_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
