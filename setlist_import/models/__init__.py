"""Domain models, re-exported from their submodules.

    - canonical.py        rows written to the canonical store
    - external.py         parsed upstream API payloads
    - import_job.py       import stages and the persisted job snapshot
    - provider_config.py  per-provider batching / retry / breaker settings
    - results.py          ingest and orchestrator results
"""

from __future__ import annotations

from setlist_import.models.canonical import (
    CanonicalArtist,
    CanonicalShow,
    CanonicalSong,
    CanonicalVenue,
    StoredArtist,
    StoredShow,
    StoredSong,
)
from setlist_import.models.external import (
    AudioFeatures,
    ExternalAlbum,
    ExternalArtistProfile,
    ExternalAttraction,
    ExternalEvent,
    ExternalImage,
    ExternalTrack,
    ExternalVenue,
)
from setlist_import.models.import_job import TIMED_STAGES, ImportJob, ImportStage
from setlist_import.models.provider_config import (
    DEFAULT_PROVIDER_CONFIGS,
    BatchConfig,
    CircuitBreakerConfig,
    RateLimitConfig,
    RetryPolicyConfig,
)
from setlist_import.models.results import (
    CatalogIngestResult,
    ImportResult,
    ImportStats,
    IngestError,
    InitiateResult,
    PreseedResult,
    ShowsIngestResult,
)

__all__ = [
    # canonical
    "CanonicalArtist",
    "CanonicalShow",
    "CanonicalSong",
    "CanonicalVenue",
    "StoredArtist",
    "StoredShow",
    "StoredSong",
    # external
    "AudioFeatures",
    "ExternalAlbum",
    "ExternalArtistProfile",
    "ExternalAttraction",
    "ExternalEvent",
    "ExternalImage",
    "ExternalTrack",
    "ExternalVenue",
    # import job
    "TIMED_STAGES",
    "ImportJob",
    "ImportStage",
    # provider config
    "DEFAULT_PROVIDER_CONFIGS",
    "BatchConfig",
    "CircuitBreakerConfig",
    "RateLimitConfig",
    "RetryPolicyConfig",
    # results
    "CatalogIngestResult",
    "ImportResult",
    "ImportStats",
    "IngestError",
    "InitiateResult",
    "PreseedResult",
    "ShowsIngestResult",
]
