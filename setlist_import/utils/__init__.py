"""Utility modules for setlist-import.

- **errors** -- exception hierarchy rooted at SetlistImportError.
- **logging** -- structlog setup: coloured console in development, JSON in
  production; ``bound_job_context`` tags log lines with the import job.
- **retry** -- exponential backoff with jitter for transient upstream errors.
- **concurrency** -- semaphore-bounded gather and the worker-pool helper.
- **text** -- slugs, live-recording heuristics and track dedup keys.
"""

from setlist_import.utils.concurrency import BatchFailure, process_batch, throttled_gather
from setlist_import.utils.errors import (
    CircuitOpenError,
    ConfigurationError,
    PipelineError,
    ProviderError,
    RateLimitError,
    SetlistImportError,
    TransientProviderError,
    ValidationError,
    WrapUpError,
)
from setlist_import.utils.logging import bound_job_context, configure_logging, get_logger
from setlist_import.utils.retry import RetryPolicy, retry_async
from setlist_import.utils.text import (
    clean_title,
    fallback_track_key,
    is_live_album,
    is_live_title,
    slugify,
)

__all__ = [
    # concurrency
    "BatchFailure",
    "process_batch",
    "throttled_gather",
    # errors
    "CircuitOpenError",
    "ConfigurationError",
    "PipelineError",
    "ProviderError",
    "RateLimitError",
    "SetlistImportError",
    "TransientProviderError",
    "ValidationError",
    "WrapUpError",
    # logging
    "bound_job_context",
    "configure_logging",
    "get_logger",
    # retry
    "RetryPolicy",
    "retry_async",
    # text
    "clean_title",
    "fallback_track_key",
    "is_live_album",
    "is_live_title",
    "slugify",
]
