"""Import orchestration: orchestrator, progress bus, batching and circuit breaking."""

from setlist_import.pipeline.batch_optimizer import BatchAPIOptimizer
from setlist_import.pipeline.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry
from setlist_import.pipeline.orchestrator import ArtistImportOrchestrator
from setlist_import.pipeline.progress_bus import JobReporter, ProgressBus
from setlist_import.pipeline.rate_limiter import RateLimiter

__all__ = [
    "ArtistImportOrchestrator",
    "BatchAPIOptimizer",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "JobReporter",
    "ProgressBus",
    "RateLimiter",
]
