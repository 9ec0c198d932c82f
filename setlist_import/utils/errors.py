"""Custom exception hierarchy for setlist-import.

All application exceptions inherit from :class:`SetlistImportError`, which
carries an optional ``provider_name`` so error handlers can identify which
external dependency (e.g. "spotify", "ticketmaster", "sqlite") caused the
failure.

The hierarchy is organized by how the pipeline reacts to each failure:

    SetlistImportError  (base -- catch-all for any setlist-import error)
    +-- ValidationError          (fatal: abort the job at the raising phase)
    +-- TransientProviderError   (timeout / 5xx / 429: retry with backoff)
    |   +-- RateLimitError       (429 with an optional Retry-After)
    +-- ProviderError            (non-retryable upstream response)
    +-- CircuitOpenError         (dependency breaker is OPEN: retry later)
    +-- WrapUpError              (best-effort wrap-up: logged, never fatal)
    +-- PipelineError            (phase-level failure surfaced to the caller)
    +-- ConfigurationError       (startup / missing credentials)

Item-level failures (one venue, one track) never travel as exceptions past
a batch boundary; they are captured as ``IngestError`` records instead.
"""


class SetlistImportError(Exception):
    """Base exception for all setlist-import errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name``.  ``__str__`` prefixes the provider name in brackets
    for log scanning, e.g. ``[spotify] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Fatal input errors
# ---------------------------------------------------------------------------


class ValidationError(SetlistImportError):
    """Raised when the import target is invalid (e.g. artist not found upstream)."""

    def __init__(
        self,
        message: str = "Validation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Upstream provider errors
# ---------------------------------------------------------------------------


class TransientProviderError(SetlistImportError):
    """Raised on timeouts, 5xx and 429 responses.  Safe to retry."""

    def __init__(
        self,
        message: str = "Transient provider failure",
        provider_name: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self._status_code = status_code
        super().__init__(message=message, provider_name=provider_name)

    @property
    def status_code(self) -> int | None:
        return self._status_code


class RateLimitError(TransientProviderError):
    """Raised when a provider answers 429.

    ``retry_after`` holds the server-suggested wait in seconds, when sent.
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        self._retry_after = retry_after
        super().__init__(message=message, provider_name=provider_name, status_code=429)

    @property
    def retry_after(self) -> float | None:
        return self._retry_after


class ProviderError(SetlistImportError):
    """Raised on a non-retryable upstream response (4xx other than 404/429)."""

    def __init__(
        self,
        message: str = "Provider request failed",
        provider_name: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self._status_code = status_code
        super().__init__(message=message, provider_name=provider_name)

    @property
    def status_code(self) -> int | None:
        return self._status_code


class CircuitOpenError(SetlistImportError):
    """Raised without attempting the call when a dependency's breaker is OPEN.

    Callers treat this as "retry later", not as an item failure.
    """

    def __init__(
        self,
        message: str = "Circuit breaker is open",
        provider_name: str | None = None,
        retry_after_ms: float = 0.0,
    ) -> None:
        self._retry_after_ms = retry_after_ms
        super().__init__(message=message, provider_name=provider_name)

    @property
    def retry_after_ms(self) -> float:
        return self._retry_after_ms


# ---------------------------------------------------------------------------
# Pipeline errors
# ---------------------------------------------------------------------------


class WrapUpError(SetlistImportError):
    """Raised by the wrap-up phase.  Always downgraded to a warning."""

    def __init__(
        self,
        message: str = "Wrap-up failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class PipelineError(SetlistImportError):
    """Raised when an import phase fails in a way that fails the whole job."""

    def __init__(
        self,
        message: str = "Import pipeline failed",
        provider_name: str | None = None,
        phase: str | None = None,
    ) -> None:
        self._phase = phase
        super().__init__(message=message, provider_name=provider_name)

    @property
    def phase(self) -> str | None:
        return self._phase


class ConfigurationError(SetlistImportError):
    """Raised when required configuration is missing or invalid."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
