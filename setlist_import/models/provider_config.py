"""Per-provider batching, rate-limit, retry and circuit-breaker configuration.

Loaded from the ``providers`` section of ``config/config.yaml``; the
defaults below match the shipped file so the optimizer still works when
the YAML is absent.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from setlist_import.utils.retry import RetryPolicy


class RateLimitConfig(BaseModel):
    """At most ``requests`` calls per rolling ``window_ms`` window."""

    model_config = ConfigDict(frozen=True)

    requests: int = Field(default=100, ge=1)
    window_ms: int = Field(default=60_000, ge=1)


class RetryPolicyConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    initial_delay_ms: float = Field(default=1000.0, ge=0.0)

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            backoff_multiplier=self.backoff_multiplier,
            initial_delay_ms=self.initial_delay_ms,
        )


class CircuitBreakerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    failure_threshold: int = Field(default=5, ge=1)
    reset_timeout_ms: int = Field(default=30_000, ge=0)
    half_open_max_probes: int = Field(default=1, ge=1)


class BatchConfig(BaseModel):
    """Everything the Batch API Optimizer needs to know about one provider."""

    model_config = ConfigDict(frozen=True)

    max_batch_size: int = Field(default=10, ge=1)
    max_wait_ms: int = Field(default=100, ge=0)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    retry_policy: RetryPolicyConfig = Field(default_factory=RetryPolicyConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)


DEFAULT_PROVIDER_CONFIGS: dict[str, BatchConfig] = {
    "spotify": BatchConfig(
        max_batch_size=50,
        max_wait_ms=100,
        rate_limit=RateLimitConfig(requests=180, window_ms=60_000),
        retry_policy=RetryPolicyConfig(max_retries=3, backoff_multiplier=2, initial_delay_ms=1000),
        circuit_breaker=CircuitBreakerConfig(failure_threshold=5, reset_timeout_ms=30_000),
    ),
    "ticketmaster": BatchConfig(
        max_batch_size=20,
        max_wait_ms=200,
        rate_limit=RateLimitConfig(requests=5000, window_ms=86_400_000),
        retry_policy=RetryPolicyConfig(max_retries=2, backoff_multiplier=3, initial_delay_ms=2000),
        circuit_breaker=CircuitBreakerConfig(failure_threshold=3, reset_timeout_ms=60_000),
    ),
    "setlistfm": BatchConfig(
        max_batch_size=1,
        max_wait_ms=50,
        rate_limit=RateLimitConfig(requests=2, window_ms=1000),
        retry_policy=RetryPolicyConfig(max_retries=2, backoff_multiplier=2, initial_delay_ms=500),
        circuit_breaker=CircuitBreakerConfig(failure_threshold=3, reset_timeout_ms=30_000),
    ),
}
