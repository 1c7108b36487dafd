"""Circuit breaking and retry for provider calls."""

from cim_extract.resilience.circuit_breaker import (
    BreakerRegistry,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerState,
    CircuitState,
)
from cim_extract.resilience.retry import RetryConfig, RetryPolicy

__all__ = [
    # Circuit breaker
    "BreakerRegistry",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerState",
    "CircuitState",
    # Retry
    "RetryConfig",
    "RetryPolicy",
]
