"""
Circuit Breaker pattern for provider calls.

Prevents cascading failures by "opening" a circuit after repeated failures.
When a circuit is open, calls fail fast with a clear error instead of
repeatedly attempting an upstream call that's likely to fail.

This is especially important for LLM vision calls, which are slow, large
and expensive.

Usage:
    registry = BreakerRegistry.from_settings(settings)
    breaker = registry.get("vision")
    result = await breaker.execute(lambda: adapter.invoke(prompt, pages=pages))
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from cim_extract.core.exceptions import CircuitOpenError, OperationTimeoutError

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]


class CircuitState(Enum):
    """States of a circuit breaker"""
    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Failing, reject calls immediately
    HALF_OPEN = "HALF_OPEN"  # Testing if provider recovered


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration for one circuit breaker"""
    failure_threshold: int = 3  # Failures before opening circuit
    timeout: float = 30.0  # Seconds allowed per operation
    retry_timeout: float = 60.0  # Seconds after last failure before trying half-open


@dataclass(frozen=True)
class CircuitBreakerState:
    """Point-in-time snapshot of a breaker."""
    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_time: float
    last_error: Optional[str]
    failure_threshold: int
    timeout: float
    retry_timeout: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failureCount": self.failure_count,
            "successCount": self.success_count,
            "lastFailureTime": self.last_failure_time,
            "lastError": self.last_error,
            "failureThreshold": self.failure_threshold,
            "timeout": self.timeout,
            "retryTimeout": self.retry_timeout,
        }


class CircuitBreaker:
    """
    Circuit breaker guarding a single named provider.

    State lives for the whole process and is shared by every request that
    hits the same provider; counter updates happen under an asyncio lock.
    The operation itself runs outside the lock.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = 0.0
        self.last_error: Optional[str] = None

        self._trial_in_flight = False
        self._lock = asyncio.Lock()

        logger.info(
            f"[CircuitBreaker:{name}] initialized "
            f"(threshold={self.config.failure_threshold}, timeout={self.config.timeout}s, "
            f"retry_timeout={self.config.retry_timeout}s)"
        )

    async def execute(self, operation: Operation, fallback: Optional[Operation] = None) -> Any:
        """
        Run operation with circuit breaker protection.

        Args:
            operation: Zero-argument async callable hitting the provider
            fallback: Optional zero-argument async alternative used while OPEN

        Returns:
            Operation result, or fallback result when the circuit is open

        Raises:
            CircuitOpenError: If circuit is open and no fallback was supplied
            OperationTimeoutError: If operation exceeded the configured timeout
            Exception: Original exception from operation (or from fallback)
        """
        async with self._lock:
            admitted = self._admit()

        if not admitted:
            if fallback is not None:
                logger.info(f"[CircuitBreaker:{self.name}] OPEN, using fallback")
                return await fallback()
            raise CircuitOpenError(self.name, self.last_error)

        try:
            result = await self._execute_with_timeout(operation)
        except asyncio.CancelledError:
            # Caller abandoned the call; free the half-open trial slot
            self._trial_in_flight = False
            raise
        except Exception as e:
            async with self._lock:
                opened = self._record_failure(e)
            if opened and fallback is not None:
                logger.info(f"[CircuitBreaker:{self.name}] trying fallback after failure")
                return await fallback()
            raise

        async with self._lock:
            self._record_success()
        return result

    async def _execute_with_timeout(self, operation: Operation) -> Any:
        """Race operation against the breaker timeout; expiry cancels the operation."""
        try:
            return await asyncio.wait_for(operation(), timeout=self.config.timeout)
        except asyncio.TimeoutError as e:
            raise OperationTimeoutError(self.name, self.config.timeout) from e

    def _admit(self) -> bool:
        """Decide whether a call may proceed (caller holds the lock)."""
        if self.state == CircuitState.CLOSED:
            return True

        if self.state == CircuitState.OPEN:
            if self._retry_timeout_elapsed():
                self._transition_to_half_open()
                self._trial_in_flight = True
                return True
            return False

        # HALF_OPEN: only a single trial at a time
        if self._trial_in_flight:
            return False
        self._trial_in_flight = True
        return True

    def _retry_timeout_elapsed(self) -> bool:
        return self._clock() - self.last_failure_time > self.config.retry_timeout

    def _record_success(self):
        """Record successful call"""
        self.failure_count = 0
        self.success_count += 1

        if self.state == CircuitState.HALF_OPEN:
            self._trial_in_flight = False
            self._transition_to_closed()

    def _record_failure(self, error: Exception) -> bool:
        """Record failed call. Returns True when this failure opened the circuit."""
        self.failure_count += 1
        self.last_failure_time = self._clock()
        self.last_error = str(error)

        logger.warning(
            f"[CircuitBreaker:{self.name}] failure "
            f"{self.failure_count}/{self.config.failure_threshold}: {error}"
        )

        if self.state == CircuitState.HALF_OPEN:
            # Any failure in half-open state re-opens circuit
            self._trial_in_flight = False
            self._transition_to_open()
            return True

        if self.state == CircuitState.CLOSED and self.failure_count >= self.config.failure_threshold:
            self._transition_to_open()
            return True

        return False

    def _transition_to_open(self):
        self.state = CircuitState.OPEN
        logger.error(
            f"[CircuitBreaker:{self.name}] Opening circuit "
            f"after {self.failure_count} failures. "
            f"Last error: {self.last_error or 'unknown'}"
        )

    def _transition_to_half_open(self):
        self.state = CircuitState.HALF_OPEN
        logger.info(f"[CircuitBreaker:{self.name}] Entering half-open state (testing recovery)")

    def _transition_to_closed(self):
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        logger.info(f"[CircuitBreaker:{self.name}] Closing circuit (provider recovered)")

    def snapshot(self) -> CircuitBreakerState:
        """Get circuit breaker status."""
        return CircuitBreakerState(
            name=self.name,
            state=self.state,
            failure_count=self.failure_count,
            success_count=self.success_count,
            last_failure_time=self.last_failure_time,
            last_error=self.last_error,
            failure_threshold=self.config.failure_threshold,
            timeout=self.config.timeout,
            retry_timeout=self.config.retry_timeout,
        )

    def reset(self):
        """Reset to CLOSED (manual recovery or tests)."""
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = 0.0
        self.last_error = None
        self._trial_in_flight = False
        logger.info(f"[CircuitBreaker:{self.name}] Manually reset circuit")


class BreakerRegistry:
    """
    One breaker per named provider family, shared across requests.

    Constructed once at process start and handed to the orchestrator;
    breakers are never destroyed.
    """

    def __init__(self, breakers: Optional[Mapping[str, CircuitBreaker]] = None):
        self._breakers: Dict[str, CircuitBreaker] = dict(breakers or {})

    @classmethod
    def from_configs(
        cls,
        configs: Mapping[str, CircuitBreakerConfig],
        clock: Callable[[], float] = time.monotonic,
    ) -> "BreakerRegistry":
        return cls({name: CircuitBreaker(name, config, clock=clock) for name, config in configs.items()})

    @classmethod
    def from_settings(cls, settings) -> "BreakerRegistry":
        """Build from Settings.breaker_settings()."""
        return cls.from_configs(
            {
                name: CircuitBreakerConfig(
                    failure_threshold=cfg.failure_threshold,
                    timeout=cfg.timeout_seconds,
                    retry_timeout=cfg.retry_timeout_seconds,
                )
                for name, cfg in settings.breaker_settings().items()
            }
        )

    def get(self, name: str) -> CircuitBreaker:
        try:
            return self._breakers[name]
        except KeyError:
            raise KeyError(f"Circuit breaker '{name}' not found") from None

    def names(self) -> list[str]:
        return list(self._breakers)

    def status(self) -> Dict[str, Dict[str, Any]]:
        """Health view of every breaker."""
        return {name: breaker.snapshot().to_dict() for name, breaker in self._breakers.items()}

    def reset(self, name: Optional[str] = None):
        if name:
            self.get(name).reset()
        else:
            for breaker in self._breakers.values():
                breaker.reset()
