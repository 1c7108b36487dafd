"""
Exponential backoff retry policy.

Independent of the circuit breaker: the orchestrator uses it as a
last-resort recovery path straight against a provider, bypassing a
breaker that may already be OPEN.

Usage:
    policy = RetryPolicy(RetryConfig(base_delay=2.0, max_retries=2))
    result = await policy.execute(call_vision_api, context="vision-api-retry")
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryConfig:
    """Backoff parameters (seconds)."""
    base_delay: float = 1.0
    max_delay: float = 30.0
    max_retries: int = 3
    factor: float = 2.0


class RetryPolicy:
    """
    Bounded exponential backoff.

    Runs the operation up to max_retries + 1 times. The delay before retry
    n (n >= 1) is min(base_delay * factor ** (n - 1), max_delay).
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or RetryConfig()
        self._sleep = sleep

    @classmethod
    def from_settings(cls, retry_settings) -> "RetryPolicy":
        return cls(
            RetryConfig(
                base_delay=retry_settings.base_delay_seconds,
                max_delay=retry_settings.max_delay_seconds,
                max_retries=retry_settings.max_retries,
                factor=retry_settings.factor,
            )
        )

    def delay_for(self, retry_number: int) -> float:
        """Delay before the given retry (1-based)."""
        return min(
            self.config.base_delay * (self.config.factor ** (retry_number - 1)),
            self.config.max_delay,
        )

    async def execute(self, operation: Callable[[], Awaitable[Any]], context: str = "operation") -> Any:
        """
        Execute operation with retries.

        Args:
            operation: Zero-argument async callable
            context: Label used in logs and attached to the final error

        Returns:
            First successful result

        Raises:
            Exception: The last observed error, tagged with retry_attempts and retry_context
        """
        total_attempts = self.config.max_retries + 1
        last_error: Optional[Exception] = None

        for attempt in range(1, total_attempts + 1):
            try:
                logger.info(f"[RetryPolicy:{context}] Attempt {attempt}/{total_attempts}")
                result = await operation()
                if attempt > 1:
                    logger.info(f"[RetryPolicy:{context}] Succeeded after {attempt - 1} retries")
                return result

            except Exception as e:
                last_error = e
                logger.warning(f"[RetryPolicy:{context}] Failed on attempt {attempt}: {e}")

                if attempt < total_attempts:
                    delay = self.delay_for(attempt)
                    logger.info(f"[RetryPolicy:{context}] Waiting {delay:g}s before retry {attempt}")
                    await self._sleep(delay)

        logger.error(f"[RetryPolicy:{context}] Failed after {total_attempts} attempts")
        last_error.retry_attempts = total_attempts
        last_error.retry_context = context
        raise last_error
