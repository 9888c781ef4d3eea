"""
Step retry helper for the clone saga.

Each saga step is an async callable with no arguments. Every attempt calls the
same callable, so whatever input the caller captured before the first attempt
is the input of every retry.

Backoff: min(base * 2^attempt, max_delay) -> 1s, 2s, 4s, 8s with the defaults.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from fulfillment.core.config import settings
from fulfillment.core.exceptions import FulfillmentError, SagaStepExhaustedError

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for per-step retry behavior."""
    max_attempts: int = 5
    base_delay: float = 1.0           # Base delay in seconds
    max_delay: float = 10.0           # Maximum delay cap
    exponential_base: float = 2.0

    @classmethod
    def from_settings(cls) -> "RetryConfig":
        return cls(
            max_attempts=settings.SAGA_MAX_ATTEMPTS,
            base_delay=settings.SAGA_BASE_DELAY_SECONDS,
            max_delay=settings.SAGA_MAX_DELAY_SECONDS,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after the given zero-based failed attempt."""
        return min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)


def is_retryable(error: BaseException) -> bool:
    """Remote failures retry; local validation errors surface immediately."""
    if isinstance(error, FulfillmentError):
        return error.retryable
    return True


async def retry_step(
    step: str,
    operation: Callable[[], Awaitable[Any]],
    config: Optional[RetryConfig] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """
    Run one saga step with retries.

    Raises SagaStepExhaustedError once every attempt failed. Non-retryable
    errors propagate unchanged on the first failure.
    """
    cfg = config or RetryConfig.from_settings()
    last_error: Optional[BaseException] = None

    for attempt in range(cfg.max_attempts):
        try:
            result = await operation()
            if attempt > 0:
                logger.info(f"[SAGA] {step}: succeeded on attempt {attempt + 1}")
            return result
        except Exception as e:
            if not is_retryable(e):
                raise
            last_error = e
            if attempt + 1 >= cfg.max_attempts:
                break
            delay = cfg.delay_for(attempt)
            logger.warning(
                f"[SAGA] {step}: attempt {attempt + 1}/{cfg.max_attempts} failed ({e}), "
                f"retrying in {delay:.1f}s"
            )
            await sleep(delay)

    logger.error(f"[SAGA] {step}: exhausted {cfg.max_attempts} attempts, last error: {last_error}")
    raise SagaStepExhaustedError(
        f"Step '{step}' failed after {cfg.max_attempts} attempts: {last_error}",
        step=step,
        attempts=cfg.max_attempts,
        last_error=last_error,
    )
