"""
Retry with exponential backoff, shared by every external-call site
"""

import time
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

from ..errors import OcrTransientError, OcrQuotaError

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class RetryPolicy:
    """How many attempts to make and how long to wait between them"""
    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    backoff_factor: float = 2.0
    quota_backoff_multiplier: float = 4.0  # rate limits wait longer
    retryable: Tuple[Type[BaseException], ...] = (OcrTransientError, OcrQuotaError)
    backoff_fn: Optional[Callable[[int], float]] = None  # overrides base * factor**attempt

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")

    def delay_for(self, attempt: int, error: BaseException) -> float:
        """Delay after the failed attempt number `attempt` (0-based)"""
        if self.backoff_fn is not None:
            delay = self.backoff_fn(attempt)
        else:
            delay = self.base_delay * (self.backoff_factor ** attempt)

        if isinstance(error, OcrQuotaError):
            delay *= self.quota_backoff_multiplier
        return delay


def with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    operation_name: str = "operation",
    sleep: Callable[[float], None] = time.sleep
) -> T:
    """
    Run operation, retrying retryable failures with exponential backoff.

    Exceptions not listed in policy.retryable propagate immediately.

    Args:
        operation: Callable to execute
        policy: Attempt limit and backoff
        operation_name: Human-readable operation name for logging
        sleep: Sleep function (injectable for tests)

    Returns:
        Result from successful operation

    Raises:
        Exception: The last retryable exception once attempts are exhausted
    """
    last_exception = None

    for attempt in range(policy.max_attempts):
        try:
            result = operation()
            if attempt > 0:
                logger.info(f"{operation_name} succeeded on attempt {attempt + 1}")
            return result

        except policy.retryable as e:
            last_exception = e
            logger.warning(
                f"{operation_name} failed (attempt {attempt + 1}/{policy.max_attempts}): {e}"
            )

            if attempt < policy.max_attempts - 1:
                delay = policy.delay_for(attempt, e)
                logger.info(f"Retrying in {delay:.1f} seconds...")
                sleep(delay)

    logger.error(f"{operation_name} failed after {policy.max_attempts} attempts")
    raise last_exception
