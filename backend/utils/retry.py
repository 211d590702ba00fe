import asyncio
import random
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from utils.logger import get_logger

logger = get_logger("retry")

T = TypeVar("T")


class UpstreamError(Exception):
    """Base error for upstream (RPC / identity service) failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429

    @property
    def retryable(self) -> bool:
        return True


class RetryConfig:
    """Configuration for retry behavior"""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        max_delay: Optional[float] = 60.0,
        exponential_base: float = 2.0,
        rate_limit_floor: float = 10.0,
        jitter: bool = False,
    ):
        self.max_attempts = max(1, int(max_attempts))
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.rate_limit_floor = rate_limit_floor
        self.jitter = jitter

    @classmethod
    def from_settings(cls, settings) -> "RetryConfig":
        return cls(
            max_attempts=settings.MAX_RETRY_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY,
            rate_limit_floor=settings.RETRY_RATE_LIMIT_FLOOR,
        )


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay with exponential backoff and optional jitter"""
    delay = config.base_delay * (config.exponential_base**attempt)
    if config.max_delay is not None:
        delay = min(delay, config.max_delay)
    if config.jitter:
        delay = delay * (0.5 + random.random())
    return delay


def is_rate_limit_error(error: Exception) -> bool:
    """True when the failure carries an upstream rate-limit signal (HTTP 429)."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code == 429
    if isinstance(error, UpstreamError):
        return error.rate_limited
    return getattr(error, "status_code", None) == 429


def is_retryable_error(error: Exception) -> bool:
    """Every failure is retried unless it marks itself deterministic."""
    return bool(getattr(error, "retryable", True))


def _retry_after_seconds(error: Exception) -> Optional[float]:
    if not isinstance(error, httpx.HTTPStatusError):
        return None
    retry_after = error.response.headers.get("Retry-After")
    if not retry_after:
        return None
    try:
        return float(retry_after)
    except ValueError:
        return None


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    *,
    description: str = "",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` up to ``config.max_attempts`` times.

    Attempt ``i`` (0-based) that fails with a retryable error is followed by a
    ``base_delay * 2**i`` sleep. Rate-limited failures wait at least
    ``rate_limit_floor`` seconds. The last error is re-raised once attempts
    are exhausted; non-retryable errors are raised immediately.
    """
    if config is None:
        config = RetryConfig()
    name = description or getattr(operation, "__name__", "operation")
    last_error: Optional[Exception] = None

    for attempt in range(config.max_attempts):
        try:
            return await operation()
        except Exception as e:
            last_error = e

            if not is_retryable_error(e):
                logger.error(
                    "Non-retryable error",
                    operation=name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise

            if attempt >= config.max_attempts - 1:
                logger.error(
                    "All retry attempts exhausted",
                    operation=name,
                    attempts=config.max_attempts,
                    error=str(e),
                )
                break

            delay = calculate_delay(attempt, config)
            if is_rate_limit_error(e):
                delay = max(delay, config.rate_limit_floor)
                retry_after = _retry_after_seconds(e)
                if retry_after is not None:
                    delay = max(delay, retry_after)
                logger.warning(
                    "Rate limit hit, backing off",
                    operation=name,
                    attempt=attempt + 1,
                    delay=delay,
                )
            else:
                logger.warning(
                    "Retrying after error",
                    operation=name,
                    attempt=attempt + 1,
                    max_attempts=config.max_attempts,
                    delay=delay,
                    error=str(e),
                )
            await sleep(delay)

    raise last_error
