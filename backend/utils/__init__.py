from .logger import setup_logging, get_logger, api_logger, leaderboard_logger
from .retry import RetryConfig, UpstreamError, retry_async, is_rate_limit_error
from .rate_limiter import RateLimiter, RateLimitConfig, rate_limiter
from .validation import validate_eth_address, normalize_address, shorten_address

__all__ = [
    # Logger
    "setup_logging",
    "get_logger",
    "api_logger",
    "leaderboard_logger",

    # Retry
    "RetryConfig",
    "UpstreamError",
    "retry_async",
    "is_rate_limit_error",

    # Rate Limiter
    "RateLimiter",
    "RateLimitConfig",
    "rate_limiter",

    # Validation
    "validate_eth_address",
    "normalize_address",
    "shorten_address",
]
