"""Service layer for the migration application."""

from .rate_limiter import RateLimiter, get_rate_limiter, reset_rate_limiter
from .retry import backoff_delay, retry_async
from .transformer import EntityTransformer, TransformContext

__all__ = [
    "RateLimiter",
    "get_rate_limiter",
    "reset_rate_limiter",
    "backoff_delay",
    "retry_async",
    "EntityTransformer",
    "TransformContext",
]
