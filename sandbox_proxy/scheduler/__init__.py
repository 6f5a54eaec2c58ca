from .scheduler import (
    OutboundTask,
    RateLimitState,
    RateLimitTable,
    RateLimitedScheduler,
)

__all__ = [
    "OutboundTask",
    "RateLimitState",
    "RateLimitTable",
    "RateLimitedScheduler",
]
