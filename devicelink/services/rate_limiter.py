"""Fixed-window rate limiting keyed by (endpoint, client IP).

Backed by the ``limits`` fixed-window strategy over in-memory storage: the
service runs as a single deployment, so a module-level limiter behaves like
the shared counter.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Optional

from limits import RateLimitItem, RateLimitItemPerSecond
from limits.storage import MemoryStorage, Storage
from limits.strategies import FixedWindowRateLimiter

from devicelink.config import settings
from devicelink.services.errors import RateLimited

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0


class RateLimiter:
    """Counts requests per (endpoint, client IP) inside fixed windows."""

    def __init__(self, storage: Optional[Storage] = None):
        self._storage = storage or MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self._storage)
        self._limits: dict[str, RateLimitItem] = {}

    def configure(self, endpoint: str, limit: int, window_seconds: int) -> None:
        self._limits[endpoint] = RateLimitItemPerSecond(limit, window_seconds)

    def check(self, endpoint: str, client_ip: str) -> RateLimitResult:
        """Count one request and report whether it is within the limit."""
        item = self._limits[endpoint]
        key = client_ip or "unknown"

        allowed = self._strategy.hit(item, endpoint, key)
        stats = self._strategy.get_window_stats(item, endpoint, key)
        if allowed:
            return RateLimitResult(True, item.amount, stats.remaining)

        retry_after = max(1, math.ceil(stats.reset_time - time.time()))
        return RateLimitResult(False, item.amount, 0, retry_after)

    def hit(self, endpoint: str, client_ip: str) -> None:
        """Count one request, raising RateLimited when over the limit."""
        result = self.check(endpoint, client_ip)
        if not result.allowed:
            logger.warning("Rate limit exceeded: endpoint=%s ip=%s", endpoint, client_ip)
            raise RateLimited(result.retry_after, f"Too many requests. Retry in {result.retry_after}s")

    def reset(self) -> None:
        self._storage.reset()


REGISTER = "devices:register"
EXCHANGE = "devices:exchange"

# Singleton
rate_limiter = RateLimiter()
rate_limiter.configure(REGISTER, settings.register_rate_limit, settings.register_rate_window_seconds)
rate_limiter.configure(EXCHANGE, settings.exchange_rate_limit, settings.exchange_rate_window_seconds)
