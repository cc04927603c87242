"""Rate limiter per host with a cooldown after 429 responses."""
import asyncio
import logging
import time
from collections import defaultdict
from typing import Dict
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


class RateLimiter:
    """Spaces requests per host and holds a host back after it rate-limits us."""

    def __init__(self, rate_per_second: float):
        self.rate_per_second = rate_per_second
        self.min_interval = 1.0 / rate_per_second if rate_per_second > 0 else 0
        self._last_request: Dict[str, float] = defaultdict(lambda: 0.0)
        self._cooldown_until: Dict[str, float] = defaultdict(lambda: 0.0)
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _get_host(self, url: str) -> str:
        parsed = urlparse(url)
        return f"{parsed.scheme}://{parsed.netloc}"

    async def acquire(self, url: str) -> None:
        """Wait if necessary to respect the interval and any active cooldown."""
        host = self._get_host(url)
        async with self._locks[host]:
            now = time.monotonic()
            wait_time = max(
                self._last_request[host] + self.min_interval - now,
                self._cooldown_until[host] - now,
                0.0,
            )
            if wait_time > 0:
                await asyncio.sleep(wait_time)
            self._last_request[host] = time.monotonic()

    def penalize(self, url: str, seconds: float) -> None:
        """Delay the next request to this host by at least `seconds`."""
        if seconds <= 0:
            return
        host = self._get_host(url)
        until = time.monotonic() + seconds
        if until > self._cooldown_until[host]:
            self._cooldown_until[host] = until
            logger.info(f"Cooling down {host} for {seconds:.1f}s")
