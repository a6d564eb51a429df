"""Fixed-window admission control keyed by caller identity (usually the client IP)."""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

UNKNOWN_IDENTITY = "unknown origin"


@dataclass
class RateLimitRecord:
    count: int
    window_start: float


class FixedWindowRateLimiter:
    """Counts submissions per identity inside a fixed time window.

    The first request from an identity opens a window. Requests are allowed
    while the count is below ``max_requests``; once the window has elapsed the
    record is reset regardless of its previous count. Stale records are
    dropped by ``sweep()``, which ``run_sweeper()`` calls once per window.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._records: Dict[str, RateLimitRecord] = {}
        self._lock = threading.Lock()

    def check(self, identity: Optional[str]) -> bool:
        """Record one request for ``identity``. Returns True if it is allowed."""
        identity = identity or UNKNOWN_IDENTITY
        now = self._clock()
        with self._lock:
            record = self._records.get(identity)

            if record is None or now - record.window_start > self.window_seconds:
                self._records[identity] = RateLimitRecord(count=1, window_start=now)
                return True

            if record.count < self.max_requests:
                record.count += 1
                return True

        logger.info("Rate limit exceeded for %s", identity)
        return False

    def status(self, identity: Optional[str]) -> Dict[str, float]:
        """Remaining allowance for ``identity`` without consuming a request."""
        identity = identity or UNKNOWN_IDENTITY
        now = self._clock()
        with self._lock:
            record = self._records.get(identity)
            if record is None or now - record.window_start > self.window_seconds:
                return {
                    "requests_in_window": 0,
                    "max_requests": self.max_requests,
                    "requests_remaining": self.max_requests,
                    "window_reset_in": 0.0,
                }
            return {
                "requests_in_window": record.count,
                "max_requests": self.max_requests,
                "requests_remaining": max(0, self.max_requests - record.count),
                "window_reset_in": max(
                    0.0, record.window_start + self.window_seconds - now
                ),
            }

    def sweep(self) -> int:
        """Drop records whose window has expired. Returns count of removed records."""
        now = self._clock()
        with self._lock:
            stale = [
                identity
                for identity, record in self._records.items()
                if now - record.window_start > self.window_seconds
            ]
            for identity in stale:
                del self._records[identity]
        if stale:
            logger.debug("Swept %d stale rate limit record(s)", len(stale))
        return len(stale)

    async def run_sweeper(self) -> None:
        """Sweep stale records once per window until cancelled."""
        while True:
            await asyncio.sleep(self.window_seconds)
            self.sweep()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
