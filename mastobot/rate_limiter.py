"""
Rate Limiter for outbound model calls.

This module implements a process-wide minimum-interval gate: every model
call, whether a reply or a free post, waits here until at least
``min_interval`` seconds have passed since the previous call.

Features:
    - One shared timestamp, guarded by an asyncio.Lock
    - Blocks only the calling task, never the event loop
    - The lock is held while sleeping, so calls are fully serialized
    - Waiters are admitted in lock-acquisition order (no fairness queue)

Usage:
    rate_limiter = RateLimiter(min_interval=3.0)

    await rate_limiter.wait_for_slot()
    result = await ai_client.call_model(...)
"""

import asyncio
import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Minimum-spacing throttle shared by every task that calls the model.

    Pass one instance by reference to each caller; there is no global state.
    """

    def __init__(self, min_interval: float = 3.0):
        """
        Initialize the rate limiter.

        Args:
            min_interval: Default minimum seconds between two calls.
        """
        self.min_interval = min_interval
        self._last_call_at: Optional[float] = None
        self._lock = asyncio.Lock()
        self._total_waits = 0

        logger.info(f"Rate limiter initialized: min interval {min_interval:.2f}s")

    async def wait_for_slot(self, min_interval: Optional[float] = None) -> float:
        """
        Wait until the next call is allowed, then claim the slot.

        The shared timestamp is updated even when no wait was needed.

        Args:
            min_interval: Override for the default interval (seconds).

        Returns:
            Seconds spent sleeping (0.0 if the slot was free).
        """
        interval = self.min_interval if min_interval is None else min_interval

        async with self._lock:
            waited = 0.0
            if self._last_call_at is not None:
                elapsed = time.monotonic() - self._last_call_at
                if elapsed < interval:
                    waited = interval - elapsed
                    self._total_waits += 1
                    logger.debug(f"Rate limited: waiting {waited:.2f}s before model call")
                    await asyncio.sleep(waited)

            self._last_call_at = time.monotonic()
            return waited

    def get_wait_time(self) -> float:
        """
        Seconds until the next slot opens, ignoring queued waiters.

        Returns:
            Seconds to wait (0 if a call could start now).
        """
        if self._last_call_at is None:
            return 0.0
        remaining = self.min_interval - (time.monotonic() - self._last_call_at)
        return max(0.0, remaining)

    async def get_status(self) -> dict:
        """
        Get current limiter status.

        Returns:
            Dictionary with min_interval, wait_time_seconds, total_waits
            and whether a caller currently holds the slot.
        """
        return {
            "min_interval": self.min_interval,
            "wait_time_seconds": self.get_wait_time(),
            "total_waits": self._total_waits,
            "busy": self._lock.locked(),
        }
