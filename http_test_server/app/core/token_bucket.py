"""Thread-safe token bucket."""

import asyncio
import threading
import time
from typing import Callable

from http_test_server.app.exceptions import ConfigurationError

__all__ = ('TokenBucket',)


class TokenBucket:
    """
    Token bucket refilled in discrete ticks.

    Every ``fill_interval`` seconds ``quantum`` tokens are added up to
    ``capacity``. The bucket starts full, and a full bucket gains nothing
    from the passing of time: the refill schedule restarts whenever a token
    is taken from a full bucket, so the first refill always comes one whole
    interval after the bucket started draining. Tokens are only ever handed
    out under the bucket's lock, so two concurrent callers can never take
    the same token.
    """

    def __init__(
        self,
        fill_interval: float,
        capacity: int,
        quantum: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if fill_interval <= 0:
            raise ConfigurationError("token bucket fill interval must be > 0")
        if capacity <= 0:
            raise ConfigurationError("token bucket capacity must be > 0")
        if quantum <= 0:
            raise ConfigurationError("token bucket quantum must be > 0")

        self.fill_interval = fill_interval
        self.capacity = capacity
        self.quantum = quantum
        self._clock = clock
        self._lock = threading.Lock()
        self._start = clock()
        self._latest_tick = 0
        self._available = capacity

    def _current_tick(self, now: float) -> int:
        return int((now - self._start) // self.fill_interval)

    def _adjust(self, tick: int) -> None:
        # Must be called with the lock held.
        if tick <= self._latest_tick:
            return
        added = (tick - self._latest_tick) * self.quantum
        self._available = min(self.capacity, self._available + added)
        self._latest_tick = tick

    def available(self) -> int:
        """Number of tokens that could be taken right now."""
        with self._lock:
            self._adjust(self._current_tick(self._clock()))
            return self._available

    def take_available(self, count: int = 1) -> int:
        """Take up to ``count`` tokens without waiting.

        Returns:
            The number of tokens actually taken, possibly zero
        """
        if count <= 0:
            return 0
        with self._lock:
            now = self._clock()
            self._adjust(self._current_tick(now))
            if self._available == self.capacity:
                # Restart the schedule so the first refill is a full interval away.
                self._start = now
                self._latest_tick = 0
            taken = min(count, self._available)
            self._available -= taken
            return taken

    def try_take(self) -> bool:
        """Take a single token if one is available."""
        return self.take_available(1) == 1

    def time_to_next_tick(self) -> float:
        """Seconds until the next refill."""
        with self._lock:
            now = self._clock()
            next_tick = self._current_tick(now) + 1
            return max(0.0, self._start + next_tick * self.fill_interval - now)

    async def wait(self) -> float:
        """Suspend the calling task until a token has been taken.

        There is no upper bound on the wait: the caller is released only by
        the refill schedule. No lock is held while sleeping.

        Returns:
            Seconds spent waiting
        """
        started = self._clock()
        while not self.try_take():
            await asyncio.sleep(self.time_to_next_tick())
        return self._clock() - started
