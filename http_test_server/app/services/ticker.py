"""Periodic statistics logging.

Logs aggregate counters on an interval to give insight into activity
without saturating I/O with per-request output.
"""

import asyncio
from typing import Optional

from http_test_server.app.core.logging import get_logger
from http_test_server.app.services.statistics import StatisticsAggregator

logger = get_logger(__name__)


class StatisticsTicker:
    """Background task that logs message and request counts.

    Usage:
        ticker = StatisticsTicker(aggregator, interval=5.0)
        await ticker.start()
        ...
        await ticker.stop()
    """

    def __init__(self, statistics: StatisticsAggregator, interval: float = 5.0):
        """Initialize the ticker.

        Args:
            statistics: Aggregator to read counters from
            interval: Seconds between log lines (default: 5.0)
        """
        self._statistics = statistics
        self._interval = interval
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None

    def log_counts(self) -> None:
        logger.info(
            "Received %d messages across %d requests",
            self._statistics.message_count,
            self._statistics.request_count,
        )

    async def start(self) -> None:
        """Start the background logging task."""
        if self._task is not None:
            logger.debug("Statistics ticker already running")
            return

        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        logger.debug(f"Started statistics ticker (interval: {self._interval}s)")

    async def stop(self) -> None:
        """Stop the background logging task."""
        if self._task is None:
            return

        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Statistics ticker did not stop gracefully, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
            logger.debug("Stopped statistics ticker")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                self.log_counts()
