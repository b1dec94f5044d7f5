"""
Cosmetic progress ticker

Advances a percentage on a fixed schedule while a run is pending. The value
has no relation to real backend progress; it only shows the UI is alive.
"""

import asyncio
import logging
from typing import Optional

from ..config import DEFAULT_PROGRESS, ProgressConfig

logger = logging.getLogger(__name__)


class ProgressTicker:
    """
    Cancellable timer that raises ``value`` by ``step`` every ``interval``
    seconds, never past ``ceiling``.

    Must be started from inside a running event loop.
    """

    def __init__(self, config: Optional[ProgressConfig] = None):
        self.config = config or DEFAULT_PROGRESS
        self.value = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Reset to 0 and begin ticking, replacing any previous timer"""
        self.stop()
        self.value = 0
        self._task = asyncio.get_running_loop().create_task(self._tick())

    def stop(self) -> None:
        """Cancel the timer; the current value is kept"""
        if self._task is not None:
            if not self._task.done():
                self._task.cancel()
            self._task = None

    async def _tick(self) -> None:
        while self.value < self.config.ceiling:
            await asyncio.sleep(self.config.interval)
            self.value = min(self.value + self.config.step, self.config.ceiling)
        logger.debug("Progress ticker reached ceiling %d", self.config.ceiling)
