"""
Background jobs for the fulfillment core

- Auto-reversal sweep (stale claims back to the pool)
- Label integrity repair (downloaded flags without a usable label)

Both run on one loop every AUTO_REVERSAL_INTERVAL_MINUTES, started and
stopped from the application lifespan. Jobs are idempotent; a failing cycle
is logged and the loop keeps going.
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from fulfillment.core.config import settings
from fulfillment.core.utils import utcnow
from fulfillment.services.auto_reversal import AutoReversalSweeper
from fulfillment.services.label_integrity import repair_label_flags

logger = logging.getLogger(__name__)


class FulfillmentJobRunner:
    """
    Manages and runs fulfillment background jobs.
    """

    def __init__(
        self,
        sweeper: AutoReversalSweeper,
        repair: Callable[[], Awaitable[dict]] = repair_label_flags,
        interval_seconds: Optional[float] = None,
    ):
        self.sweeper = sweeper
        self.repair = repair
        self.interval_seconds = interval_seconds or settings.AUTO_REVERSAL_INTERVAL_MINUTES * 60
        self._running = False
        self._tasks: List[asyncio.Task] = []
        self.heartbeat: dict = {
            "last_run": None,
            "last_success": None,
            "records_processed": 0,
            "errors": 0,
        }

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start all background jobs."""
        if self._running:
            logger.warning("Fulfillment jobs already running")
            return

        self._running = True
        logger.info(f"Starting fulfillment background jobs (interval: {self.interval_seconds:.0f}s)")
        self._tasks = [asyncio.create_task(self._loop())]

    async def stop(self):
        """Stop all background jobs."""
        self._running = False

        for task in self._tasks:
            task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks = []

        logger.info("Fulfillment background jobs stopped")

    async def _loop(self):
        while self._running:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)

    async def run_once(self) -> dict:
        """One sweep + repair cycle; updates the heartbeat."""
        self.heartbeat["last_run"] = utcnow().isoformat()
        cycle = {"auto_reversed": 0, "labels_reset": 0}
        failed = False

        try:
            sweep = await self.sweeper.run()
            cycle["auto_reversed"] = sweep.get("auto_reversed", 0)
        except Exception as e:
            failed = True
            logger.error(f"Auto-reversal job error: {e}")

        repair = await self.repair()
        cycle["labels_reset"] = repair.get("lines_reset", 0)
        if repair.get("errors"):
            failed = True

        self.heartbeat["records_processed"] += cycle["auto_reversed"] + cycle["labels_reset"]
        if failed:
            self.heartbeat["errors"] += 1
        else:
            self.heartbeat["last_success"] = utcnow().isoformat()
        return cycle
