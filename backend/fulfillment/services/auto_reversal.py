"""
Auto-Reversal Sweeper

Returns claims to the pool when a vendor claimed a line but never produced
a label: status=claimed, label_downloaded=false, claimed_at older than
AUTO_REVERSAL_MAX_AGE_HOURS. One UPDATE statement, no remote calls (no label
exists, so there is nothing to cancel). last_claimed_* history is kept.

Overlapping invocations (scheduler loop + manual trigger) are skipped, not
queued, via the in-process is_running flag.
"""
import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Optional

from fulfillment.core.config import settings
from fulfillment.core.database import get_db_session
from fulfillment.core.utils import utcnow
from fulfillment.services.order_store import OrderStore

logger = logging.getLogger(__name__)


class AutoReversalSweeper:

    def __init__(
        self,
        session_factory: Callable = get_db_session,
        max_age_hours: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.max_age_hours = max_age_hours or settings.AUTO_REVERSAL_MAX_AGE_HOURS
        self.clock = clock

        self.is_running = False
        self.last_run: Optional[datetime] = None
        self.total_runs = 0
        self.total_reversed = 0
        self.total_errors = 0

    async def run(self) -> dict:
        if self.is_running:
            logger.info("Auto-reversal already in progress, skipping")
            return {"success": False, "skipped": True, "message": "Auto-reversal already in progress"}

        self.is_running = True
        started = time.monotonic()
        try:
            cutoff = self.clock() - timedelta(hours=self.max_age_hours)
            async with self.session_factory() as db:
                store = OrderStore(db)
                reversed_count = await store.sweep_stale_claims(cutoff)
                await store.commit()

            self.total_reversed += reversed_count
            if reversed_count:
                logger.info(f"Auto-reversed {reversed_count} claim(s) older than {self.max_age_hours}h")
            else:
                logger.debug("No expired claims to auto-reverse")

            return {
                "success": True,
                "skipped": False,
                "auto_reversed": reversed_count,
                "cutoff": cutoff.isoformat(),
                "execution_time_ms": int((time.monotonic() - started) * 1000),
            }
        except Exception as e:
            self.total_errors += 1
            logger.error(f"Auto-reversal failed: {e}", exc_info=True)
            raise
        finally:
            self.is_running = False
            self.last_run = self.clock()
            self.total_runs += 1

    def get_stats(self) -> dict:
        return {
            "is_running": self.is_running,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "total_runs": self.total_runs,
            "total_reversed": self.total_reversed,
            "total_errors": self.total_errors,
            "max_age_hours": self.max_age_hours,
        }
