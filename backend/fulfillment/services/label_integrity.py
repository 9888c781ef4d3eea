"""
Label integrity repair

A line flagged label_downloaded must have a Label row with a usable URL for
its current order_id. Older writers left rows with empty, "null" or
"undefined" URLs; this resets the flag on such lines so the next request
regenerates the label. Idempotent.
"""
import logging
from typing import Callable

from fulfillment.core.database import get_db_session
from fulfillment.services.order_store import OrderStore

logger = logging.getLogger(__name__)


async def repair_label_flags(session_factory: Callable = get_db_session) -> dict:
    stats = {"lines_reset": 0, "errors": 0}

    try:
        async with session_factory() as db:
            store = OrderStore(db)
            stats["lines_reset"] = await store.repair_label_flags()
            await store.commit()
    except Exception as e:
        logger.error(f"Label integrity repair failed: {e}", exc_info=True)
        stats["errors"] += 1
        return stats

    if stats["lines_reset"]:
        logger.warning(f"Reset label_downloaded on {stats['lines_reset']} line(s) without a usable label URL")
    else:
        logger.debug("Label integrity check: no inconsistent lines")
    return stats
