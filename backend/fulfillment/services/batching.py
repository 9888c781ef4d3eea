"""
Fixed-size concurrent batches with per-item error isolation.

Used by bulk label download and bulk mark-ready: items in one batch run
concurrently, batches run one after another, and one item's exception never
cancels its siblings.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Sequence, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def process_in_batches(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[Any]],
    batch_size: int,
    label: str = "batch",
) -> List[Tuple[T, Any]]:
    """
    Run worker over items, batch_size at a time.

    Returns (item, result) pairs in input order; result is the exception
    instance when the worker raised.
    """
    batch_size = max(1, batch_size)
    outcomes: List[Tuple[T, Any]] = []

    for i in range(0, len(items), batch_size):
        batch = items[i:i + batch_size]
        results = await asyncio.gather(*(worker(item) for item in batch), return_exceptions=True)
        outcomes.extend(zip(batch, results))

        failures = sum(1 for r in results if isinstance(r, Exception))
        logger.info(
            f"[{label}] Progress: {min(i + batch_size, len(items))}/{len(items)} "
            f"({failures} failed in this batch)"
        )

    return outcomes
