"""
Batch Runner

Runs a coroutine over items in fixed-size batches with bounded concurrency
and a pause between batches, keeping bulk jobs under Stripe's rate limit.
Gateway calls themselves retry with backoff in ``StripeAPIWrapper``.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from dues.core.conf import settings

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')


async def run_in_batches(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    batch_size: Optional[int] = None,
    concurrency: Optional[int] = None,
    delay_seconds: Optional[float] = None,
    label: str = 'BATCH',
) -> List[R]:
    """
    Apply ``worker`` to every item; results keep the input order.

    The worker is expected to record its own failures. An exception escaping
    it aborts the run.
    """
    batch_size = batch_size or settings.BILLING_BATCH_SIZE
    concurrency = concurrency or settings.BILLING_BATCH_CONCURRENCY
    delay_seconds = settings.BILLING_BATCH_DELAY_SECONDS if delay_seconds is None else delay_seconds

    semaphore = asyncio.Semaphore(concurrency)

    async def bounded(item: T) -> R:
        async with semaphore:
            return await worker(item)

    results: List[R] = []
    total_batches = (len(items) + batch_size - 1) // batch_size
    for index in range(0, len(items), batch_size):
        batch = items[index:index + batch_size]
        batch_number = index // batch_size + 1
        logger.info(f"[{label}] Batch {batch_number}/{total_batches} ({len(batch)} items)")

        results.extend(await asyncio.gather(*(bounded(item) for item in batch)))

        if batch_number < total_batches and delay_seconds > 0:
            await asyncio.sleep(delay_seconds)
    return results
