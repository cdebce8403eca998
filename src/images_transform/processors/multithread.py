"""Multithreaded fan-out - uses a thread pool for parallelism."""

import asyncio
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List

from ..core.models import BatchItem, ItemOutcome
from ..core.protocols import FanOutStrategy, ItemRunner


def process_batch(items: List[BatchItem], runner: ItemRunner, concurrency: int = 8) -> List[ItemOutcome]:
    """
    Run ``runner`` over ``items`` on a thread pool and wait for every item.

    Args:
        items: Batch items to process
        runner: Callable producing the outcome of one item
        concurrency: Upper bound on worker threads

    Returns:
        One outcome per item, in completion order
    """
    if not items:
        return []

    outcomes: List[ItemOutcome] = []
    max_workers = max(1, min(concurrency, len(items)))

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="batch") as executor:
        future_to_item = {executor.submit(runner, item): item for item in items}

        for future in as_completed(future_to_item):
            try:
                outcomes.append(future.result())
            except Exception as e:
                item = future_to_item[future]
                outcomes.append(ItemOutcome(item_id=item.id, success=False, error=str(e)))

    return outcomes


class ThreadPoolFanOut(FanOutStrategy):
    """Runs the blocking pool join off the event loop."""

    name = "multithread"

    def __init__(self, concurrency: int = 8):
        self._concurrency = max(1, concurrency)

    async def run_all(self, items: List[BatchItem], runner: ItemRunner) -> List[ItemOutcome]:
        return await asyncio.to_thread(process_batch, items, runner, self._concurrency)
