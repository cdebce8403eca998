"""AsyncIO fan-out - one task per item, pipeline work pushed to worker threads."""

import asyncio
from typing import List

from ..core.logging_config import get_logger
from ..core.models import BatchItem, ItemOutcome
from ..core.protocols import FanOutStrategy, ItemRunner


class AsyncioFanOut(FanOutStrategy):
    """
    Dispatches every item as its own task and gathers them all.

    Image work is CPU bound, so each runner call goes through
    ``asyncio.to_thread``; the semaphore caps how many run at once.
    """

    name = "asyncio"

    def __init__(self, concurrency: int = 8):
        self._concurrency = max(1, concurrency)

    async def run_all(self, items: List[BatchItem], runner: ItemRunner) -> List[ItemOutcome]:
        logger = get_logger("asyncio-processor")
        semaphore = asyncio.Semaphore(self._concurrency)

        async def run_one(item: BatchItem) -> ItemOutcome:
            async with semaphore:
                logger.debug(f"[{item.id}] Dispatching {item.metadata.filename}")
                return await asyncio.to_thread(runner, item)

        results = await asyncio.gather(*(run_one(item) for item in items), return_exceptions=True)

        # Convert exceptions to failed outcomes
        outcomes: List[ItemOutcome] = []
        for item, result in zip(items, results):
            if isinstance(result, BaseException):
                logger.error(f"[{item.id}] Runner raised: {result}")
                outcomes.append(ItemOutcome(item_id=item.id, success=False, error=str(result)))
            else:
                outcomes.append(result)
        return outcomes
