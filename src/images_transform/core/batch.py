"""Apply one plan to many images concurrently and aggregate the outcomes."""

import asyncio
import threading
import time
import uuid
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .error_handling import BatchOperationContextManager
from .exceptions import ImagesTransformError, InternalError, UnsupportedOrCorruptInputError, batch_error_handler
from .image_utils import extract_metadata
from .models import (
    BatchItem,
    BatchOutcome,
    ImageMetadata,
    ItemOutcome,
    ItemState,
    ProcessedImage,
    ProcessingPlan,
)
from .observability import StructuredLogger
from .protocols import FanOutStrategy, LoggerProtocol, ProcessingService

ALLOWED_TRANSITIONS = {
    ItemState.PENDING: {ItemState.PROCESSING},
    ItemState.PROCESSING: {ItemState.COMPLETED, ItemState.FAILED},
    ItemState.COMPLETED: set(),
    ItemState.FAILED: set(),
}


def create_batch_items(sources: Iterable[Tuple[str, bytes]]) -> List[BatchItem]:
    """
    Build pending batch items from (filename, bytes) pairs.

    Bytes that cannot be identified still become pending items with
    "unknown" metadata; they fail when processed, not at ingestion.
    """
    items = []
    for filename, data in sources:
        try:
            metadata = extract_metadata(data, filename)
        except UnsupportedOrCorruptInputError:
            metadata = ImageMetadata(
                filename=filename, width=0, height=0, format="unknown", size_bytes=len(data)
            )
        items.append(BatchItem(source_bytes=data, metadata=metadata))
    return items


class BatchItemStore:
    """
    Lock protected collection of batch items.

    All state changes go through ``transition`` so they stay monotonic
    (pending -> processing -> completed | failed). The lock only guards
    the bookkeeping, never the image work.
    """

    def __init__(self, items: Iterable[BatchItem] = ()):
        self._items: Dict[uuid.UUID, BatchItem] = {}
        self._lock = threading.Lock()
        for item in items:
            self.add(item)

    def __len__(self) -> int:
        return len(self._items)

    def add(self, item: BatchItem) -> None:
        with self._lock:
            if item.id in self._items:
                raise InternalError(f"Duplicate batch item id {item.id}")
            self._items[item.id] = item

    def get(self, item_id: uuid.UUID) -> BatchItem:
        with self._lock:
            return self._items[item_id]

    def items(self) -> List[BatchItem]:
        with self._lock:
            return list(self._items.values())

    def counts(self) -> Dict[ItemState, int]:
        with self._lock:
            counts = {state: 0 for state in ItemState}
            for item in self._items.values():
                counts[item.state] += 1
            return counts

    def claim_pending(self) -> List[BatchItem]:
        """Atomically move every pending item to processing and return them."""
        with self._lock:
            claimed = [item for item in self._items.values() if item.state is ItemState.PENDING]
            for item in claimed:
                item.state = ItemState.PROCESSING
            return claimed

    def transition(
        self,
        item_id: uuid.UUID,
        new_state: ItemState,
        result: Optional[ProcessedImage] = None,
        error_reason: Optional[str] = None,
    ) -> BatchItem:
        with self._lock:
            item = self._items[item_id]
            if new_state not in ALLOWED_TRANSITIONS[item.state]:
                raise InternalError(
                    f"Illegal transition {item.state.value} -> {new_state.value} for item {item_id}"
                )
            item.state = new_state
            if result is not None:
                item.result = result
            if error_reason is not None:
                item.error_reason = error_reason
            return item


class BatchCoordinator:
    """
    Runs one ProcessingPlan over many batch items.

    Only pending items are eligible, so running the same items twice is a
    no-op the second time. Every eligible item is dispatched through the
    fan-out strategy; an item's failure is recorded on that item and never
    cancels its siblings. The call returns once every item has settled.
    """

    def __init__(
        self,
        service: ProcessingService,
        strategy: Optional[FanOutStrategy] = None,
        logger: Optional[LoggerProtocol] = None,
    ):
        if strategy is None:
            from ..processors import get_strategy

            strategy = get_strategy()
        self._service = service
        self._strategy = strategy
        self._logger = logger or StructuredLogger("batch")

    def _process_item(self, plan: ProcessingPlan, item: BatchItem) -> ItemOutcome:
        start_time = time.time()
        try:
            with batch_error_handler():
                result = self._service.process_bytes(
                    plan,
                    item.source_bytes,
                    item.metadata.filename,
                    correlation_id=f"batch_{item.id}",
                )
        except ImagesTransformError as e:
            return ItemOutcome(
                item_id=item.id,
                success=False,
                error=f"{e.kind}: {e}",
                processing_time=time.time() - start_time,
            )
        return ItemOutcome(
            item_id=item.id,
            success=True,
            result=result,
            processing_time=time.time() - start_time,
        )

    def _settle(self, store: BatchItemStore, outcome: ItemOutcome) -> None:
        if outcome.success:
            store.transition(outcome.item_id, ItemState.COMPLETED, result=outcome.result)
        else:
            store.transition(
                outcome.item_id, ItemState.FAILED, error_reason=outcome.error or "Unknown error"
            )

    async def run_batch_async(
        self,
        plan: ProcessingPlan,
        items: Union[BatchItemStore, Iterable[BatchItem]],
    ) -> BatchOutcome:
        """
        Process every pending item concurrently and wait for all of them.

        Args:
            plan: Validated plan applied to every item
            items: A BatchItemStore, or batch items to wrap in one

        Returns:
            BatchOutcome with completed and failed counts
        """
        store = items if isinstance(items, BatchItemStore) else BatchItemStore(items)
        start_time = time.time()

        eligible = store.claim_pending()
        skipped = len(store) - len(eligible)
        if not eligible:
            self._logger.info("No pending items to process", skipped=skipped)
            return BatchOutcome(skipped_count=skipped)

        def runner(item: BatchItem) -> ItemOutcome:
            outcome = self._process_item(plan, item)
            self._settle(store, outcome)
            return outcome

        self._logger.info(
            f"Processing {len(eligible)} item(s)",
            strategy=getattr(self._strategy, "name", type(self._strategy).__name__),
            skipped=skipped,
        )
        outcomes = await self._strategy.run_all(eligible, runner)

        completed = 0
        failed = 0
        with BatchOperationContextManager(f"Batch of {len(eligible)} item(s)") as batch_manager:
            for outcome in outcomes:
                # Runners that raised never reached _settle
                if store.get(outcome.item_id).state is ItemState.PROCESSING:
                    self._settle(store, outcome)
                if outcome.success:
                    completed += 1
                else:
                    failed += 1
                    batch_manager.add_error(
                        outcome.error or "Unknown error", item_identifier=str(outcome.item_id)
                    )

        result = BatchOutcome(
            completed_count=completed,
            failed_count=failed,
            skipped_count=skipped,
            processing_time=time.time() - start_time,
            item_ids=[outcome.item_id for outcome in outcomes],
        )
        self._logger.info(
            "Batch finished",
            completed=completed,
            failed=failed,
            processing_time_ms=round(result.processing_time * 1000, 2),
        )
        return result

    def run_batch(
        self,
        plan: ProcessingPlan,
        items: Union[BatchItemStore, Iterable[BatchItem]],
    ) -> BatchOutcome:
        """
        Synchronous wrapper around ``run_batch_async``.

        Must not be called from inside a running event loop.
        """
        return asyncio.run(self.run_batch_async(plan, items))
