"""
Bulk Processor

Runs one engine operation over many entry ids with per-item isolation.

- Items run in parallel, at most `workers` at a time.
- One item's failure (missing entry, matcher error, model timeout) is
  captured in its own result and never aborts or delays the others.
- Results come back in input order, one per input id.
- Cancelling the batch cancels pending items and releases their worker
  slots immediately.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Generic, List, Optional, Sequence, TypeVar

from ..common.errors import ChronicleError
from ..common.schemas import BulkTagResult, TagSuggestion

logger = logging.getLogger("chronicle.tagger.bulk")

T = TypeVar("T")


@dataclass
class BulkOutcome(Generic[T]):
    """Result or captured error for one item"""
    item: str
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


class BulkProcessor:
    """Bounded-concurrency fan-out over blocking work functions."""

    def __init__(self, workers: int = 4):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._workers = workers

    @property
    def workers(self) -> int:
        return self._workers

    async def map(self, items: Sequence[str], work: Callable[[str], T]) -> List[BulkOutcome[T]]:
        """
        Apply a blocking work function to every item.

        Args:
            items: Entry ids (duplicates are processed independently)
            work: Blocking function run in a worker thread per item

        Returns:
            One BulkOutcome per item, in input order
        """
        semaphore = asyncio.Semaphore(self._workers)

        async def _run(item: str) -> BulkOutcome[T]:
            async with semaphore:
                try:
                    value = await asyncio.to_thread(work, item)
                except ChronicleError as e:
                    logger.warning("Bulk item %s failed: %s", item, e.message)
                    return BulkOutcome(item=item, error=e.message, error_code=e.code)
                except Exception as e:
                    logger.error("Bulk item %s failed unexpectedly", item, exc_info=True)
                    return BulkOutcome(item=item, error=str(e) or type(e).__name__,
                                       error_code="internal")
                return BulkOutcome(item=item, value=value)

        return list(await asyncio.gather(*(_run(item) for item in items)))

    async def extract_tags(
        self,
        entry_ids: Sequence[str],
        extract: Callable[[str], List[TagSuggestion]],
    ) -> List[BulkTagResult]:
        """Tag extraction over many entries, one BulkTagResult per id."""
        outcomes = await self.map(entry_ids, extract)
        results = [
            BulkTagResult(
                entry_id=o.item,
                success=o.success,
                suggestions=o.value if o.success else None,
                error=o.error,
                error_code=o.error_code,
            )
            for o in outcomes
        ]
        failed = sum(1 for r in results if not r.success)
        logger.info("Bulk tag extraction: %d entries, %d failed", len(results), failed)
        return results
