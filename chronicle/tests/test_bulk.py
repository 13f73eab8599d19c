"""
Tests for the Bulk Processor

Order preservation, per-item isolation and bounded concurrency.
"""

import asyncio
import threading
import time
import pytest

from chronicle.common.errors import NotFound, UpstreamTimeout
from chronicle.common.schemas import TagSuggestion
from chronicle.tagger.bulk import BulkProcessor


class TestBulkMap:
    @pytest.mark.asyncio
    async def test_results_follow_input_order(self):
        delays = {"a": 0.05, "b": 0.0, "c": 0.02}

        def work(item):
            time.sleep(delays[item])
            return item.upper()

        outcomes = await BulkProcessor(workers=3).map(["a", "b", "c"], work)

        assert [o.item for o in outcomes] == ["a", "b", "c"]
        assert [o.value for o in outcomes] == ["A", "B", "C"]
        assert all(o.success for o in outcomes)

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self):
        def work(item):
            if item == "missing":
                raise NotFound(f"Entry not found: {item}")
            if item == "slow":
                raise UpstreamTimeout("model timed out")
            if item == "broken":
                raise RuntimeError("unexpected")
            return item

        outcomes = await BulkProcessor().map(["ok1", "missing", "slow", "broken", "ok2"], work)

        assert [o.success for o in outcomes] == [True, False, False, False, True]
        assert outcomes[1].error_code == "not_found"
        assert outcomes[2].error_code == "upstream_timeout"
        assert outcomes[3].error_code == "internal"
        assert outcomes[3].error == "unexpected"
        assert outcomes[4].value == "ok2"

    @pytest.mark.asyncio
    async def test_worker_limit(self):
        lock = threading.Lock()
        state = {"running": 0, "peak": 0}

        def work(item):
            with lock:
                state["running"] += 1
                state["peak"] = max(state["peak"], state["running"])
            time.sleep(0.02)
            with lock:
                state["running"] -= 1
            return item

        outcomes = await BulkProcessor(workers=2).map([str(i) for i in range(8)], work)

        assert len(outcomes) == 8
        assert state["peak"] <= 2

    @pytest.mark.asyncio
    async def test_empty_and_duplicate_ids(self):
        processor = BulkProcessor()
        assert await processor.map([], lambda item: item) == []

        outcomes = await processor.map(["x", "x"], lambda item: item)
        assert [o.value for o in outcomes] == ["x", "x"]

    def test_invalid_worker_count(self):
        with pytest.raises(ValueError):
            BulkProcessor(workers=0)


class TestBulkCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_batch_drops_pending_items(self):
        release = threading.Event()
        started = []

        def work(item):
            started.append(item)
            if item == "slow":
                release.wait(5)
            return item

        processor = BulkProcessor(workers=1)
        try:
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(processor.map(["slow", "a", "b"], work), timeout=0.1)
            await asyncio.sleep(0.05)
            assert started == ["slow"]

            # The slot held by the cancelled batch is free for the next one
            outcomes = await asyncio.wait_for(processor.map(["c", "d"], work), timeout=2)
            assert [o.value for o in outcomes] == ["c", "d"]
        finally:
            release.set()

    @pytest.mark.asyncio
    async def test_cancelling_one_batch_leaves_others_running(self):
        release = threading.Event()

        def blocking(item):
            release.wait(5)
            return item

        processor = BulkProcessor(workers=2)
        try:
            stuck = asyncio.create_task(processor.map(["x", "y", "z"], blocking))
            await asyncio.sleep(0.05)
            stuck.cancel()

            outcomes = await asyncio.wait_for(processor.map(["a", "b", "c"], str.upper), timeout=2)

            assert [o.value for o in outcomes] == ["A", "B", "C"]
            with pytest.raises(asyncio.CancelledError):
                await stuck
        finally:
            release.set()


class TestBulkExtractTags:
    @pytest.mark.asyncio
    async def test_one_result_per_id(self):
        def extract(entry_id):
            if entry_id == "gone":
                raise NotFound("Entry not found: gone")
            return [TagSuggestion(tag="work", confidence=0.9)]

        ids = ["e1", "gone", "e2"]
        results = await BulkProcessor().extract_tags(ids, extract)

        assert [r.entry_id for r in results] == ids
        assert results[0].success and results[0].suggestions[0].tag == "work"
        assert results[1].success is False
        assert results[1].suggestions is None
        assert results[1].error_code == "not_found"
        assert results[2].success is True
