"""Tests for the offline attempt queue and its storages."""

from __future__ import annotations

import asyncio
import json
import logging
from collections import Counter
from unittest.mock import patch

import pytest

from app.engine.errors import StoreUnavailableError, ValidationError
from app.engine.models import QueuedAttempt
from app.engine.queue import (
    AttemptState,
    FlushReport,
    InMemoryListStorage,
    JsonFileListStorage,
    OfflineAttemptQueue,
    advance,
)


class ScriptedProcessor:
    """Processor whose per-attempt outcomes are scripted; records every call."""

    def __init__(self, failures: dict[str, int] | None = None, always_fail: set[str] | None = None):
        self.failures = dict(failures or {})
        self.always_fail = set(always_fail or ())
        self.calls: list[str] = []

    async def __call__(self, attempt: QueuedAttempt) -> bool:
        self.calls.append(attempt.id)
        if attempt.id in self.always_fail:
            return False
        if self.failures.get(attempt.id, 0) > 0:
            self.failures[attempt.id] -= 1
            return False
        return True


def _queue() -> OfflineAttemptQueue:
    return OfflineAttemptQueue(InMemoryListStorage())


async def _ids(queue: OfflineAttemptQueue) -> list[str]:
    return [a.id for a in await queue.peek_all()]


class TestAdvance:
    def test_success(self):
        state, survivor = advance(QueuedAttempt(), True)
        assert state is AttemptState.success
        assert survivor is None

    def test_failure_below_max_retries(self):
        state, survivor = advance(QueuedAttempt(retry_count=1, max_retries=3), False)
        assert state is AttemptState.retrying
        assert survivor.retry_count == 2

    def test_failure_reaching_max_drops(self):
        state, survivor = advance(QueuedAttempt(retry_count=2, max_retries=3), False)
        assert state is AttemptState.dropped
        assert survivor is None

    def test_non_retryable_failure_drops_at_once(self):
        state, survivor = advance(QueuedAttempt(retry_count=0, max_retries=3), False, retryable=False)
        assert state is AttemptState.dropped
        assert survivor is None


class TestEnqueue:
    @pytest.mark.asyncio
    async def test_appends_with_defaults(self):
        queue = _queue()
        attempt = await queue.enqueue({"goal": "g"})
        assert attempt.retry_count == 0
        assert attempt.max_retries == 3
        assert await queue.size() == 1

    @pytest.mark.asyncio
    async def test_preserves_insertion_order(self):
        queue = _queue()
        for name in ("a", "b", "c"):
            await queue.enqueue({}, attempt_id=name)
        assert await _ids(queue) == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_custom_max_retries(self):
        queue = OfflineAttemptQueue(InMemoryListStorage(), max_retries=5)
        assert (await queue.enqueue({})).max_retries == 5
        assert (await queue.enqueue({}, max_retries=1)).max_retries == 1

    @pytest.mark.asyncio
    async def test_storage_failure_raises(self, tmp_path):
        path = tmp_path / "queue.json"
        path.write_text("{not json")
        queue = OfflineAttemptQueue(JsonFileListStorage(path))
        with pytest.raises(StoreUnavailableError):
            await queue.enqueue({})

    @pytest.mark.asyncio
    async def test_clear(self):
        queue = _queue()
        await queue.enqueue({})
        await queue.clear()
        assert await queue.size() == 0


class TestFlush:
    @pytest.mark.asyncio
    async def test_empty_queue(self):
        report = await _queue().flush(ScriptedProcessor())
        assert report.total == 0
        assert report.transitions == []

    @pytest.mark.asyncio
    async def test_flaky_attempt_eventually_succeeds(self):
        queue = _queue()
        for name in ("a1", "a2", "a3"):
            await queue.enqueue({}, attempt_id=name)
        processor = ScriptedProcessor(failures={"a2": 2})

        first = await queue.flush(processor)
        assert (first.succeeded, first.retrying) == (2, 1)
        assert await _ids(queue) == ["a2"]

        second = await queue.flush(processor)
        assert second.retrying == 1
        assert (await queue.peek_all())[0].retry_count == 2

        third = await queue.flush(processor)
        assert third.succeeded == 1
        assert third.states_for("a2") == [AttemptState.processing, AttemptState.success]
        assert await queue.size() == 0
        assert processor.calls == ["a1", "a2", "a3", "a2", "a2"]

    @pytest.mark.asyncio
    async def test_always_failing_dropped_after_max_retries(self, caplog):
        queue = _queue()
        await queue.enqueue({}, attempt_id="bad")
        processor = ScriptedProcessor(always_fail={"bad"})

        for _ in range(2):
            report = await queue.flush(processor)
            assert report.retrying == 1
        with caplog.at_level(logging.ERROR, logger="app.engine.queue"):
            report = await queue.flush(processor)

        assert report.dropped == 1
        assert report.states_for("bad") == [AttemptState.processing, AttemptState.dropped]
        assert Counter(processor.calls)["bad"] == 3
        assert await queue.size() == 0
        assert "Dropping attempt bad" in caplog.text

        await queue.flush(processor)
        assert Counter(processor.calls)["bad"] == 3

    @pytest.mark.asyncio
    async def test_fifo_preserved_across_flushes(self):
        queue = _queue()
        await queue.enqueue({}, attempt_id="x")
        await queue.enqueue({}, attempt_id="y")
        processor = ScriptedProcessor(failures={"y": 1}, always_fail={"x"})

        await queue.flush(processor)
        await queue.enqueue({}, attempt_id="z")
        assert await _ids(queue) == ["x", "y", "z"]

        processor.always_fail.add("z")
        await queue.flush(processor)
        assert await _ids(queue) == ["x", "z"]
        assert processor.calls == ["x", "y", "x", "y", "z"]

    @pytest.mark.asyncio
    async def test_items_are_processed_sequentially(self):
        queue = _queue()
        for name in ("a", "b", "c"):
            await queue.enqueue({}, attempt_id=name)
        in_flight = 0
        peak = 0

        async def processor(attempt):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            in_flight -= 1
            return True

        await queue.flush(processor)
        assert peak == 1

    @pytest.mark.asyncio
    async def test_processor_exception_counts_as_failure(self):
        queue = _queue()
        await queue.enqueue({}, attempt_id="boom")

        async def processor(attempt):
            raise RuntimeError("transport closed")

        report = await queue.flush(processor)
        assert report.retrying == 1
        assert (await queue.peek_all())[0].retry_count == 1

    @pytest.mark.asyncio
    async def test_validation_error_drops_without_retry(self, caplog):
        queue = _queue()
        await queue.enqueue({}, attempt_id="junk")
        await queue.enqueue({}, attempt_id="fine")
        calls: list[str] = []

        async def processor(attempt):
            calls.append(attempt.id)
            if attempt.id == "junk":
                raise ValidationError("unknown goal type", field="goal_type")
            return True

        with caplog.at_level(logging.ERROR, logger="app.engine.queue"):
            report = await queue.flush(processor)

        assert report.dropped == 1
        assert report.succeeded == 1
        assert report.states_for("junk") == [AttemptState.processing, AttemptState.dropped]
        assert calls == ["junk", "fine"]
        assert await queue.size() == 0
        assert "cannot be replayed" in caplog.text

    @pytest.mark.asyncio
    async def test_attempt_enqueued_during_flush_is_kept_after_survivors(self):
        queue = _queue()
        await queue.enqueue({}, attempt_id="old")

        async def processor(attempt):
            if attempt.id == "old":
                await queue.enqueue({}, attempt_id="new")
                return False
            return True

        report = await queue.flush(processor)
        assert report.total == 1
        assert report.remaining == 2
        assert await _ids(queue) == ["old", "new"]

    @pytest.mark.asyncio
    async def test_reentrant_flush_is_skipped(self):
        queue = _queue()
        await queue.enqueue({}, attempt_id="a")
        nested: list[FlushReport] = []

        async def processor(attempt):
            nested.append(await queue.flush(processor))
            return True

        report = await queue.flush(processor)
        assert report.succeeded == 1
        assert nested[0].skipped is True
        assert queue.is_flushing is False


class TestJsonFileListStorage:
    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, tmp_path):
        assert await JsonFileListStorage(tmp_path / "nope.json").read() == []

    @pytest.mark.asyncio
    async def test_survives_restart(self, tmp_path):
        path = tmp_path / "sub" / "queue.json"
        await OfflineAttemptQueue(JsonFileListStorage(path)).enqueue({"k": 1}, attempt_id="a")

        reopened = OfflineAttemptQueue(JsonFileListStorage(path))
        attempts = await reopened.peek_all()
        assert [a.id for a in attempts] == ["a"]
        assert attempts[0].payload == {"k": 1}
        assert not path.with_suffix(".json.tmp").exists()

    @pytest.mark.asyncio
    async def test_non_list_file_raises(self, tmp_path):
        path = tmp_path / "queue.json"
        path.write_text(json.dumps({"id": "a"}))
        with pytest.raises(StoreUnavailableError):
            await JsonFileListStorage(path).read()

    @pytest.mark.asyncio
    async def test_malformed_entry_is_discarded(self, tmp_path, caplog):
        path = tmp_path / "queue.json"
        path.write_text(json.dumps([{"id": "ok"}, {"id": "bad", "retryCount": "lots"}]))
        with caplog.at_level(logging.ERROR, logger="app.engine.queue"):
            ids = await _ids(OfflineAttemptQueue(JsonFileListStorage(path)))
        assert ids == ["ok"]
        assert "bad" in caplog.text

    @pytest.mark.asyncio
    async def test_wire_format_is_camel_case(self, tmp_path):
        path = tmp_path / "queue.json"
        await OfflineAttemptQueue(JsonFileListStorage(path)).enqueue({}, attempt_id="a")
        entry = json.loads(path.read_text())[0]
        assert set(entry) == {"id", "payload", "createdAt", "retryCount", "maxRetries"}

    def test_default_path_comes_from_settings(self):
        assert JsonFileListStorage().path.name == "verification_queue_v1.json"

    @pytest.mark.asyncio
    async def test_file_io_runs_off_the_event_loop(self, tmp_path):
        storage = JsonFileListStorage(tmp_path / "queue.json")
        with patch("app.engine.queue.asyncio.to_thread", wraps=asyncio.to_thread) as to_thread:
            await storage.replace([{"id": "a"}])
            assert await storage.read() == [{"id": "a"}]
        assert to_thread.await_count == 2
