"""Offline attempt queue — durable buffering with bounded, sequential replay.

Per-item lifecycle:

    pending -> processing -> success   (removed)
                          -> retrying  (retry_count + 1, back to pending)
                          -> dropped   (removed once retry_count reaches max_retries,
                                        or at once when the processor raises
                                        ValidationError; logged only)

The queue is an injected object over a whole-list storage; there is no
module-level state. FIFO order is preserved across flushes: survivors keep
their relative order and attempts enqueued during a flush land after them.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol

from pydantic import ValidationError as PydanticValidationError

from app.config import settings
from app.engine.errors import StoreUnavailableError, ValidationError
from app.engine.models import QueuedAttempt

logger = logging.getLogger(__name__)

Processor = Callable[[QueuedAttempt], Awaitable[bool]]


class AttemptState(str, Enum):
    pending = "pending"
    processing = "processing"
    success = "success"
    retrying = "retrying"
    dropped = "dropped"


@dataclass(frozen=True, slots=True)
class Transition:
    attempt_id: str
    state: AttemptState
    retry_count: int


@dataclass(slots=True)
class FlushReport:
    total: int = 0
    succeeded: int = 0
    retrying: int = 0
    dropped: int = 0
    remaining: int = 0
    skipped: bool = False
    transitions: list[Transition] = field(default_factory=list)

    def states_for(self, attempt_id: str) -> list[AttemptState]:
        return [t.state for t in self.transitions if t.attempt_id == attempt_id]


def advance(
    attempt: QueuedAttempt,
    succeeded: bool,
    retryable: bool = True,
) -> tuple[AttemptState, QueuedAttempt | None]:
    """Outcome of one processing step. Returns the new state and the survivor, if any.

    A non-retryable failure is dropped at once whatever its retry budget.
    """
    if succeeded:
        return AttemptState.success, None
    retry_count = attempt.retry_count + 1
    if retryable and retry_count < attempt.max_retries:
        return AttemptState.retrying, attempt.model_copy(update={"retry_count": retry_count})
    return AttemptState.dropped, None


# ---------------------------------------------------------------------------
# Local durable list storage
# ---------------------------------------------------------------------------


class ListStorage(Protocol):
    async def read(self) -> list[dict[str, Any]]: ...

    async def replace(self, items: list[dict[str, Any]]) -> None: ...


class InMemoryListStorage:
    def __init__(self, items: list[dict[str, Any]] | None = None) -> None:
        self.items: list[dict[str, Any]] = list(items or [])

    async def read(self) -> list[dict[str, Any]]:
        return [dict(item) for item in self.items]

    async def replace(self, items: list[dict[str, Any]]) -> None:
        self.items = [dict(item) for item in items]


class JsonFileListStorage:
    """Whole-list JSON file. Writes go through a temp file and an atomic rename."""

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(settings.queue_path if path is None else path)

    @property
    def path(self) -> Path:
        return self._path

    # File I/O runs in a worker thread so a flush never blocks the event loop.

    def _read_sync(self) -> list[dict[str, Any]]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text() or "[]")
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreUnavailableError(f"Cannot read queue file {self._path}: {exc}") from exc
        if not isinstance(data, list):
            raise StoreUnavailableError(f"Queue file {self._path} does not hold a list")
        return data

    def _replace_sync(self, items: list[dict[str, Any]]) -> None:
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(items, indent=2))
            os.replace(tmp, self._path)
        except OSError as exc:
            raise StoreUnavailableError(f"Cannot write queue file {self._path}: {exc}") from exc

    async def read(self) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._read_sync)

    async def replace(self, items: list[dict[str, Any]]) -> None:
        await asyncio.to_thread(self._replace_sync, items)


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------


class OfflineAttemptQueue:
    """Buffers verification attempts while offline and replays them one at a time."""

    def __init__(self, storage: ListStorage, max_retries: int | None = None) -> None:
        self._storage = storage
        self._max_retries = settings.queue_max_retries if max_retries is None else max_retries
        self._flushing = False

    @property
    def is_flushing(self) -> bool:
        return self._flushing

    async def _load(self) -> list[QueuedAttempt]:
        attempts: list[QueuedAttempt] = []
        for item in await self._storage.read():
            try:
                attempts.append(QueuedAttempt.model_validate(item))
            except PydanticValidationError as exc:
                entry_id = item.get("id") if isinstance(item, dict) else None
                logger.error("Discarding unreadable queue entry %r: %s", entry_id, exc)
        return attempts

    async def _save(self, attempts: list[QueuedAttempt]) -> None:
        await self._storage.replace([a.model_dump(mode="json", by_alias=True) for a in attempts])

    async def enqueue(
        self,
        payload: dict[str, Any],
        attempt_id: str | None = None,
        max_retries: int | None = None,
    ) -> QueuedAttempt:
        """Append an attempt. Raises StoreUnavailableError rather than dropping it."""
        attempt = QueuedAttempt(
            payload=payload,
            retry_count=0,
            max_retries=self._max_retries if max_retries is None else max_retries,
        )
        if attempt_id is not None:
            attempt = attempt.model_copy(update={"id": attempt_id})

        attempts = await self._load()
        attempts.append(attempt)
        await self._save(attempts)
        logger.info("Enqueued attempt %s (queue size %d)", attempt.id, len(attempts))
        return attempt

    async def peek_all(self) -> list[QueuedAttempt]:
        return await self._load()

    async def size(self) -> int:
        return len(await self._load())

    async def clear(self) -> None:
        await self._storage.replace([])
        logger.info("Queue cleared")

    async def flush(self, processor: Processor) -> FlushReport:
        """Replay every queued attempt sequentially, then persist the survivors.

        A processor returning falsy or raising counts as a failure; raising
        ValidationError marks the attempt unreplayable and drops it at once.
        A flush requested while another is running is skipped.
        """
        if self._flushing:
            logger.info("Flush already in progress; skipping")
            return FlushReport(skipped=True)

        self._flushing = True
        try:
            return await self._flush(processor)
        finally:
            self._flushing = False

    async def _flush(self, processor: Processor) -> FlushReport:
        snapshot = await self._load()
        report = FlushReport(total=len(snapshot))
        if not snapshot:
            return report

        logger.info("Flushing %d queued attempt(s)", len(snapshot))
        survivors: list[QueuedAttempt] = []
        for attempt in snapshot:
            report.transitions.append(Transition(attempt.id, AttemptState.processing, attempt.retry_count))
            retryable = True
            try:
                succeeded = bool(await processor(attempt))
            except ValidationError as exc:
                logger.error("Attempt %s cannot be replayed: %s", attempt.id, exc)
                succeeded = False
                retryable = False
            except Exception as exc:
                logger.warning("Processor raised for attempt %s: %s", attempt.id, exc)
                succeeded = False

            state, survivor = advance(attempt, succeeded, retryable)
            retry_count = attempt.retry_count if succeeded else attempt.retry_count + 1
            report.transitions.append(Transition(attempt.id, state, retry_count))

            if state is AttemptState.success:
                report.succeeded += 1
            elif state is AttemptState.retrying:
                report.retrying += 1
                survivors.append(survivor)
                logger.info("Attempt %s will retry (%d/%d)", attempt.id, retry_count, attempt.max_retries)
            else:
                report.dropped += 1
                logger.error(
                    "Dropping attempt %s after %d/%d failed replays", attempt.id, retry_count, attempt.max_retries
                )

        seen = {a.id for a in snapshot}
        late = [a for a in await self._load() if a.id not in seen]
        remaining = survivors + late
        await self._save(remaining)
        report.remaining = len(remaining)

        logger.info(
            "Flush complete: total=%d succeeded=%d retrying=%d dropped=%d remaining=%d",
            report.total,
            report.succeeded,
            report.retrying,
            report.dropped,
            report.remaining,
        )
        return report
