"""Verification recording — evaluator + duplicate guard + store.

`VerificationService.submit` is the online path. `process_queued` is the
processor handed to the offline queue: it replays a queued payload through
the same path and reports success or failure.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from app.engine import evaluator, guard
from app.engine.errors import StoreUnavailableError, ValidationError
from app.engine.models import GoalRef, QueuedAttempt, VerificationRecord, VerificationSignals, VerificationSubmission
from app.engine.queue import OfflineAttemptQueue
from app.engine.store import VerificationStore
from app.engine.timezones import day_key, to_utc, utcnow

logger = logging.getLogger(__name__)


def build_payload(
    goal: GoalRef,
    signals: VerificationSignals,
    created_at: datetime | None = None,
) -> dict[str, Any]:
    """Queue payload for an attempt made while offline."""
    submission = VerificationSubmission(goal=goal, signals=signals, created_at=created_at or utcnow())
    return submission.model_dump(mode="json", by_alias=True, exclude_none=True)


class VerificationService:
    def __init__(self, store: VerificationStore) -> None:
        self._store = store

    async def submit(
        self,
        goal: GoalRef,
        signals: VerificationSignals,
        created_at: datetime | None = None,
        now: datetime | None = None,
    ) -> VerificationRecord:
        """Evaluate, guard, and persist one attempt. Returns the written record.

        Evaluation time (`now`) defaults to the attempt's own timestamp so that
        replayed offline attempts are judged as of when they were made.
        """
        ts = to_utc(created_at) if created_at is not None else utcnow()
        result = evaluator.evaluate(goal.type, signals, now=now or ts)

        record = VerificationRecord(
            goal_id=goal.id,
            created_at=ts,
            signals=signals,
            auto_pass=result.passed,
            final_pass=result.passed,
        )
        if record.final_pass and await guard.is_duplicate_pass(self._store, goal.id, ts, goal.timezone):
            record = guard.mark_duplicate(record)
            logger.info(
                "Goal %s already passed on %s; recorded %s as duplicate",
                goal.id,
                day_key(ts, goal.timezone),
                record.id,
            )

        await self._store.write_many([record])
        return record

    async def enqueue(
        self,
        queue: OfflineAttemptQueue,
        goal: GoalRef,
        signals: VerificationSignals,
        created_at: datetime | None = None,
    ) -> QueuedAttempt:
        return await queue.enqueue(build_payload(goal, signals, created_at))

    async def process_queued(self, attempt: QueuedAttempt) -> bool:
        """Queue processor.

        Store outages return False so the queue retries. Input that can never
        succeed (malformed payload, unknown goal type or zone) raises
        ValidationError, which the queue drops without retrying.
        """
        try:
            submission = VerificationSubmission.model_validate(attempt.payload)
        except PydanticValidationError as exc:
            raise ValidationError(
                f"Queued attempt {attempt.id} has a malformed payload: {exc}", field="payload"
            ) from exc

        try:
            record = await self.submit(submission.goal, submission.signals, created_at=submission.created_at)
        except StoreUnavailableError as exc:
            logger.warning("Replay of queued attempt %s failed: %s", attempt.id, exc)
            return False

        logger.info(
            "Replayed queued attempt %s as record %s (final_pass=%s, duplicate=%s)",
            attempt.id,
            record.id,
            record.final_pass,
            record.is_duplicate,
        )
        return True
