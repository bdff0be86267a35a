"""Duplicate-pass guard — at most one counted pass per goal per local calendar day.

The day key is the record's calendar date in the goal's fixed IANA zone.
If the store cannot answer, the guard fails open: the attempt is treated as
not a duplicate.
"""

from __future__ import annotations

import logging
from datetime import datetime

from app.engine.errors import StoreUnavailableError
from app.engine.models import VerificationRecord
from app.engine.store import VerificationStore
from app.engine.timezones import day_bounds_utc, local_date, zone

logger = logging.getLogger(__name__)


def counts_as_pass(record: VerificationRecord) -> bool:
    return record.final_pass and not record.is_duplicate


async def has_pass_on_day(
    store: VerificationStore,
    goal_id: str,
    ts: datetime,
    tz_name: str,
) -> bool:
    """True if a counted pass already exists on ts's local day. Raises StoreUnavailableError."""
    tz = zone(tz_name)
    start, end = day_bounds_utc(local_date(ts, tz), tz)
    records = await store.list_records(goal_id, start, end)
    return any(counts_as_pass(r) for r in records)


async def is_duplicate_pass(
    store: VerificationStore,
    goal_id: str,
    ts: datetime,
    tz_name: str,
) -> bool:
    """Duplicate check with the fail-open policy applied."""
    try:
        return await has_pass_on_day(store, goal_id, ts, tz_name)
    except StoreUnavailableError as exc:
        logger.warning("Duplicate check unavailable for goal %s, failing open: %s", goal_id, exc)
        return False


def mark_duplicate(record: VerificationRecord) -> VerificationRecord:
    """Copy of a passing record demoted to a non-counted duplicate."""
    return record.model_copy(update={"final_pass": False, "is_duplicate": True})
