"""Frequency aggregation — weekly pass counts over complete 7-day windows.

Windows are anchored at the period start. A window only counts when it lies
fully inside [period_start, period_end]; a trailing partial week is excluded
from both numerator and denominator, the same rule the occurrence builder
applies to periods shorter than a week. A week's count is the number of
distinct local days with a counted pass, so two passes on one day (possible
while the duplicate guard fails open) still count once.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Callable, Iterable

from app.config import settings
from app.engine.errors import ValidationError
from app.engine.guard import counts_as_pass
from app.engine.models import FrequencyResult, GoalRef, VerificationRecord, WeekResult
from app.engine.store import VerificationStore
from app.engine.timezones import day_bounds_utc, local_date, zone

Threshold = Callable[[int, int], bool]

WEEK_DAYS = 7


def complete_weeks(period_start: date, period_end: date) -> list[tuple[date, date]]:
    """Inclusive (start, end) date pairs of every complete week in the period."""
    weeks: list[tuple[date, date]] = []
    week_start = period_start
    while week_start + timedelta(days=WEEK_DAYS - 1) <= period_end:
        weeks.append((week_start, week_start + timedelta(days=WEEK_DAYS - 1)))
        week_start += timedelta(days=WEEK_DAYS)
    return weeks


def ratio_threshold(ratio: float) -> Threshold:
    """Pass when passed/total reaches `ratio`. Zero weeks never pass."""

    def threshold(passed: int, total: int) -> bool:
        if total <= 0:
            return False
        return passed / total >= ratio

    return threshold


def aggregate_frequency(
    records: Iterable[VerificationRecord],
    target_per_week: int,
    period_start: date,
    period_end: date,
    tz_name: str | None = None,
    threshold: Threshold | None = None,
) -> FrequencyResult:
    if target_per_week < 0:
        raise ValidationError("target_per_week must be >= 0", field="target_per_week")
    if period_end < period_start:
        raise ValidationError("period end must not be before period start", field="period")

    tz = zone(tz_name or settings.default_tz)
    decide = threshold or ratio_threshold(settings.frequency_pass_ratio)

    weeks = complete_weeks(period_start, period_end)
    if not weeks:
        return FrequencyResult(reason="No complete 7-day blocks in range")

    days: list[set[str]] = [set() for _ in weeks]
    for record in records:
        if not counts_as_pass(record):
            continue
        day = local_date(record.created_at, tz)
        offset = (day - period_start).days
        if offset < 0:
            continue
        index = offset // WEEK_DAYS
        if index >= len(weeks):
            continue
        days[index].add(day.isoformat())

    week_results = [
        WeekResult(
            week_key=f"{start.isoformat()}_to_{end.isoformat()}",
            start=start,
            end=end,
            count=len(day_set),
            target=target_per_week,
            passed=len(day_set) >= target_per_week,
            verification_days=sorted(day_set),
        )
        for (start, end), day_set in zip(weeks, days)
    ]
    passed_weeks = sum(1 for w in week_results if w.passed)
    overall = decide(passed_weeks, len(weeks))
    if overall:
        reason = f"{passed_weeks}/{len(weeks)} complete weeks met the target"
    else:
        reason = f"{passed_weeks}/{len(weeks)} weeks passed"

    return FrequencyResult(
        total_weeks=len(weeks),
        passed_weeks=passed_weeks,
        week_results=week_results,
        overall_pass=overall,
        reason=reason,
    )


async def aggregate_goal_frequency(
    store: VerificationStore,
    goal: GoalRef,
    target_per_week: int,
    period_start: date,
    period_end: date,
    threshold: Threshold | None = None,
) -> FrequencyResult:
    """Pull the goal's records for the period from the store and aggregate them."""
    tz = zone(goal.timezone)
    range_start, _ = day_bounds_utc(period_start, tz)
    _, range_end = day_bounds_utc(period_end, tz)
    records = await store.list_records(goal.id, range_start, range_end)
    return aggregate_frequency(records, target_per_week, period_start, period_end, goal.timezone, threshold)
