"""Occurrence builder — recurring rules + overrides → concrete sessions.

Pure and deterministic:
1. Expand rules (weekday set + HH:MM) across the period, in local time.
2. Apply overrides strictly in list order (cancel / retime / add / move).
3. Localise in the goal's zone, sort by UTC start, attach end = start + duration.

Malformed input raises ValidationError; nothing else in this module raises.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from app.config import settings
from app.engine.errors import ValidationError
from app.engine.models import (
    AddOverride,
    CancelOverride,
    GoalSchedule,
    MoveOverride,
    Occurrence,
    OccurrencePreview,
    OccurrenceValidation,
    RetimeOverride,
    ScheduleRule,
)
from app.engine.timezones import localize, zone

COMPLETE_WEEK_DAYS = 7
DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


def parse_schedule(data: GoalSchedule | dict[str, Any]) -> GoalSchedule:
    """Coerce wire input into a GoalSchedule, mapping schema errors to ValidationError."""
    if isinstance(data, GoalSchedule):
        return data
    try:
        return GoalSchedule.model_validate(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ())) or None
        raise ValidationError(f"Invalid goal schedule: {first.get('msg', exc)}", field=field)


def weekday_index(day: date) -> int:
    """0 = Sunday … 6 = Saturday."""
    return (day.weekday() + 1) % 7


def _clock(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def period_days(start: date, end: date) -> int:
    """Inclusive day count of [start, end]."""
    return (end - start).days + 1


def expand_rules(rules: list[ScheduleRule], start: date, end: date) -> list[datetime]:
    """Tentative naive local datetimes for every (date, matching rule) pair.

    Rules covering the same weekday+time each fire; repeats are kept.
    """
    tentative: list[datetime] = []
    day = start
    while day <= end:
        dow = weekday_index(day)
        for rule in rules:
            if dow in rule.by_weekday:
                tentative.append(datetime.combine(day, _clock(rule.time)))
        day += timedelta(days=1)
    return tentative


def apply_overrides(tentative: list[datetime], overrides: list) -> list[datetime]:
    """Apply overrides in list order. Later overrides see earlier results."""
    result = list(tentative)
    for override in overrides:
        if isinstance(override, CancelOverride):
            result = [dt for dt in result if dt.date() != override.date]
        elif isinstance(override, RetimeOverride):
            at = _clock(override.time)
            result = [datetime.combine(dt.date(), at) if dt.date() == override.date else dt for dt in result]
        elif isinstance(override, AddOverride):
            result.append(datetime.combine(override.date, _clock(override.time)))
        elif isinstance(override, MoveOverride):
            result = [dt for dt in result if dt.date() != override.from_date]
            result.append(datetime.combine(override.to_date, _clock(override.to_time)))
    return result


def _local_occurrences(schedule: GoalSchedule) -> list[datetime]:
    period = schedule.period
    if period_days(period.start, period.end) < COMPLETE_WEEK_DAYS:
        return []
    if not schedule.schedule.rules:
        return []
    tentative = expand_rules(schedule.schedule.rules, period.start, period.end)
    return apply_overrides(tentative, schedule.schedule.overrides)


def build_occurrences(data: GoalSchedule | dict[str, Any]) -> list[Occurrence]:
    """Build the ordered list of occurrences (UTC start/end) for a schedule."""
    schedule = parse_schedule(data)
    tz = zone(schedule.timezone)
    duration = timedelta(minutes=schedule.schedule.default_duration_min)

    starts = sorted(localize(dt.date(), dt.time(), tz) for dt in _local_occurrences(schedule))
    return [Occurrence(start=s, end=s + duration) for s in starts]


def preview_occurrences(data: GoalSchedule | dict[str, Any]) -> list[OccurrencePreview]:
    """Local-time rows for display, with a 1-based week number from the period start."""
    schedule = parse_schedule(data)
    tz = zone(schedule.timezone)
    local = sorted(_local_occurrences(schedule), key=lambda dt: localize(dt.date(), dt.time(), tz))
    return [
        OccurrencePreview(
            date=dt.date().isoformat(),
            time=dt.strftime("%H:%M"),
            day_name=DAY_NAMES[weekday_index(dt.date())],
            week_number=(dt.date() - schedule.period.start).days // COMPLETE_WEEK_DAYS + 1,
        )
        for dt in local
    ]


def validate_occurrences(
    occurrences: list[Occurrence],
    max_count: int | None = None,
) -> OccurrenceValidation:
    """Flag empty or oversized occurrence lists. Never truncates."""
    ceiling = max_count if max_count is not None else settings.max_occurrences
    errors: list[str] = []
    if not occurrences:
        errors.append("At least one occurrence is required.")
    if len(occurrences) > ceiling:
        errors.append(f"At most {ceiling} occurrences are allowed, got {len(occurrences)}.")
    for occ in occurrences:
        if occ.end < occ.start:
            errors.append("Occurrence ends before it starts.")
            break
    return OccurrenceValidation(valid=not errors, errors=errors)
