"""Engine data contract — Pydantic v2 models.

Wire names are camelCase (byWeekday, defaultDurationMin, finalPass, ...);
attributes are snake_case. Models accept either form.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from app.config import settings
from app.engine.errors import ValidationError
from app.engine.timezones import zone

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"

Weekday = Annotated[int, Field(ge=0, le=6)]  # 0 = Sunday … 6 = Saturday
ClockTime = Annotated[str, Field(pattern=HHMM_PATTERN)]


class EngineModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Schedule input
# ---------------------------------------------------------------------------


class Period(EngineModel):
    start: date
    end: date

    @model_validator(mode="after")
    def _end_not_before_start(self) -> Period:
        if self.end < self.start:
            raise ValueError("period.end must not be before period.start")
        return self


class ScheduleRule(EngineModel):
    by_weekday: list[Weekday] = Field(min_length=1)
    time: ClockTime = "09:00"


class AddOverride(EngineModel):
    kind: Literal["add"] = "add"
    date: date
    time: ClockTime


class CancelOverride(EngineModel):
    kind: Literal["cancel"] = "cancel"
    date: date


class RetimeOverride(EngineModel):
    kind: Literal["retime"] = "retime"
    date: date
    time: ClockTime


class MoveOverride(EngineModel):
    kind: Literal["move"] = "move"
    from_date: date = Field(validation_alias=AliasChoices("fromDate", "from_date", "from"))
    to_date: date
    to_time: ClockTime


Override = Annotated[
    Union[AddOverride, CancelOverride, RetimeOverride, MoveOverride],
    Field(discriminator="kind"),
]


class ScheduleSpec(EngineModel):
    rules: list[ScheduleRule] = Field(default_factory=list)
    overrides: list[Override] = Field(default_factory=list)
    default_duration_min: int = Field(default_factory=lambda: settings.default_duration_min, gt=0)


def _known_zone(value: str) -> str:
    try:
        zone(value)
    except ValidationError as exc:
        raise ValueError(str(exc))
    return value


ZoneName = Annotated[str, AfterValidator(_known_zone)]


class GoalSchedule(EngineModel):
    timezone: ZoneName = Field(default_factory=lambda: settings.default_tz)
    period: Period
    schedule: ScheduleSpec = Field(default_factory=ScheduleSpec)


# ---------------------------------------------------------------------------
# Builder output
# ---------------------------------------------------------------------------


class Occurrence(EngineModel):
    start: datetime
    end: datetime


class OccurrencePreview(EngineModel):
    date: str  # YYYY-MM-DD, local
    time: str  # HH:MM, local
    day_name: str
    week_number: int


class OccurrenceValidation(EngineModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)


class OccurrencesResponse(EngineModel):
    occurrences: list[Occurrence] = Field(default_factory=list)
    validation: OccurrenceValidation


# ---------------------------------------------------------------------------
# Verification signals
# ---------------------------------------------------------------------------


class GeoPoint(EngineModel):
    lat: float
    lng: float


class ManualSignal(EngineModel):
    present: bool = False
    passed: bool | None = Field(default=None, alias="pass")


class PhotoValidation(EngineModel):
    time_valid: bool | None = None
    freshness_valid: bool | None = None
    location_valid: bool | None = None


class PhotoSignal(EngineModel):
    present: bool = False
    exif_timestamp: datetime | None = None
    exif_location: GeoPoint | None = None
    validation: PhotoValidation | None = None


class LocationSignal(EngineModel):
    present: bool = False
    inside: bool | None = None
    lat: float | None = None
    lng: float | None = None
    radius_m: float | None = None


class TimeSignal(EngineModel):
    present: bool = False
    window_start: datetime | None = None
    window_end: datetime | None = None


class PartnerSignal(EngineModel):
    present: bool = False
    reviewed: bool | None = None
    approved: bool | None = None


class VerificationSignals(EngineModel):
    """Each sub-record is optional; None means "not supplied", never false."""

    manual: ManualSignal | None = None
    photo: PhotoSignal | None = None
    location: LocationSignal | None = None
    time: TimeSignal | None = None
    partner: PartnerSignal | None = None


class EvaluationRequest(EngineModel):
    goal_type: str
    signals: VerificationSignals = Field(default_factory=VerificationSignals)
    now: datetime | None = None


class EvaluationResult(EngineModel):
    passed: bool = Field(alias="pass")
    details: dict[str, bool | None] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class GoalRef(EngineModel):
    id: str
    type: str
    timezone: ZoneName = Field(default_factory=lambda: settings.default_tz)


class VerificationRecord(EngineModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    goal_id: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    signals: VerificationSignals = Field(default_factory=VerificationSignals)
    auto_pass: bool = False
    final_pass: bool = False
    is_duplicate: bool = False


class QueuedAttempt(EngineModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    retry_count: int = 0
    max_retries: int = Field(default_factory=lambda: settings.queue_max_retries)


class VerificationSubmission(EngineModel):
    goal: GoalRef
    signals: VerificationSignals = Field(default_factory=VerificationSignals)
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Frequency aggregation
# ---------------------------------------------------------------------------


class WeekResult(EngineModel):
    week_key: str  # "<start>_to_<end>"
    start: date
    end: date
    count: int
    target: int
    passed: bool
    verification_days: list[str] = Field(default_factory=list)


class FrequencyResult(EngineModel):
    total_weeks: int = 0
    passed_weeks: int = 0
    week_results: list[WeekResult] = Field(default_factory=list)
    overall_pass: bool = False
    reason: str = ""


# ---------------------------------------------------------------------------
# Offline queue / reachability
# ---------------------------------------------------------------------------


class ReachabilityUpdate(EngineModel):
    is_connected: bool = False
    is_internet_reachable: bool | None = None
    type: str | None = None


class FlushTransition(EngineModel):
    attempt_id: str
    state: str
    retry_count: int


class FlushSummary(EngineModel):
    total: int = 0
    succeeded: int = 0
    retrying: int = 0
    dropped: int = 0
    remaining: int = 0
    skipped: bool = False
    transitions: list[FlushTransition] = Field(default_factory=list)


class ReachabilityResponse(EngineModel):
    online: bool
    flushed: bool = False
    report: FlushSummary | None = None
