"""Static verification policy table — config only.

Each VerificationPolicy lists the checks that must always hold (`required`)
and the check combinations of which any one is sufficient proof (`paths`).
Adding a goal type means adding a row here, not a new code path.

Check names are resolved by app.engine.evaluator.CHECKS.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class VerificationPolicy:
    goal_type: str
    paths: tuple[tuple[str, ...], ...]
    required: tuple[str, ...] = ()
    label: str = ""


_SCHEDULE_PATHS = (
    ("manual", "location"),
    ("photo_time", "photo_fresh"),
    ("manual", "time"),
)

POLICIES_BY_GOAL_TYPE: dict[str, VerificationPolicy] = {
    "schedule": VerificationPolicy(
        goal_type="schedule",
        required=("time",),
        paths=_SCHEDULE_PATHS,
        label="On time, plus presence or a fresh photo",
    ),
    # Milestones are checked in like scheduled sessions
    "milestone": VerificationPolicy(
        goal_type="milestone",
        required=("time",),
        paths=_SCHEDULE_PATHS,
        label="Milestone check-in",
    ),
    "frequency": VerificationPolicy(
        goal_type="frequency",
        paths=(
            ("manual", "location"),
            ("manual", "photo_fresh"),
        ),
        label="Confirmed with location or a fresh photo",
    ),
    "partner": VerificationPolicy(
        goal_type="partner",
        paths=(("partner",),),
        label="Partner approval",
    ),
}


def get_policy(goal_type: str) -> VerificationPolicy | None:
    return POLICIES_BY_GOAL_TYPE.get(goal_type)


def list_policies() -> list[VerificationPolicy]:
    return list(POLICIES_BY_GOAL_TYPE.values())
