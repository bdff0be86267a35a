"""Verification signal evaluator — one generic matcher over the policy table.

Pure: no I/O, no logging. A failing verdict is a normal return value.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable

from pydantic import ValidationError as PydanticValidationError

from app.config import settings
from app.engine.errors import ValidationError
from app.engine.models import EvaluationResult, VerificationSignals
from app.engine.policies import get_policy
from app.engine.timezones import to_utc, utcnow

Check = Callable[[VerificationSignals, datetime, int], bool]


def _time_ok(sig: VerificationSignals, now: datetime, tolerance_minutes: int) -> bool:
    t = sig.time
    if t is None or not t.present:
        return False
    if t.window_start is None or t.window_end is None:
        return True
    tol = timedelta(minutes=tolerance_minutes)
    return to_utc(t.window_start) - tol <= now <= to_utc(t.window_end) + tol


def _manual_ok(sig: VerificationSignals, now: datetime, tolerance_minutes: int) -> bool:
    return bool(sig.manual and sig.manual.present)


def _location_ok(sig: VerificationSignals, now: datetime, tolerance_minutes: int) -> bool:
    # inside=None means the geofence result was not supplied
    loc = sig.location
    return bool(loc and loc.present and loc.inside is not False)


def _photo_flag(flag: str) -> Check:
    def check(sig: VerificationSignals, now: datetime, tolerance_minutes: int) -> bool:
        photo = sig.photo
        if photo is None or not photo.present or photo.validation is None:
            return False
        return getattr(photo.validation, flag) is True

    return check


def _partner_ok(sig: VerificationSignals, now: datetime, tolerance_minutes: int) -> bool:
    p = sig.partner
    return bool(p and p.reviewed and p.approved)


CHECKS: dict[str, Check] = {
    "time": _time_ok,
    "manual": _manual_ok,
    "location": _location_ok,
    "photo_time": _photo_flag("time_valid"),
    "photo_fresh": _photo_flag("freshness_valid"),
    "photo_location": _photo_flag("location_valid"),
    "partner": _partner_ok,
}


def _coerce_signals(signals: VerificationSignals | dict[str, Any]) -> VerificationSignals:
    if isinstance(signals, VerificationSignals):
        return signals
    try:
        return VerificationSignals.model_validate(signals)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid verification signals: {exc.errors()[0].get('msg')}", field="signals")


def evaluate(
    goal_type: str,
    signals: VerificationSignals | dict[str, Any],
    now: datetime | None = None,
    tolerance_minutes: int | None = None,
) -> EvaluationResult:
    """Evaluate signals against the goal type's policy.

    details holds each check (check:<name>), each path (path:<a>+<b>),
    and the required gate (required).
    """
    policy = get_policy(goal_type)
    if policy is None:
        raise ValidationError(f"Unknown goal type: {goal_type!r}", field="goal_type")

    sig = _coerce_signals(signals)
    at = to_utc(now) if now is not None else utcnow()
    tol = settings.time_tolerance_minutes if tolerance_minutes is None else tolerance_minutes

    names = set(policy.required)
    for path in policy.paths:
        names.update(path)
    results = {name: CHECKS[name](sig, at, tol) for name in sorted(names)}

    details: dict[str, bool | None] = {f"check:{name}": ok for name, ok in results.items()}
    required_ok = all(results[name] for name in policy.required)
    details["required"] = required_ok

    any_path = False
    for path in policy.paths:
        ok = all(results[name] for name in path)
        details[f"path:{'+'.join(path)}"] = ok
        any_path = any_path or ok

    return EvaluationResult(passed=required_ok and any_path, details=details)
