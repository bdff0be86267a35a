"""Shared fixtures for the test suite."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from app.db import get_session
from app.engine.models import GoalRef, VerificationRecord, VerificationSignals
from app.engine.queue import InMemoryListStorage, OfflineAttemptQueue
from app.engine.reachability import FlushCoordinator
from app.engine.router import get_coordinator, get_store
from app.engine.store import InMemoryVerificationStore
from app.engine.verification import VerificationService
from app.main import app


# ---------------------------------------------------------------------------
# Fake DB session (no real Postgres needed)
# ---------------------------------------------------------------------------

class FakeSession:
    """Minimal stand-in for AsyncSession; records every statement it sees."""

    def __init__(self, rows: list[dict[str, Any]] | None = None, error: Exception | None = None):
        self._rows = rows or []
        self._error = error
        self.executed: list[tuple[str, Any]] = []
        self.commits = 0

    async def execute(self, stmt, params=None):
        if self._error is not None:
            raise self._error
        self.executed.append((str(stmt), params))
        return FakeResult(self._rows)

    async def commit(self):
        self.commits += 1

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass


class FakeResult:
    def __init__(self, rows: list[dict[str, Any]]):
        self._rows = rows
        self._keys = list(rows[0].keys()) if rows else []

    def keys(self):
        return self._keys

    def fetchall(self):
        return [tuple(r[k] for k in self._keys) for r in self._rows]

    def fetchone(self):
        rows = self.fetchall()
        return rows[0] if rows else None


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def fake_session():
    """Return a FakeSession with no rows (override _rows in tests if needed)."""
    return FakeSession()


@pytest.fixture()
def memory_store():
    return InMemoryVerificationStore()


@pytest.fixture()
def coordinator(memory_store):
    """In-memory offline queue replaying into the memory store."""
    queue = OfflineAttemptQueue(InMemoryListStorage())
    return FlushCoordinator(queue, VerificationService(memory_store).process_queued)


@pytest.fixture()
def override_deps(fake_session, memory_store, coordinator):
    """Override DB-backed and file-backed dependencies so no real Postgres or disk is needed."""
    async def _session():
        yield fake_session

    async def _store():
        return memory_store

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_store] = _store
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    yield memory_store
    app.dependency_overrides.clear()


@pytest.fixture()
async def client(override_deps):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def seoul_goal() -> GoalRef:
    return GoalRef(id="goal-1", type="schedule", timezone="Asia/Seoul")


def make_record(
    goal_id: str = "goal-1",
    ts: datetime | None = None,
    final_pass: bool = True,
    is_duplicate: bool = False,
    record_id: str | None = None,
) -> VerificationRecord:
    """Helper to build a stored verification record."""
    if ts is None:
        ts = datetime(2025, 9, 8, 1, 0, tzinfo=timezone.utc)
    fields: dict[str, Any] = {
        "goal_id": goal_id,
        "created_at": ts,
        "signals": VerificationSignals(),
        "auto_pass": final_pass or is_duplicate,
        "final_pass": final_pass,
        "is_duplicate": is_duplicate,
    }
    if record_id is not None:
        fields["id"] = record_id
    return VerificationRecord(**fields)


def make_schedule(
    start: str,
    end: str,
    weekdays: list[int],
    time: str = "09:00",
    overrides: list[dict[str, Any]] | None = None,
    tz: str = "Asia/Seoul",
    duration: int = 60,
) -> dict[str, Any]:
    """Helper to build a wire-format goal schedule."""
    return {
        "timezone": tz,
        "period": {"start": start, "end": end},
        "schedule": {
            "rules": [{"byWeekday": weekdays, "time": time}],
            "overrides": overrides or [],
            "defaultDurationMin": duration,
        },
    }
