"""Verification record store — protocol plus async SQL and in-memory adapters.

Table: verification_records
  id (text PK), goal_id (text), created_at (timestamptz), signals (JSONB),
  auto_pass (bool), final_pass (bool), is_duplicate (bool)

Every adapter failure surfaces as StoreUnavailableError.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Protocol, Sequence

from sqlalchemy import bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.engine.errors import StoreUnavailableError
from app.engine.models import VerificationRecord
from app.engine.timezones import to_utc

logger = logging.getLogger(__name__)

_COLUMNS = "id, goal_id, created_at, signals, auto_pass, final_pass, is_duplicate"


class VerificationStore(Protocol):
    async def get(self, record_id: str) -> VerificationRecord | None: ...

    async def list_records(
        self,
        goal_id: str,
        start: datetime | None = None,
        end_exclusive: datetime | None = None,
    ) -> list[VerificationRecord]: ...

    async def write_many(self, records: Sequence[VerificationRecord]) -> None: ...

    async def delete_many(self, record_ids: Sequence[str]) -> None: ...


def _row_to_record(row: dict[str, Any]) -> VerificationRecord:
    signals = row.get("signals") or {}
    if isinstance(signals, str):
        signals = json.loads(signals)
    return VerificationRecord(
        id=row["id"],
        goal_id=row["goal_id"],
        created_at=row["created_at"],
        signals=signals,
        auto_pass=bool(row.get("auto_pass")),
        final_pass=bool(row.get("final_pass")),
        is_duplicate=bool(row.get("is_duplicate")),
    )


class SqlVerificationStore:
    """Async SQLAlchemy adapter over verification_records."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, record_id: str) -> VerificationRecord | None:
        query = f"SELECT {_COLUMNS} FROM verification_records WHERE id = :id"
        try:
            result = await self._session.execute(text(query), {"id": record_id})
            row = result.fetchone()
            columns = result.keys()
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailableError(f"get({record_id}) failed: {exc}") from exc
        if row is None:
            return None
        return _row_to_record(dict(zip(columns, row)))

    async def list_records(
        self,
        goal_id: str,
        start: datetime | None = None,
        end_exclusive: datetime | None = None,
    ) -> list[VerificationRecord]:
        """Records of a goal with created_at in [start, end_exclusive), oldest first."""
        query = f"SELECT {_COLUMNS} FROM verification_records WHERE goal_id = :goal_id"
        params: dict[str, Any] = {"goal_id": goal_id}
        if start is not None:
            query += " AND created_at >= :start"
            params["start"] = to_utc(start)
        if end_exclusive is not None:
            query += " AND created_at < :end"
            params["end"] = to_utc(end_exclusive)
        query += " ORDER BY created_at"

        try:
            result = await self._session.execute(text(query), params)
            columns = result.keys()
            rows = [dict(zip(columns, r)) for r in result.fetchall()]
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailableError(f"list_records({goal_id}) failed: {exc}") from exc
        return [_row_to_record(r) for r in rows]

    async def write_many(self, records: Sequence[VerificationRecord]) -> None:
        if not records:
            return
        stmt = text(
            f"INSERT INTO verification_records ({_COLUMNS}) "
            "VALUES (:id, :goal_id, :created_at, CAST(:signals AS JSONB), :auto_pass, :final_pass, :is_duplicate) "
            "ON CONFLICT (id) DO UPDATE SET is_duplicate = EXCLUDED.is_duplicate"
        )
        params = [
            {
                "id": r.id,
                "goal_id": r.goal_id,
                "created_at": to_utc(r.created_at),
                "signals": r.signals.model_dump_json(by_alias=True, exclude_none=True),
                "auto_pass": r.auto_pass,
                "final_pass": r.final_pass,
                "is_duplicate": r.is_duplicate,
            }
            for r in records
        ]
        try:
            await self._session.execute(stmt, params)
            await self._session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailableError(f"write_many({len(records)}) failed: {exc}") from exc
        logger.debug("Wrote %d verification record(s)", len(records))

    async def delete_many(self, record_ids: Sequence[str]) -> None:
        if not record_ids:
            return
        stmt = text("DELETE FROM verification_records WHERE id IN :ids").bindparams(
            bindparam("ids", expanding=True)
        )
        try:
            await self._session.execute(stmt, {"ids": list(record_ids)})
            await self._session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailableError(f"delete_many({len(record_ids)}) failed: {exc}") from exc


class InMemoryVerificationStore:
    """Dict-backed store with the same read-after-write semantics."""

    def __init__(self, records: Sequence[VerificationRecord] | None = None) -> None:
        self._records: dict[str, VerificationRecord] = {}
        for record in records or []:
            self._records[record.id] = record

    async def get(self, record_id: str) -> VerificationRecord | None:
        return self._records.get(record_id)

    async def list_records(
        self,
        goal_id: str,
        start: datetime | None = None,
        end_exclusive: datetime | None = None,
    ) -> list[VerificationRecord]:
        matches = []
        for record in self._records.values():
            if record.goal_id != goal_id:
                continue
            ts = to_utc(record.created_at)
            if start is not None and ts < to_utc(start):
                continue
            if end_exclusive is not None and ts >= to_utc(end_exclusive):
                continue
            matches.append(record)
        return sorted(matches, key=lambda r: to_utc(r.created_at))

    async def write_many(self, records: Sequence[VerificationRecord]) -> None:
        for record in records:
            self._records[record.id] = record

    async def delete_many(self, record_ids: Sequence[str]) -> None:
        for record_id in record_ids:
            self._records.pop(record_id, None)
