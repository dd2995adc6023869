"""Riskmap Backend — Incident store adapters

The scoring engine only ever calls ``find_all()``. Rows are validated into
IncidentRecord here; a row that cannot be parsed is logged and skipped
instead of leaking into the engine.
"""

import asyncio
import logging
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

from pydantic import ValidationError

from models import IncidentCreate, IncidentRecord

logger = logging.getLogger("riskmap.store")


class IncidentStore(Protocol):
    async def find_all(self) -> list[IncidentRecord]: ...

    async def add(self, incident: IncidentCreate) -> IncidentRecord: ...

    async def get(self, incident_id: str) -> Optional[IncidentRecord]: ...


def _newest_first(records: list[IncidentRecord]) -> list[IncidentRecord]:
    return sorted(records, key=lambda r: r.timestamp, reverse=True)


def _record_from_create(incident: IncidentCreate, incident_id: str) -> IncidentRecord:
    return IncidentRecord(
        id=incident_id,
        type=incident.type,
        description=incident.description,
        latitude=incident.latitude,
        longitude=incident.longitude,
        timestamp=incident.timestamp or datetime.now(),
        userId=incident.userId,
    )


class InMemoryIncidentStore:
    """List-backed store, used by tests and the demo app."""

    def __init__(self, incidents: Optional[list[IncidentRecord]] = None):
        self._incidents: list[IncidentRecord] = list(incidents or [])

    async def find_all(self) -> list[IncidentRecord]:
        return _newest_first(self._incidents)

    async def add(self, incident: IncidentCreate) -> IncidentRecord:
        record = _record_from_create(incident, uuid.uuid4().hex)
        self._incidents.append(record)
        return record

    async def get(self, incident_id: str) -> Optional[IncidentRecord]:
        for record in self._incidents:
            if record.id == incident_id:
                return record
        return None


# ──────────────────────── SQLite ─────────────────────────

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS incidents (
        id          TEXT PRIMARY KEY,
        type        TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        lat         REAL NOT NULL,
        lng         REAL NOT NULL,
        timestamp   TEXT NOT NULL,
        user_id     TEXT,
        status      TEXT NOT NULL DEFAULT 'pending'
    );

    CREATE INDEX IF NOT EXISTS idx_incidents_timestamp
        ON incidents(timestamp);
"""

_COLUMNS = "id, type, description, lat, lng, timestamp, user_id, status"


def _row_to_record(row: tuple) -> Optional[IncidentRecord]:
    incident_id, itype, description, lat, lng, ts, user_id, status = row
    try:
        return IncidentRecord(
            id=incident_id,
            type=itype,
            description=description or "",
            latitude=lat,
            longitude=lng,
            timestamp=ts,
            userId=user_id,
            status=status or "pending",
        )
    except ValidationError as e:
        logger.warning(f"Skipping malformed incident row {incident_id}: {e.error_count()} error(s)")
        return None


class SQLiteIncidentStore:
    """Incidents in a single SQLite table. Queries run in a worker thread."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.executescript(_SCHEMA)
        return conn

    def initialize(self) -> None:
        conn = self._connect()
        conn.close()

    # ── sync implementations ──

    def _find_all(self) -> list[IncidentRecord]:
        conn = self._connect()
        try:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM incidents ORDER BY timestamp DESC"
            ).fetchall()
        finally:
            conn.close()
        records = [_row_to_record(r) for r in rows]
        return [r for r in records if r is not None]

    def _insert(self, records: list[IncidentRecord]) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.executemany(
                    f"INSERT INTO incidents ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    [
                        (r.id, r.type, r.description, r.latitude, r.longitude,
                         r.timestamp.isoformat(), r.userId, r.status)
                        for r in records
                    ],
                )
        finally:
            conn.close()

    def _get(self, incident_id: str) -> Optional[IncidentRecord]:
        conn = self._connect()
        try:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM incidents WHERE id = ?", (incident_id,)
            ).fetchone()
        finally:
            conn.close()
        return _row_to_record(row) if row else None

    def _delete_by_user_prefix(self, prefix: str) -> int:
        conn = self._connect()
        try:
            with conn:
                cur = conn.execute(
                    "DELETE FROM incidents WHERE user_id LIKE ?", (prefix + "%",)
                )
                return cur.rowcount
        finally:
            conn.close()

    # ── async interface ──

    async def find_all(self) -> list[IncidentRecord]:
        return await asyncio.to_thread(self._find_all)

    async def add(self, incident: IncidentCreate) -> IncidentRecord:
        record = _record_from_create(incident, uuid.uuid4().hex)
        await asyncio.to_thread(self._insert, [record])
        return record

    async def add_many(self, incidents: list[IncidentCreate]) -> list[IncidentRecord]:
        records = [_record_from_create(i, uuid.uuid4().hex) for i in incidents]
        await asyncio.to_thread(self._insert, records)
        return records

    async def get(self, incident_id: str) -> Optional[IncidentRecord]:
        return await asyncio.to_thread(self._get, incident_id)

    async def delete_by_user_prefix(self, prefix: str) -> int:
        return await asyncio.to_thread(self._delete_by_user_prefix, prefix)
