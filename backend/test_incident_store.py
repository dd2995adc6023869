#!/usr/bin/env python3
"""
Incident store adapter tests (SQLite + in-memory).

Run:  pytest backend/test_incident_store.py
"""

import asyncio
import sqlite3
from datetime import datetime, timedelta, timezone

from incident_store import InMemoryIncidentStore, SQLiteIncidentStore
from models import IncidentCreate, IncidentRecord
from risk_service import RiskService

NOW = datetime(2024, 5, 15, 12, 0)


def run(coro):
    return asyncio.run(coro)


def report(ts: datetime, type: str = "theft", user: str = "user-1") -> IncidentCreate:
    return IncidentCreate(type=type, description="x", latitude=40.7128, longitude=-74.006,
                          timestamp=ts, userId=user)


def test_sqlite_round_trip_newest_first(tmp_path):
    store = SQLiteIncidentStore(str(tmp_path / "incidents.db"))
    older = run(store.add(report(NOW - timedelta(days=2))))
    newer = run(store.add(report(NOW - timedelta(hours=1), type="assault")))

    records = run(store.find_all())
    assert [r.id for r in records] == [newer.id, older.id]
    assert records[0] == newer
    assert run(store.get(older.id)) == older
    assert run(store.get("missing")) is None


def test_sqlite_creates_parent_directory(tmp_path):
    db = tmp_path / "nested" / "dir" / "incidents.db"
    store = SQLiteIncidentStore(str(db))
    store.initialize()
    assert db.exists()
    assert run(store.find_all()) == []


def test_sqlite_skips_malformed_rows(tmp_path):
    db = str(tmp_path / "incidents.db")
    store = SQLiteIncidentStore(db)
    good = run(store.add(report(NOW)))

    conn = sqlite3.connect(db)
    with conn:
        conn.execute(
            "INSERT INTO incidents (id, type, description, lat, lng, timestamp) "
            "VALUES ('bad', 'theft', '', 40.7, -74.0, 'not-a-date')"
        )
    conn.close()

    assert [r.id for r in run(store.find_all())] == [good.id]


def test_sqlite_delete_by_user_prefix(tmp_path):
    store = SQLiteIncidentStore(str(tmp_path / "incidents.db"))
    run(store.add_many([report(NOW, user="mock-user-id-1"), report(NOW, user="mock-user-id-7")]))
    keep = run(store.add(report(NOW, user="real-user")))

    assert run(store.delete_by_user_prefix("mock-user-id-")) == 2
    assert [r.id for r in run(store.find_all())] == [keep.id]


def test_sqlite_store_feeds_the_service(tmp_path):
    store = SQLiteIncidentStore(str(tmp_path / "incidents.db"))
    run(store.add_many([report(NOW - timedelta(minutes=10 * i)) for i in range(1, 16)]))
    service = RiskService(store, clock=lambda: NOW, enable_refinement=False)
    risk = run(service.get_location_risk(40.7128, -74.006))
    assert risk.factors.recentIncidents == 15
    assert risk.riskLevel == "critical"


def test_aware_timestamps_become_naive_local():
    aware = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)
    record = IncidentRecord(type="theft", latitude=0, longitude=0, timestamp=aware)
    assert record.timestamp.tzinfo is None
    assert record.timestamp == aware.astimezone().replace(tzinfo=None)


def test_missing_timestamp_defaults_to_now():
    store = InMemoryIncidentStore()
    before = datetime.now()
    record = run(store.add(IncidentCreate(type="theft", latitude=1.0, longitude=2.0)))
    assert record.timestamp >= before
    assert record.id


def test_in_memory_store_orders_newest_first():
    store = InMemoryIncidentStore()
    a = run(store.add(report(NOW - timedelta(days=1))))
    b = run(store.add(report(NOW)))
    assert [r.id for r in run(store.find_all())] == [b.id, a.id]
    assert run(store.get(a.id)) == a
