#!/usr/bin/env python3
"""
Seed the incidents database with synthetic reports.

Commands:
  seed      N random incidents clustered around five NYC hotspot areas,
            timestamped within the last 30 days
  scenario  fixed patterns: 15 recent thefts, 10 night-time assaults,
            8 weekend vandalism reports
  clear     delete every incident whose user id starts with "mock-user-id-"

Usage:
  python scripts/generate_mock_incidents.py seed --count 200
  python scripts/generate_mock_incidents.py scenario
  python scripts/generate_mock_incidents.py clear
"""

import argparse
import asyncio
import logging
import math
import random
import sys
from datetime import datetime, timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "backend"))

from config import DATABASE_PATH  # noqa: E402
from incident_store import SQLiteIncidentStore  # noqa: E402
from models import IncidentCreate  # noqa: E402

logging.basicConfig(level=logging.INFO, format="%(asctime)s  %(message)s")
logger = logging.getLogger("riskmap.seed")

MOCK_USER_PREFIX = "mock-user-id-"

INCIDENT_TYPES = [
    "theft",
    "assault",
    "vandalism",
    "suspicious person",
    "burglary",
    "harassment",
    "drug activity",
    "vehicle theft",
]

DESCRIPTIONS = [
    "Suspicious person loitering",
    "Vehicle break-in reported",
    "Graffiti on building",
    "Fight in progress",
    "Stolen bicycle",
    "Harassment at bus stop",
    "Drug deal observed",
    "Car window smashed",
    "Purse snatching",
    "Suspicious package",
]

HOTSPOT_AREAS = [
    (40.7128, -74.0060, "Downtown NYC"),
    (40.7589, -73.9851, "Times Square"),
    (40.7505, -73.9934, "Penn Station"),
    (40.7484, -73.9857, "Madison Square Garden"),
    (40.7527, -73.9772, "Grand Central"),
]


def random_location(rng: random.Random, center_lat: float, center_lon: float,
                    radius_km: float = 2.0) -> tuple[float, float]:
    lat_offset = (rng.random() - 0.5) * (radius_km / 111)  # 1° latitude ≈ 111 km
    lon_offset = (rng.random() - 0.5) * (radius_km / (111 * math.cos(math.radians(center_lat))))
    return center_lat + lat_offset, center_lon + lon_offset


def random_timestamp(rng: random.Random, now: datetime, days: int = 30) -> datetime:
    return now - timedelta(seconds=rng.random() * days * 86400)


def build_mock_incidents(count: int, rng: random.Random, now: datetime) -> list[IncidentCreate]:
    incidents = []
    for _ in range(count):
        lat0, lon0, _name = rng.choice(HOTSPOT_AREAS)
        lat, lon = random_location(rng, lat0, lon0)
        incidents.append(IncidentCreate(
            type=rng.choice(INCIDENT_TYPES),
            description=rng.choice(DESCRIPTIONS),
            latitude=lat,
            longitude=lon,
            timestamp=random_timestamp(rng, now),
            userId=f"{MOCK_USER_PREFIX}{rng.randrange(10)}",
        ))
    return incidents


def build_test_scenario(rng: random.Random, now: datetime) -> list[IncidentCreate]:
    incidents = []

    # High-risk area: many recent thefts
    for _ in range(15):
        incidents.append(IncidentCreate(
            type="theft",
            description="Recent theft incident",
            latitude=40.7128 + (rng.random() - 0.5) * 0.01,
            longitude=-74.0060 + (rng.random() - 0.5) * 0.01,
            timestamp=now - timedelta(seconds=rng.random() * 7 * 86400),
            userId=f"{MOCK_USER_PREFIX}1",
        ))

    # Night-time assaults, 22:00–05:59
    for _ in range(10):
        day = random_timestamp(rng, now)
        night = (day.replace(hour=22, minute=0, second=0, microsecond=0)
                 + timedelta(minutes=rng.randrange(8 * 60)))
        while night > now:
            night -= timedelta(days=1)
        incidents.append(IncidentCreate(
            type="assault",
            description="Night-time incident",
            latitude=40.7589 + (rng.random() - 0.5) * 0.01,
            longitude=-73.9851 + (rng.random() - 0.5) * 0.01,
            timestamp=night,
            userId=f"{MOCK_USER_PREFIX}2",
        ))

    # Weekend vandalism
    for _ in range(8):
        day = random_timestamp(rng, now)
        saturday = day - timedelta(days=(day.weekday() - 5) % 7)
        weekend_day = saturday + timedelta(days=rng.randrange(2))
        if weekend_day > now:
            weekend_day -= timedelta(days=7)
        incidents.append(IncidentCreate(
            type="vandalism",
            description="Weekend vandalism",
            latitude=40.7505 + (rng.random() - 0.5) * 0.01,
            longitude=-73.9934 + (rng.random() - 0.5) * 0.01,
            timestamp=weekend_day,
            userId=f"{MOCK_USER_PREFIX}3",
        ))

    return incidents


async def _run(args) -> None:
    store = SQLiteIncidentStore(args.db)
    rng = random.Random(args.seed)
    now = datetime.now()

    if args.command == "seed":
        records = await store.add_many(build_mock_incidents(args.count, rng, now))
        logger.info(f"Generated {len(records)} mock incidents in {args.db}")
        logger.info("Hotspot areas used:")
        for lat, lon, name in HOTSPOT_AREAS:
            logger.info(f"  - {name}: {lat}, {lon}")
    elif args.command == "scenario":
        records = await store.add_many(build_test_scenario(rng, now))
        logger.info(f"Generated {len(records)} test scenario incidents in {args.db}")
    elif args.command == "clear":
        deleted = await store.delete_by_user_prefix(MOCK_USER_PREFIX)
        logger.info(f"Cleared {deleted} mock incidents from {args.db}")


def main():
    parser = argparse.ArgumentParser(description="Seed the incidents database with mock data")
    parser.add_argument("command", choices=["seed", "scenario", "clear"])
    parser.add_argument("--count", type=int, default=50, help="incidents to generate (seed)")
    parser.add_argument("--db", default=DATABASE_PATH, help="SQLite database path")
    parser.add_argument("--seed", type=int, default=None, help="random seed")
    args = parser.parse_args()
    asyncio.run(_run(args))


if __name__ == "__main__":
    main()
