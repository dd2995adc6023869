"""Riskmap Backend — Time-of-day / day-of-week risk multipliers

Timestamps are read in whatever local representation they carry; no
timezone conversion happens here.
"""

from datetime import datetime

NIGHT_RISK = 2.5
EVENING_RISK = 1.8
EARLY_MORNING_RISK = 1.2
BASE_RISK = 1.0
WEEKEND_MULTIPLIER = 1.3


def is_night_hour(hour: int) -> bool:
    """10 PM through 6 AM, both ends inclusive."""
    return hour >= 22 or hour <= 6


def is_weekend(ts: datetime) -> bool:
    return ts.weekday() >= 5


def time_risk(ts: datetime) -> float:
    """Multiplicative risk weight for a moment in time (unbounded, > 0).

    Night is checked first, so 22:00 and 06:00 always resolve to the
    night weight.
    """
    hour = ts.hour
    if is_night_hour(hour):
        risk = NIGHT_RISK
    elif 18 <= hour < 22:
        risk = EVENING_RISK
    elif 6 <= hour <= 9:
        risk = EARLY_MORNING_RISK
    else:
        risk = BASE_RISK

    if is_weekend(ts):
        risk *= WEEKEND_MULTIPLIER
    return risk
