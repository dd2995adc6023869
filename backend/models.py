"""Riskmap Backend — Pydantic Models"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

RiskLevel = Literal["low", "medium", "high", "critical"]


def _to_local_naive(ts: datetime) -> datetime:
    """Aware timestamps become naive local time; naive ones pass through."""
    if ts.tzinfo is not None:
        return ts.astimezone().replace(tzinfo=None)
    return ts


class IncidentCreate(BaseModel):
    type: str = Field(min_length=1)
    description: str = ""
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    timestamp: Optional[datetime] = None  # defaults to "now" when stored
    userId: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _to_local_naive(v) if v is not None else None


class IncidentRecord(BaseModel):
    """A stored incident report. Read-only to the scoring engine.

    Coordinates are deliberately not range-checked here: rows come from the
    store as-is and the engine tolerates odd values.
    """
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    type: str
    description: str = ""
    latitude: float
    longitude: float
    timestamp: datetime
    userId: Optional[str] = None
    status: str = "pending"

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, v: datetime) -> datetime:
        return _to_local_naive(v)


class BoundingBox(BaseModel):
    north: float
    south: float
    east: float
    west: float


class Location(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float


class RiskFactors(BaseModel):
    model_config = ConfigDict(frozen=True)

    incidentCount: int
    recentIncidents: int
    timeOfDayRisk: float
    dayOfWeekRisk: float


class RiskScore(BaseModel):
    model_config = ConfigDict(frozen=True)

    location: Location
    riskScore: int = Field(ge=0, le=100)
    riskLevel: RiskLevel
    confidence: float
    scoreSource: Literal["rule", "model"]
    factors: RiskFactors
    features: dict[str, float]


class MapSummary(BaseModel):
    hotspots: list[RiskScore]
    overallRiskLevel: RiskLevel
    totalIncidents: int
    averageConfidence: float = 0.0   # mean confidence of returned hotspots


class ModelStatus(BaseModel):
    trained: bool
    lastTrainedAt: Optional[datetime] = None
    modelType: str  # "xgboost" or "rule-based"
    trainingSamples: int = 0


class RiskDistribution(BaseModel):
    low: int = 0
    medium: int = 0
    high: int = 0
    critical: int = 0


class PredictionStats(BaseModel):
    totalIncidents: int
    totalHotspots: int
    overallRiskLevel: RiskLevel
    riskDistribution: RiskDistribution
    averageRiskScore: int


class IncidentCreatedResponse(BaseModel):
    message: str
    incident: IncidentRecord
