"""Riskmap Backend — Risk service (map scan, point query, model status)

One RiskService is built per application and handed to the HTTP layer.
It owns the refinement-model cell; everything else is recomputed from a
fresh incident snapshot on every call.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from config import (
    DEFAULT_RADIUS_KM,
    ENABLE_REFINEMENT,
    GRID_STEP_DEG,
    MAX_GRID_POINTS,
    MAX_HOTSPOTS,
    MIN_HOTSPOT_SCORE,
    RISK_LEVELS,
)
from features import IncidentSnapshot, LocalFeatures
from grid import bounds_from_incidents, generate_grid
from incident_store import IncidentStore
from ml_model import RefinementModel, TrainingOutcome
from models import (
    BoundingBox,
    IncidentRecord,
    Location,
    MapSummary,
    ModelStatus,
    PredictionStats,
    RiskDistribution,
    RiskFactors,
    RiskScore,
)
from scoring import Scorer, ScoreResult, classify_risk_level, round_half_up
from temporal import WEEKEND_MULTIPLIER, is_weekend, time_risk

logger = logging.getLogger("riskmap.service")


class RiskDataUnavailable(Exception):
    """The incident store could not be read; no partial result is returned."""


class GridTooLarge(ValueError):
    """Requested bounds would produce more grid points than the scan allows."""


def build_risk_score(lat: float, lon: float, local: LocalFeatures, result: ScoreResult,
                     now: datetime) -> RiskScore:
    return RiskScore(
        location=Location(latitude=lat, longitude=lon),
        riskScore=result.rounded,
        riskLevel=classify_risk_level(result.score),
        confidence=result.confidence,
        scoreSource=result.source,
        factors=RiskFactors(
            incidentCount=local.incident_count,
            recentIncidents=local.recent_count,
            timeOfDayRisk=time_risk(now),
            dayOfWeekRisk=WEEKEND_MULTIPLIER if is_weekend(now) else 1.0,
        ),
        features=local.features.as_dict(),
    )


def overall_risk_level(hotspots: list[RiskScore]) -> str:
    if not hotspots:
        return "low"
    avg = sum(h.riskScore for h in hotspots) / len(hotspots)
    return classify_risk_level(avg)


def average_confidence(hotspots: list[RiskScore]) -> float:
    if not hotspots:
        return 0.0
    return round(sum(h.confidence for h in hotspots) / len(hotspots), 3)


class RiskService:
    def __init__(
        self,
        store: IncidentStore,
        refinement: Optional[RefinementModel] = None,
        clock: Callable[[], datetime] = datetime.now,
        radius_km: float = DEFAULT_RADIUS_KM,
        grid_step: float = GRID_STEP_DEG,
        enable_refinement: bool = ENABLE_REFINEMENT,
        max_grid_points: int = MAX_GRID_POINTS,
    ):
        self.store = store
        self.refinement = refinement or RefinementModel(radius_km=radius_km)
        self.scorer = Scorer(self.refinement)
        self.clock = clock
        self.radius_km = radius_km
        self.grid_step = grid_step
        self.enable_refinement = enable_refinement
        self.max_grid_points = max_grid_points

    async def _load_incidents(self, what: str) -> list[IncidentRecord]:
        try:
            return await self.store.find_all()
        except Exception as e:
            logger.error(f"Error loading incidents for {what}: {e}")
            raise RiskDataUnavailable(f"{what} data unavailable") from e

    async def refresh_model(self, snapshot: IncidentSnapshot) -> Optional[TrainingOutcome]:
        """Retrain the refinement model in a worker thread if it is due."""
        if not self.enable_refinement or not self.refinement.needs_training(snapshot.now):
            return None
        return await asyncio.to_thread(self.refinement.train, snapshot)

    def score_point(self, snapshot: IncidentSnapshot, lat: float, lon: float) -> RiskScore:
        local = snapshot.extract(lat, lon, self.radius_km)
        result = self.scorer.score(local.features)
        return build_risk_score(lat, lon, local, result, snapshot.now)

    def _scan(self, snapshot: IncidentSnapshot, grid) -> tuple[list[RiskScore], int]:
        scored = (self.score_point(snapshot, p.lat, p.lon) for p in grid)
        significant = [h for h in scored if h.riskScore > MIN_HOTSPOT_SCORE]
        # sorted() is stable: equal scores keep grid order
        hotspots = sorted(significant, key=lambda h: -h.riskScore)[:MAX_HOTSPOTS]
        return hotspots, len(significant)

    def _grid_for(self, bounds: Optional[BoundingBox], incidents: list[IncidentRecord]):
        if bounds is not None:
            grid = generate_grid(bounds, self.grid_step)
            if len(grid) > self.max_grid_points:
                raise GridTooLarge(
                    f"Bounds cover {len(grid)} grid points (limit {self.max_grid_points})"
                )
            return grid

        # Auto bounds follow the data, so widely spread incidents get a coarser step
        bounds = bounds_from_incidents(incidents)
        step = self.grid_step
        grid = generate_grid(bounds, step)
        while len(grid) > self.max_grid_points:
            step *= 2
            grid = generate_grid(bounds, step)
        if step != self.grid_step:
            logger.info(f"Auto bounds coarsened to step {step:g}° ({len(grid)} points)")
        return grid

    async def get_map_data(self, bounds: Optional[BoundingBox] = None) -> MapSummary:
        incidents = await self._load_incidents("map")
        if not incidents:
            return MapSummary(hotspots=[], overallRiskLevel="low", totalIncidents=0)

        grid = self._grid_for(bounds, incidents)
        snapshot = IncidentSnapshot(incidents, self.clock())
        await self.refresh_model(snapshot)

        hotspots, n_significant = await asyncio.to_thread(self._scan, snapshot, grid)

        logger.info(
            f"Map scan: {len(incidents)} incidents, {len(grid)} grid points, "
            f"{n_significant} significant, {len(hotspots)} returned"
        )
        return MapSummary(
            hotspots=hotspots,
            overallRiskLevel=overall_risk_level(hotspots),
            totalIncidents=len(incidents),
            averageConfidence=average_confidence(hotspots),
        )

    async def get_location_risk(self, lat: float, lon: float) -> RiskScore:
        incidents = await self._load_incidents("location")
        snapshot = IncidentSnapshot(incidents, self.clock())
        return self.score_point(snapshot, lat, lon)

    def get_model_status(self) -> ModelStatus:
        return self.refinement.status()

    async def get_prediction_stats(self) -> PredictionStats:
        summary = await self.get_map_data()
        distribution = {level: 0 for level in RISK_LEVELS}
        for h in summary.hotspots:
            distribution[h.riskLevel] += 1
        avg = (
            round_half_up(sum(h.riskScore for h in summary.hotspots) / len(summary.hotspots))
            if summary.hotspots else 0
        )
        return PredictionStats(
            totalIncidents=summary.totalIncidents,
            totalHotspots=len(summary.hotspots),
            overallRiskLevel=summary.overallRiskLevel,
            riskDistribution=RiskDistribution(**distribution),
            averageRiskScore=avg,
        )

    async def on_incident_added(self, incident: IncidentRecord) -> Optional[TrainingOutcome]:
        """Hook for newly stored incidents: retrain if the model is stale."""
        logger.info(f"New incident {incident.id} ({incident.type}) recorded")
        if not self.enable_refinement or not self.refinement.needs_training(self.clock()):
            return None
        incidents = await self._load_incidents("training")
        return await self.refresh_model(IncidentSnapshot(incidents, self.clock()))
