#!/usr/bin/env python3
"""
Risk service tests: map scan, point query, refinement model lifecycle.

Tests:
  1. Empty incident set — explicit empty summary, no grid work
  2. End-to-end dense theft cluster — high/critical, 15 recent incidents
  3. Far incident — contributes nothing to density; weekend-night .5 scores round up
  4. Map scan — filtering, ordering, truncation, idempotence, grid size limit
  5. Store ordering is irrelevant to the result
  6. Store failure — opaque RiskDataUnavailable, never partial results
  7. Refinement model — thresholds, retrain interval, busy guard, kept on failure
  8. Prediction failure — rule-based fallback with reduced confidence
  9. Status probe and prediction stats

Run:  pytest backend/test_risk_service.py
"""

import asyncio
import random
from datetime import datetime, timedelta

import pytest

from config import MAX_HOTSPOTS, MIN_HOTSPOT_SCORE
from features import IncidentSnapshot
from incident_store import InMemoryIncidentStore
from ml_model import RefinementModel
from models import BoundingBox, IncidentRecord
from risk_service import GridTooLarge, RiskDataUnavailable, RiskService
from scoring import round_half_up

NOW = datetime(2024, 5, 15, 12, 0)  # Wednesday
NYC = (40.7128, -74.0060)
MIDTOWN = (40.80, -73.95)


def make_incident(lat, lon, ts, type="theft") -> IncidentRecord:
    return IncidentRecord(type=type, description="", latitude=lat, longitude=lon, timestamp=ts)


def cluster(center, n, now=NOW, seed=1, type="theft", spacing=timedelta(minutes=30)):
    rng = random.Random(seed)
    return [
        make_incident(
            center[0] + (rng.random() - 0.5) * 0.01,
            center[1] + (rng.random() - 0.5) * 0.01,
            now - spacing * (i + 1),
            type=type,
        )
        for i in range(n)
    ]


def make_service(incidents, **kwargs) -> RiskService:
    kwargs.setdefault("clock", lambda: NOW)
    return RiskService(InMemoryIncidentStore(incidents), **kwargs)


class FailingStore:
    async def find_all(self):
        raise ConnectionError("database unreachable")


class ReversedStore:
    """Returns incidents oldest-first instead of newest-first."""

    def __init__(self, incidents):
        self.incidents = incidents

    async def find_all(self):
        return sorted(self.incidents, key=lambda r: r.timestamp)


class BrokenBooster:
    def predict(self, dmat):
        raise RuntimeError("corrupt booster")


def run(coro):
    return asyncio.run(coro)


# ─────────────────────────────────────────────────────────────────
# Map aggregator
# ─────────────────────────────────────────────────────────────────

def test_empty_incident_set_gives_empty_summary():
    summary = run(make_service([]).get_map_data())
    assert summary.model_dump() == {"hotspots": [], "overallRiskLevel": "low", "totalIncidents": 0}


def test_empty_incident_set_with_bounds():
    bounds = BoundingBox(north=41, south=40, east=-73, west=-74)
    summary = run(make_service([]).get_map_data(bounds))
    assert summary.hotspots == []
    assert summary.totalIncidents == 0


def test_map_hotspots_are_filtered_sorted_and_bounded():
    incidents = cluster(NYC, 15) + cluster(MIDTOWN, 4, seed=2, spacing=timedelta(days=3))
    summary = run(make_service(incidents, enable_refinement=False).get_map_data())

    assert summary.totalIncidents == 19
    assert 0 < len(summary.hotspots) <= MAX_HOTSPOTS
    scores = [h.riskScore for h in summary.hotspots]
    assert scores == sorted(scores, reverse=True)
    assert all(s > MIN_HOTSPOT_SCORE for s in scores)
    assert summary.hotspots[0].riskLevel in ("high", "critical")
    assert summary.overallRiskLevel in ("low", "medium", "high", "critical")


def test_map_truncates_to_top_fifty():
    # A wide cluster lights up far more than 50 grid cells
    incidents = []
    for i in range(8):
        for j in range(8):
            center = (NYC[0] + i * 0.01, NYC[1] + j * 0.01)
            incidents += cluster(center, 2, seed=i * 8 + j)
    summary = run(make_service(incidents, enable_refinement=False).get_map_data())
    assert len(summary.hotspots) == MAX_HOTSPOTS


def test_map_ties_keep_grid_order():
    incidents = cluster(NYC, 15)
    summary = run(make_service(incidents, enable_refinement=False).get_map_data())
    for a, b in zip(summary.hotspots, summary.hotspots[1:]):
        if a.riskScore == b.riskScore:
            key_a = (a.location.latitude, a.location.longitude)
            key_b = (b.location.latitude, b.location.longitude)
            assert key_a < key_b


def test_map_with_degenerate_bounds_has_no_hotspots():
    bounds = BoundingBox(north=40.0, south=41.0, east=-73.0, west=-74.0)
    summary = run(make_service(cluster(NYC, 15), enable_refinement=False).get_map_data(bounds))
    assert summary.hotspots == []
    assert summary.overallRiskLevel == "low"
    assert summary.totalIncidents == 15


def test_map_is_idempotent():
    incidents = cluster(NYC, 15) + cluster(MIDTOWN, 6, seed=5, type="assault")
    service = make_service(incidents, enable_refinement=False)
    bounds = BoundingBox(north=40.83, south=40.69, east=-73.93, west=-74.03)
    first = run(service.get_map_data(bounds))
    second = run(service.get_map_data(bounds))
    assert first == second
    assert [h.location for h in first.hotspots] == [h.location for h in second.hotspots]


def test_oversized_bounds_are_rejected():
    service = make_service(cluster(NYC, 15), enable_refinement=False)
    world = BoundingBox(north=90, south=-90, east=180, west=-180)
    with pytest.raises(GridTooLarge):
        run(service.get_map_data(world))


def test_auto_bounds_coarsen_to_grid_limit():
    incidents = cluster(NYC, 10) + cluster(MIDTOWN, 10, seed=3)
    service = make_service(incidents, enable_refinement=False, max_grid_points=20)
    summary = run(service.get_map_data())
    assert summary.totalIncidents == 20
    assert len(summary.hotspots) <= 20


def test_map_reports_average_confidence():
    summary = run(make_service(cluster(NYC, 15), enable_refinement=False).get_map_data())
    assert summary.hotspots
    assert summary.averageConfidence == 0.5


def test_store_order_does_not_matter():
    incidents = cluster(NYC, 12) + cluster(MIDTOWN, 7, seed=9, spacing=timedelta(hours=9))
    ordered = run(make_service(incidents, enable_refinement=False).get_map_data())
    reversed_ = run(RiskService(ReversedStore(incidents), clock=lambda: NOW,
                                enable_refinement=False).get_map_data())
    assert ordered == reversed_


# ─────────────────────────────────────────────────────────────────
# Location query
# ─────────────────────────────────────────────────────────────────

def test_dense_theft_cluster_is_high_risk():
    risk = run(make_service(cluster(NYC, 15)).get_location_risk(*NYC))
    assert risk.riskLevel in ("high", "critical")
    assert risk.factors.recentIncidents == 15
    assert risk.factors.incidentCount == 15
    assert risk.location.latitude == NYC[0]
    assert risk.scoreSource == "rule"
    assert risk.confidence == 0.5


def test_incident_50km_away_does_not_count():
    far = make_incident(NYC[0] + 0.45, NYC[1], NOW - timedelta(hours=2))
    risk = run(make_service([far]).get_location_risk(*NYC))
    assert risk.features["incidentDensity"] == 0
    assert risk.factors.incidentCount == 0


def test_location_risk_with_no_incidents():
    risk = run(make_service([]).get_location_risk(*NYC))
    # Only the current-time term contributes: 1.0 × 10 on a weekday noon
    assert risk.riskScore == 10
    assert risk.riskLevel == "low"
    assert risk.factors.timeOfDayRisk == 1.0
    assert risk.factors.dayOfWeekRisk == 1.0


def test_weekend_night_half_scores_round_up():
    # 2.5 night × 1.3 weekend × 10 = 32.5 with nothing nearby
    saturday_night = datetime(2024, 5, 18, 23, 0)
    risk = run(make_service([], clock=lambda: saturday_night).get_location_risk(*NYC))
    assert risk.features["currentTimeRisk"] * 10 == pytest.approx(32.5)
    assert risk.riskScore == 33
    assert risk.riskLevel == "medium"


def test_location_risk_does_not_train():
    incidents = cluster(NYC, 10) + cluster(MIDTOWN, 10, seed=3)
    service = make_service(incidents)
    run(service.get_location_risk(*NYC))
    assert service.get_model_status().trained is False


# ─────────────────────────────────────────────────────────────────
# Store failure
# ─────────────────────────────────────────────────────────────────

def test_store_failure_is_opaque():
    service = RiskService(FailingStore(), clock=lambda: NOW)
    with pytest.raises(RiskDataUnavailable) as exc:
        run(service.get_map_data())
    assert isinstance(exc.value.__cause__, ConnectionError)
    with pytest.raises(RiskDataUnavailable):
        run(service.get_location_risk(*NYC))


# ─────────────────────────────────────────────────────────────────
# Refinement model
# ─────────────────────────────────────────────────────────────────

def test_model_trains_on_map_scan_and_is_shared():
    incidents = cluster(NYC, 10) + cluster(MIDTOWN, 10, seed=3)
    service = make_service(incidents)
    assert service.get_model_status().trained is False

    summary = run(service.get_map_data())
    status = service.get_model_status()
    assert status.trained is True
    assert status.modelType == "xgboost"
    assert status.lastTrainedAt == NOW
    assert status.trainingSamples >= 5
    assert summary.hotspots
    assert all(h.scoreSource == "model" for h in summary.hotspots)
    assert all(0 <= h.riskScore <= 100 for h in summary.hotspots)

    # The point query uses the same trained model
    risk = run(service.get_location_risk(*NYC))
    assert risk.scoreSource == "model"
    assert risk.confidence == pytest.approx(0.9)


def test_trained_map_is_idempotent():
    incidents = cluster(NYC, 10) + cluster(MIDTOWN, 10, seed=3)
    service = make_service(incidents)
    first = run(service.get_map_data())
    second = run(service.get_map_data())
    assert first == second


def test_too_few_incidents_keeps_rule_scoring():
    service = make_service(cluster(NYC, 9) + cluster(MIDTOWN, 0))
    summary = run(service.get_map_data())
    assert service.get_model_status().trained is False
    assert all(h.scoreSource == "rule" for h in summary.hotspots)


def test_too_few_training_samples():
    # One tight cluster spans a 2×2 training grid only
    snapshot = IncidentSnapshot(cluster(NYC, 15), NOW)
    outcome = RefinementModel().train(snapshot)
    assert outcome.trained is False
    assert outcome.reason == "insufficient_samples"
    assert outcome.n_samples == 4


def test_too_few_incidents_outcome():
    outcome = RefinementModel().train(IncidentSnapshot(cluster(NYC, 9), NOW))
    assert outcome.reason == "insufficient_incidents"


def test_retrain_interval():
    model = RefinementModel()
    assert model.needs_training(NOW)
    model.install(object(), NOW - timedelta(hours=1), 10)
    assert not model.needs_training(NOW)
    model.install(object(), NOW - timedelta(hours=25), 10)
    assert model.needs_training(NOW)


def test_concurrent_training_is_skipped():
    model = RefinementModel()
    snapshot = IncidentSnapshot(cluster(NYC, 10) + cluster(MIDTOWN, 10, seed=3), NOW)
    model._train_lock.acquire()
    try:
        outcome = model.train(snapshot)
    finally:
        model._train_lock.release()
    assert outcome.reason == "busy"
    assert not model.is_trained


def test_previous_model_survives_failed_retrain():
    model = RefinementModel()
    sentinel = object()
    model.install(sentinel, NOW - timedelta(days=2), 42)
    outcome = model.train(IncidentSnapshot(cluster(NYC, 3), NOW))
    assert outcome.trained is False
    assert model.current.booster is sentinel
    assert model.status().trainingSamples == 42


def test_prediction_failure_falls_back_to_rule():
    service = make_service(cluster(NYC, 15))
    service.refinement.install(BrokenBooster(), NOW, 10)
    risk = run(service.get_location_risk(*NYC))
    assert risk.scoreSource == "rule"
    assert risk.confidence == 0.3
    assert risk.riskLevel in ("high", "critical")


def test_new_incident_triggers_stale_retrain():
    incidents = cluster(NYC, 10) + cluster(MIDTOWN, 10, seed=3)
    service = make_service(incidents)
    outcome = run(service.on_incident_added(incidents[0]))
    assert outcome.trained is True
    assert service.get_model_status().trained is True
    # Fresh model: no second training
    assert run(service.on_incident_added(incidents[1])) is None


def test_refinement_can_be_disabled():
    incidents = cluster(NYC, 10) + cluster(MIDTOWN, 10, seed=3)
    service = make_service(incidents, enable_refinement=False)
    run(service.get_map_data())
    assert service.get_model_status().modelType == "rule-based"


# ─────────────────────────────────────────────────────────────────
# Stats
# ─────────────────────────────────────────────────────────────────

def test_prediction_stats():
    incidents = cluster(NYC, 15) + cluster(MIDTOWN, 4, seed=2, spacing=timedelta(days=3))
    service = make_service(incidents, enable_refinement=False)
    stats = run(service.get_prediction_stats())
    summary = run(service.get_map_data())

    assert stats.totalIncidents == 19
    assert stats.totalHotspots == len(summary.hotspots)
    assert stats.overallRiskLevel == summary.overallRiskLevel
    dist = stats.riskDistribution
    assert dist.low + dist.medium + dist.high + dist.critical == stats.totalHotspots
    expected_avg = round_half_up(sum(h.riskScore for h in summary.hotspots) / len(summary.hotspots))
    assert stats.averageRiskScore == expected_avg


def test_prediction_stats_empty():
    stats = run(make_service([]).get_prediction_stats())
    assert stats.totalHotspots == 0
    assert stats.averageRiskScore == 0
    assert stats.overallRiskLevel == "low"
