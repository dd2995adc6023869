"""Riskmap Backend — XGBoost refinement model

Trained in-process on synthetic labels: the rule formula evaluated over a
coarse grid spanning the incident set. The trained booster lives in a
single cell that is swapped atomically; scoring threads read whichever
model is installed and never see one that is half-built.

The model is an enhancement only. Everything here degrades to "not
trained", and the Scorer then answers with the rule formula.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import numpy as np

from config import (
    DEFAULT_RADIUS_KM,
    FEATURE_NAMES,
    MIN_TRAINING_INCIDENTS,
    MIN_TRAINING_SAMPLES,
    MODEL_RETRAIN_INTERVAL_HOURS,
    TRAINING_GRID_STEP_DEG,
)
from features import FeatureVector, IncidentSnapshot
from grid import bounds_from_incidents, generate_grid
from models import ModelStatus
from scoring import rule_based_score

logger = logging.getLogger("riskmap.model")

_XGB_PARAMS = {
    "objective": "reg:squarederror",
    "max_depth": 4,
    "learning_rate": 0.3,
    "min_child_weight": 1,
    "tree_method": "hist",
    "seed": 42,
}
_NUM_BOOST_ROUND = 50


@dataclass(frozen=True)
class TrainedModel:
    booster: object
    trained_at: datetime
    n_samples: int


@dataclass(frozen=True)
class TrainingOutcome:
    trained: bool
    reason: str  # "trained" | "insufficient_incidents" | "insufficient_samples" | "busy" | "error"
    n_samples: int = 0


def build_training_set(snapshot: IncidentSnapshot, radius_km: float = DEFAULT_RADIUS_KM,
                       step: float = TRAINING_GRID_STEP_DEG) -> tuple[np.ndarray, np.ndarray]:
    """Feature matrix and 0-1 rule labels over the training grid."""
    bounds = bounds_from_incidents(snapshot.incidents)
    if bounds is None:
        return np.zeros((0, len(FEATURE_NAMES)), dtype=np.float32), np.zeros(0, dtype=np.float32)

    X_rows = []
    y_rows = []
    for point in generate_grid(bounds, step):
        features = snapshot.extract(point.lat, point.lon, radius_km).features
        X_rows.append(list(features))
        y_rows.append(rule_based_score(features) / 100)

    X = np.array(X_rows, dtype=np.float32).reshape(-1, len(FEATURE_NAMES))
    y = np.array(y_rows, dtype=np.float32)
    return X, y


class RefinementModel:
    """Holds the currently installed booster and its last training time."""

    def __init__(
        self,
        retrain_interval: timedelta = timedelta(hours=MODEL_RETRAIN_INTERVAL_HOURS),
        min_incidents: int = MIN_TRAINING_INCIDENTS,
        min_samples: int = MIN_TRAINING_SAMPLES,
        radius_km: float = DEFAULT_RADIUS_KM,
    ):
        self.retrain_interval = retrain_interval
        self.min_incidents = min_incidents
        self.min_samples = min_samples
        self.radius_km = radius_km
        self._current: Optional[TrainedModel] = None
        self._swap_lock = threading.Lock()
        self._train_lock = threading.Lock()

    @property
    def current(self) -> Optional[TrainedModel]:
        with self._swap_lock:
            return self._current

    @property
    def is_trained(self) -> bool:
        return self.current is not None

    def install(self, booster, trained_at: datetime, n_samples: int) -> None:
        model = TrainedModel(booster, trained_at, n_samples)
        with self._swap_lock:
            self._current = model

    def needs_training(self, now: datetime) -> bool:
        model = self.current
        return model is None or now - model.trained_at > self.retrain_interval

    def train(self, snapshot: IncidentSnapshot) -> TrainingOutcome:
        """Fit a new booster and install it. Never raises.

        Only one training runs at a time; a concurrent request returns
        immediately with reason "busy". On any shortfall or error the
        previously installed model stays in place.
        """
        if not self._train_lock.acquire(blocking=False):
            logger.info("Refinement training already in progress, skipping")
            return TrainingOutcome(False, "busy")
        try:
            return self._train(snapshot)
        except Exception as e:
            logger.error(f"Error training refinement model: {e}")
            return TrainingOutcome(False, "error")
        finally:
            self._train_lock.release()

    def _train(self, snapshot: IncidentSnapshot) -> TrainingOutcome:
        logger.info("Training refinement model...")
        if len(snapshot) < self.min_incidents:
            logger.info(
                f"Not enough data to train model ({len(snapshot)} incidents), "
                "using rule-based fallback"
            )
            return TrainingOutcome(False, "insufficient_incidents")

        X, y = build_training_set(snapshot, self.radius_km)
        if len(X) < self.min_samples:
            logger.info(
                f"Not enough training samples ({len(X)}), using rule-based fallback"
            )
            return TrainingOutcome(False, "insufficient_samples", len(X))

        import xgboost as xgb

        dtrain = xgb.DMatrix(X, label=y, feature_names=FEATURE_NAMES)
        booster = xgb.train(_XGB_PARAMS, dtrain, num_boost_round=_NUM_BOOST_ROUND)

        self.install(booster, snapshot.now, len(X))
        logger.info(f"Refinement model trained with {len(X)} samples")
        return TrainingOutcome(True, "trained", len(X))

    def predict(self, features: FeatureVector) -> float:
        """Predicted risk in [0, 1]. Raises if no model is installed."""
        model = self.current
        if model is None:
            raise RuntimeError("refinement model is not trained")

        import xgboost as xgb

        dmat = xgb.DMatrix(features.as_array(), feature_names=FEATURE_NAMES)
        preds = model.booster.predict(dmat)
        return float(np.clip(np.asarray(preds).reshape(-1)[0], 0.0, 1.0))

    def status(self) -> ModelStatus:
        model = self.current
        if model is None:
            return ModelStatus(trained=False, lastTrainedAt=None, modelType="rule-based")
        return ModelStatus(
            trained=True,
            lastTrainedAt=model.trained_at,
            modelType="xgboost",
            trainingSamples=model.n_samples,
        )
