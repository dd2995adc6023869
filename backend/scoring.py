"""Riskmap Backend — Risk Scoring Logic"""

import logging
import math
from dataclasses import dataclass
from typing import Literal, Optional

import numpy as np

from config import RISK_LEVEL_THRESHOLDS
from features import FeatureVector

logger = logging.getLogger("riskmap.scoring")

# Weights of the rule formula, applied to the named features
_RULE_WEIGHTS: dict[str, float] = {
    "incident_density": 20.0,
    "recent_activity": 30.0,
    "very_recent_activity": 40.0,
    "night_ratio": 25.0,
    "weekend_ratio": 15.0,
    "current_time_risk": 10.0,
}

# Blend of refinement model vs rule formula when a model is available
_MODEL_WEIGHT = 0.6
_RULE_WEIGHT = 0.4

CONFIDENCE_UNTRAINED = 0.5
CONFIDENCE_PREDICTION_FAILED = 0.3


def rule_based_score(features: FeatureVector) -> float:
    """Authoritative risk score in [0, 100] (unrounded)."""
    risk = sum(getattr(features, name) * w for name, w in _RULE_WEIGHTS.items())
    return min(100.0, max(0.0, risk))


def round_half_up(score: float) -> int:
    """Nearest integer, .5 rounds up (round() would send 32.5 to 32)."""
    return int(math.floor(score + 0.5))


def classify_risk_level(score: float) -> str:
    """Map a 0-100 score onto low / medium / high / critical.

    Tiers (upper bound exclusive):
      < 20  → low
      < 40  → medium
      < 70  → high
      else  → critical
    """
    for upper, level in RISK_LEVEL_THRESHOLDS:
        if score < upper:
            return level
    return "critical"


@dataclass(frozen=True)
class ScoreResult:
    score: float
    confidence: float
    source: Literal["rule", "model"]
    fallback_reason: Optional[str] = None  # "model_untrained" | "prediction_failed"

    @property
    def rounded(self) -> int:
        return round_half_up(self.score)

    @property
    def is_fallback(self) -> bool:
        return self.source == "rule"


def _model_confidence(features: FeatureVector) -> float:
    return min(0.9, 0.3
               + (0.2 if features.incident_density > 0 else 0.0)
               + (0.2 if features.recent_activity > 0 else 0.0)
               + (0.2 if features.type_diversity > 0 else 0.0))


class Scorer:
    """Turns a feature vector into a ScoreResult.

    ``refinement`` is anything with ``is_trained`` and ``predict(features)``
    returning a 0-1 value (see ml_model.RefinementModel). Any exception from
    it is logged and answered with the rule formula.
    """

    def __init__(self, refinement=None):
        self.refinement = refinement

    def score(self, features: FeatureVector) -> ScoreResult:
        rule = rule_based_score(features)

        if self.refinement is None or not self.refinement.is_trained:
            return ScoreResult(rule, CONFIDENCE_UNTRAINED, "rule", "model_untrained")

        try:
            prediction = float(self.refinement.predict(features))
            if not np.isfinite(prediction):
                raise ValueError(f"non-finite prediction {prediction}")
        except Exception as e:
            logger.warning(f"Refinement prediction failed, using rule-based score: {e}")
            return ScoreResult(rule, CONFIDENCE_PREDICTION_FAILED, "rule", "prediction_failed")

        model_score = float(np.clip(prediction * 100, 0.0, 100.0))
        blended = float(np.clip(model_score * _MODEL_WEIGHT + rule * _RULE_WEIGHT, 0.0, 100.0))
        return ScoreResult(blended, _model_confidence(features), "model")
