"""Riskmap Backend — Configuration & Constants"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env from project root (one level up from backend/)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path)

# ── Runtime settings ──
DATABASE_PATH = os.environ.get(
    "RISKMAP_DB_PATH",
    str(Path(__file__).resolve().parent.parent / "datasets" / "incidents.db"),
)
LOG_LEVEL = os.environ.get("RISKMAP_LOG_LEVEL", "INFO").upper()
ENABLE_REFINEMENT = os.environ.get("RISKMAP_ENABLE_REFINEMENT", "1").lower() not in ("0", "false", "no")
RATE_LIMIT = int(os.environ.get("RISKMAP_RATE_LIMIT", "60"))  # requests per minute per IP
RATE_WINDOW = 60  # seconds

_default_origins = [
    f"http://localhost:{p}" for p in (3000, 5173, 8080)
] + [
    f"http://127.0.0.1:{p}" for p in (3000, 5173, 8080)
]
ALLOWED_ORIGINS = [
    o.strip() for o in os.environ.get("RISKMAP_ALLOWED_ORIGINS", "").split(",") if o.strip()
] or _default_origins

# ── Spatial sampling ──
EARTH_RADIUS_KM = 6371.0
DEFAULT_RADIUS_KM = 1.0
GRID_STEP_DEG = 0.01          # ≈1.1 km at the equator
TRAINING_GRID_STEP_DEG = 0.02
AUTO_BOUNDS_PADDING_DEG = 0.01

# ── Hotspot selection ──
MIN_HOTSPOT_SCORE = 10   # points scoring at or below this are dropped
MAX_HOTSPOTS = 50
MAX_GRID_POINTS = 100_000   # explicit bounds above this are rejected; auto bounds coarsen

# Upper bounds (exclusive) for each tier; anything >= the last is "critical"
RISK_LEVEL_THRESHOLDS = [
    (20, "low"),
    (40, "medium"),
    (70, "high"),
]
RISK_LEVELS = ["low", "medium", "high", "critical"]

# ── Refinement model ──
MODEL_RETRAIN_INTERVAL_HOURS = 24
MIN_TRAINING_INCIDENTS = 10
MIN_TRAINING_SAMPLES = 5

# Feature names — order MUST match features.FeatureVector
FEATURE_NAMES = [
    "incidentDensity",
    "recentActivity",
    "veryRecentActivity",
    "nightRatio",
    "weekendRatio",
    "typeDiversity",
    "avgTimeRisk",
    "currentTimeRisk",
    "isWeekend",
    "currentHour",
    "currentDayOfWeek",
]
