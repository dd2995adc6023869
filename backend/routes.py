"""Riskmap Backend — FastAPI Routes"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from cachetools import TTLCache
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import ALLOWED_ORIGINS, DATABASE_PATH, RATE_LIMIT, RATE_WINDOW
from incident_store import SQLiteIncidentStore
from models import (
    BoundingBox,
    IncidentCreate,
    IncidentCreatedResponse,
    IncidentRecord,
    MapSummary,
    ModelStatus,
    PredictionStats,
    RiskScore,
)
from risk_service import GridTooLarge, RiskDataUnavailable, RiskService

logger = logging.getLogger("riskmap.routes")


def get_service(request: Request) -> RiskService:
    return request.app.state.risk_service


def create_app(service: Optional[RiskService] = None, rate_limit: int = RATE_LIMIT) -> FastAPI:
    """Build the API around one RiskService (SQLite-backed unless given)."""
    if service is None:
        service = RiskService(SQLiteIncidentStore(DATABASE_PATH))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = app.state.risk_service.store
        if hasattr(store, "initialize"):
            store.initialize()
        logger.info("Refinement model will train on first map request")
        yield

    # ─────────────────────────── App Setup ──────────────────────────

    app = FastAPI(title="Riskmap API", version="1.0.0", lifespan=lifespan)
    app.state.risk_service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ─────────────────────────── Rate Limiting ──────────────────────

    # Per-IP request times; idle clients age out of the cache on their own
    rate_store: TTLCache = TTLCache(maxsize=10_000, ttl=RATE_WINDOW * 2)

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        client_ip = request.client.host if request.client else "unknown"
        now = time.time()

        window = [t for t in rate_store.get(client_ip, []) if now - t < RATE_WINDOW]
        if len(window) >= rate_limit:
            rate_store[client_ip] = window
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again in a minute."},
            )

        window.append(now)
        rate_store[client_ip] = window
        return await call_next(request)

    # ─────────────────────────── Prediction Endpoints ───────────────

    @app.get("/api/predictions/map-data", response_model=MapSummary)
    async def get_map_data(
        request: Request,
        north: Optional[float] = None,
        south: Optional[float] = None,
        east: Optional[float] = None,
        west: Optional[float] = None,
    ):
        bounds = None
        if None not in (north, south, east, west):
            bounds = BoundingBox(north=north, south=south, east=east, west=west)

        try:
            return await get_service(request).get_map_data(bounds)
        except GridTooLarge as e:
            logger.warning(f"Rejected map request: {e}")
            raise HTTPException(status_code=400, detail=str(e))
        except RiskDataUnavailable as e:
            logger.error(f"Error fetching map data: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch map data")

    @app.get("/api/predictions/location-risk", response_model=RiskScore)
    async def get_location_risk(
        request: Request,
        latitude: float = Query(..., ge=-90, le=90),
        longitude: float = Query(..., ge=-180, le=180),
    ):
        logger.info(f"Location risk request: ({latitude:.4f}, {longitude:.4f})")
        try:
            return await get_service(request).get_location_risk(latitude, longitude)
        except RiskDataUnavailable as e:
            logger.error(f"Error calculating location risk: {e}")
            raise HTTPException(status_code=500, detail="Failed to calculate location risk")

    @app.get("/api/predictions/stats", response_model=PredictionStats)
    async def get_prediction_stats(request: Request):
        try:
            return await get_service(request).get_prediction_stats()
        except RiskDataUnavailable as e:
            logger.error(f"Error fetching prediction stats: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch prediction statistics")

    @app.get("/api/predictions/model-status", response_model=ModelStatus)
    async def get_model_status(request: Request):
        return get_service(request).get_model_status()

    # ─────────────────────────── Incidents ──────────────────────────

    @app.post("/api/incidents", response_model=IncidentCreatedResponse, status_code=201)
    async def create_incident(incident: IncidentCreate, request: Request):
        service = get_service(request)
        try:
            record = await service.store.add(incident)
        except Exception as e:
            logger.error(f"Error creating incident: {e}")
            raise HTTPException(status_code=500, detail="Failed to create incident")

        # The report is stored either way; a failed retrain only affects scoring quality
        try:
            await service.on_incident_added(record)
        except RiskDataUnavailable as e:
            logger.warning(f"Skipped model refresh after new incident: {e}")

        return IncidentCreatedResponse(message="Incident created successfully", incident=record)

    @app.get("/api/incidents", response_model=list[IncidentRecord])
    async def list_incidents(request: Request):
        try:
            return await get_service(request).store.find_all()
        except Exception as e:
            logger.error(f"Error fetching incidents: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch incidents")

    @app.get("/api/incidents/{incident_id}", response_model=IncidentRecord)
    async def get_incident(incident_id: str, request: Request):
        try:
            record = await get_service(request).store.get(incident_id)
        except Exception as e:
            logger.error(f"Error fetching incident {incident_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch incident")
        if record is None:
            raise HTTPException(status_code=404, detail="Incident not found")
        return record

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app
