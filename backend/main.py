"""
Riskmap Backend — FastAPI incident hotspot service
Modular entry point. All logic is split across:
  config.py, models.py, geo.py, temporal.py, features.py, grid.py,
  scoring.py, ml_model.py, incident_store.py, risk_service.py, routes.py
"""

import logging

from config import LOG_LEVEL

logging.basicConfig(level=LOG_LEVEL)

from routes import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
