"""
Placewatch Dashboard API
========================

Read API over the stored reviews plus the settings form and a manual sync
trigger.

Endpoints:
    GET  /api/health     - Health check
    GET  /api/reviews    - Stored reviews
    GET  /api/stats      - Rating aggregates
    GET  /api/sync-logs  - Recent sync log
    GET  /api/settings   - Notification settings
    PUT  /api/settings   - Update notification settings
    POST /api/sync       - Trigger a sync cycle

Usage:
    uvicorn placewatch.api.main:app --port 8000

    Or with CLI:
    placewatch serve
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..data.config import get_settings
from ..data.review_models import utcnow
from ..data.review_store import PersistFailedError, ReviewStore
from . import services
from .models import HealthResponse
from .review_routes import router as review_router
from .settings_routes import router as settings_router

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Placewatch API...")
    services.init_services(get_settings())

    yield

    services.close_services()
    logger.info("Shutting down Placewatch API...")


app = FastAPI(
    title="Placewatch API",
    description="Google review monitoring dashboard",
    version=APP_VERSION,
    lifespan=lifespan,
)

# CORS_ORIGINS: comma-separated extra origins for the deployed dashboard
_default_origins = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]
_extra_origins = os.getenv("CORS_ORIGINS", "")
if _extra_origins:
    _default_origins.extend([o.strip() for o in _extra_origins.split(",") if o.strip()])

app.add_middleware(
    CORSMiddleware,
    allow_origins=_default_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(review_router)
app.include_router(settings_router)


@app.exception_handler(PersistFailedError)
async def persist_failed_handler(request: Request, exc: PersistFailedError):
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Database unavailable"})


# ============================================================================
# HEALTH ENDPOINT
# ============================================================================

@app.get("/api/health", response_model=HealthResponse)
def health_check(store: ReviewStore = Depends(services.get_store)):
    """Health check; degraded when the database is unreachable."""
    connected = store.check_connection()
    return HealthResponse(
        status="healthy" if connected else "degraded",
        version=APP_VERSION,
        database="connected" if connected else "disconnected",
        timestamp=utcnow(),
    )
