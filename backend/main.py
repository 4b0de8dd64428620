"""
Market Engine API
Stochastic market simulation for an educational trading game: GARCH volatility,
sector-correlated shocks, procedural crash events and long-horizon market controls.
"""
import logging
import json
import sys
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from config import get_settings
from database import init_db
from routers import (
    engine_router,
    market_events_router
)

settings = get_settings()


# ── Structured JSON Logging ─────────────────────────────────────────
class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter for production observability."""
    def format(self, record):
        log = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0]:
            log["exception"] = self.formatException(record.exc_info)
        if hasattr(record, "game_id"):
            log["game_id"] = record.game_id
        return json.dumps(log)


def setup_logging():
    """Configure structured logging for all app loggers."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


logger = logging.getLogger("marketengine")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    setup_logging()
    logger.info("Starting Market Engine API", extra={"cutover_year": settings.regime_cutover_year})
    init_db()
    logger.info("Database initialized")
    yield
    logger.info("Shutting down Market Engine API")


# ── OpenAPI metadata ────────────────────────────────────────────────
OPENAPI_TAGS = [
    {"name": "engine", "description": "Pricing, event generation, configuration, snapshots and diagnostics"},
    {"name": "market-events", "description": "Active events, history, scenario catalog, manual triggers"},
    {"name": "ops", "description": "Health checks and operational endpoints"},
]

app = FastAPI(
    title="Market Engine API",
    description=(
        "# Market Engine\n\n"
        "Reproducible price paths for a simulated market:\n\n"
        "- GARCH(1,1) volatility with fat-tailed Student's t shocks\n"
        "- Sector correlation with Cholesky-correlated shocks\n"
        "- Seeded crash, correction and sector-crash events with multi-year cascades\n"
        "- Mean reversion, valuation dampening, volatility caps and soft circuit breakers\n\n"
        "**Tech:** FastAPI + SQLAlchemy + NumPy"
    ),
    version="1.0.0",
    lifespan=lifespan,
    openapi_tags=OPENAPI_TAGS,
    license_info={"name": "MIT"},
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Rate limiter state (required by slowapi)
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from routers.market_events import limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Include routers
app.include_router(engine_router)
app.include_router(market_events_router)


# ── Request logging middleware ───────────────────────────────────────
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every request with method, path, and response time."""
    import time
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    if not request.url.path.startswith("/health"):
        logger.info(
            "%s %s %d %.0fms",
            request.method, request.url.path, response.status_code, duration_ms,
        )
    return response


@app.get("/", tags=["ops"])
async def root():
    """Root endpoint with API discovery links."""
    return {
        "name": "Market Engine API",
        "version": "1.0.0",
        "description": "Stochastic market simulation engine",
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/health", tags=["ops"])
async def health_check():
    """Health check for Docker/k8s readiness probes. Returns DB status."""
    from sqlalchemy import text
    from database import SessionLocal
    checks = {"api": "ok"}
    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        db.close()
        checks["database"] = "ok"
    except Exception:
        checks["database"] = "error"
    checks["regime_cutover_year"] = settings.regime_cutover_year
    overall = "healthy" if checks["database"] == "ok" else "degraded"
    return {"status": overall, "service": "market-engine-api", "version": "1.0.0", "checks": checks}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
