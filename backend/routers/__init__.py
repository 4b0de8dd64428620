from routers.engine import router as engine_router
from routers.market_events import router as market_events_router

__all__ = [
    "engine_router",
    "market_events_router"
]
