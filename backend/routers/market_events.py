from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from config import get_settings
from database import get_db
from routers.engine import simulated_time
from services import engine_store
from services.crash_scenarios import all_scenarios, summarize_scenario
from services.market_events import EventNotFoundError, EventType, MarketEvent, Severity
from schemas.market_event import (
    MarketEventResponse,
    ScenarioSummary,
    TriggerRequest,
    DeactivateRequest
)

router = APIRouter(prefix="/api/market-events", tags=["market-events"])

settings = get_settings()

# Rate limiter: keyed by client IP
limiter = Limiter(key_func=get_remote_address)


@router.get("/", response_model=list[MarketEventResponse])
async def list_active_events(
    game_id: str = "default",
    db: Session = Depends(get_db)
):
    """Events currently in force for a game."""
    engine = engine_store.get_engine(db, game_id)
    return [event.to_dict() for event in engine.active_events()]


@router.get("/history", response_model=list[MarketEventResponse])
async def event_history(
    game_id: str = "default",
    limit: int = Query(50, ge=1, le=500),
    event_status: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db)
):
    """Persisted events of a game, newest first."""
    records = engine_store.event_records(db, game_id, status=event_status, limit=limit)
    return [MarketEvent.from_dict(record.event_data).to_dict() for record in records]


@router.get("/scenarios", response_model=list[ScenarioSummary])
async def list_scenarios():
    """Historical and hypothetical crash scenarios available for triggering."""
    return [summarize_scenario(scenario) for scenario in all_scenarios()]


@router.post("/trigger", response_model=MarketEventResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.trigger_rate_limit)
async def trigger_event(
    request: Request,
    data: TriggerRequest,
    db: Session = Depends(get_db)
):
    """Activate a catalog scenario or a custom event at `current_time`."""
    engine = engine_store.get_engine(db, data.game_id)
    moment = simulated_time(data.current_time)

    custom = {}
    if data.scenario_id is None:
        if data.market_impact is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Either scenario_id or market_impact is required"
            )
        custom = data.model_dump(
            include={"name", "sector_impacts", "volatility_multiplier", "duration_days"},
            exclude_none=True,
        )

    try:
        event = engine.trigger_event(
            moment,
            scenario_id=data.scenario_id,
            market_impact=data.market_impact,
            event_type=EventType(data.event_type),
            severity=Severity(data.severity),
            **custom,
        )
    except EventNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Scenario not found"
        )

    engine_store.save_events(db, data.game_id, [event])
    db.commit()
    return event.to_dict()


@router.post("/{event_id}/deactivate", response_model=MarketEventResponse)
async def deactivate_event(
    event_id: str,
    data: DeactivateRequest,
    db: Session = Depends(get_db)
):
    """End an event before its recovery period runs out."""
    engine = engine_store.get_engine(db, data.game_id)
    try:
        event = engine.deactivate_event(event_id, simulated_time(data.current_time))
    except EventNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Event not found"
        )

    engine_store.save_events(db, data.game_id, [event])
    db.commit()
    return event.to_dict()
