from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from database import get_db
from models.engine_snapshot import EngineSnapshot
from services import engine_store
from services.early_warning import MarketIndicators
from services.engine_config import ConfigurationError
from services.price_impact import Instrument
from schemas.engine import (
    PriceRequest,
    JointPriceRequest,
    PriceResponse,
    IndicatorsIn,
    AdvanceRequest,
    EarlyWarningRequest,
    EarlyWarningResponse,
    SnapshotRequest,
    SnapshotResponse,
    RestoreRequest,
    DiagnosticsResponse
)
from schemas.market_event import MarketEventResponse

router = APIRouter(prefix="/api/engine", tags=["engine"])

DEFAULT_DIAGNOSTIC_RETURNS = [-0.30, -0.15, -0.05, 0.0, 0.05, 0.15, 0.30]


def simulated_time(moment: datetime) -> datetime:
    """Simulation clock values are naive UTC."""
    if moment.tzinfo is not None:
        return moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def to_indicators(data: Optional[IndicatorsIn]) -> Optional[MarketIndicators]:
    if data is None:
        return None
    return MarketIndicators(**data.model_dump())


# ── Configuration ──

@router.get("/config")
async def get_config(game_id: str = "default", db: Session = Depends(get_db)):
    """Current engine configuration."""
    return engine_store.get_engine(db, game_id).get_configuration()


@router.get("/config/schema")
async def get_config_schema(game_id: str = "default", db: Session = Depends(get_db)):
    """Declared type, bounds and current value of every configuration key."""
    return engine_store.get_engine(db, game_id).describe_configuration()


@router.put("/config")
async def update_config(
    partial: dict[str, Any] = Body(...),
    game_id: str = "default",
    db: Session = Depends(get_db)
):
    """Atomically update configuration; any invalid key rejects the whole update."""
    engine = engine_store.get_engine(db, game_id)
    try:
        return engine.update_configuration(partial)
    except ConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=exc.to_dict()
        )


# ── Pricing ──

@router.post("/price", response_model=PriceResponse)
async def compute_price(data: PriceRequest, db: Session = Depends(get_db)):
    """Price one instrument at one simulated step."""
    engine = engine_store.get_engine(db, data.game_id)
    impact = engine.price_impact_breakdown(
        data.symbol, data.sector, data.base_price, simulated_time(data.current_time)
    )
    return impact.to_dict()


@router.post("/prices", response_model=list[PriceResponse])
async def compute_prices(data: JointPriceRequest, db: Session = Depends(get_db)):
    """Price several instruments together with sector-correlated shocks."""
    symbols = [i.symbol for i in data.instruments]
    if len(set(symbols)) != len(symbols):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Duplicate symbols in request"
        )
    engine = engine_store.get_engine(db, data.game_id)
    instruments = [Instrument(i.symbol, i.sector, i.base_price) for i in data.instruments]
    impacts = engine.compute_price_impacts(instruments, simulated_time(data.current_time))
    return [impact.to_dict() for impact in impacts]


# ── Events and risk ──

@router.post("/advance", response_model=list[MarketEventResponse])
async def advance(data: AdvanceRequest, db: Session = Depends(get_db)):
    """Advance the generator to `current_time`; newly generated events are persisted."""
    engine = engine_store.get_engine(db, data.game_id)
    moment = simulated_time(data.current_time)
    expired = engine.expire_events(moment)
    new_events = engine.advance_and_maybe_generate_events(moment, to_indicators(data.indicators))
    if new_events or expired:
        engine_store.save_events(db, data.game_id, [*expired, *new_events])
        db.commit()
    return [event.to_dict() for event in new_events]


@router.post("/early-warning", response_model=EarlyWarningResponse)
async def early_warning(data: EarlyWarningRequest, db: Session = Depends(get_db)):
    """Score macro indicators against crash-precursor thresholds."""
    engine = engine_store.get_engine(db, data.game_id)
    moment = simulated_time(data.current_time) if data.current_time else None
    assessment = engine.assess_crash_risk(to_indicators(data.indicators), moment)
    return assessment.to_dict()


# ── State ──

@router.get("/state")
async def get_state(
    game_id: str = "default",
    current_time: Optional[datetime] = None,
    db: Session = Depends(get_db)
):
    """Macro state, event counts and regime."""
    engine = engine_store.get_engine(db, game_id)
    return engine.market_state(simulated_time(current_time) if current_time else None)


@router.post("/snapshot", response_model=SnapshotResponse)
async def save_snapshot(data: SnapshotRequest, db: Session = Depends(get_db)):
    """Persist the engine state of a game."""
    engine = engine_store.get_engine(db, data.game_id)
    moment = simulated_time(data.current_time)
    engine_store.save_events(db, data.game_id, engine.events.values())
    snapshot = engine_store.save_snapshot(db, data.game_id, engine, moment)
    db.commit()
    db.refresh(snapshot)
    return snapshot


@router.post("/restore", response_model=SnapshotResponse)
async def restore_snapshot(data: RestoreRequest, db: Session = Depends(get_db)):
    """Load a stored snapshot (latest by default) into the game's engine."""
    if data.snapshot_id:
        snapshot = db.query(EngineSnapshot).filter(
            EngineSnapshot.id == data.snapshot_id,
            EngineSnapshot.game_id == data.game_id
        ).first()
    else:
        snapshot = engine_store.latest_snapshot(db, data.game_id)

    if not snapshot:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Snapshot not found"
        )

    engine = engine_store.get_engine(db, data.game_id)
    engine.load_snapshot(snapshot.data)
    return snapshot


@router.post("/reset")
async def reset_engine(game_id: str = "default", db: Session = Depends(get_db)):
    """Drop all simulation state of a game; configuration is kept."""
    engine = engine_store.get_engine(db, game_id)
    engine.reset()
    return {"game_id": game_id, "status": "reset", "market_state": engine.market_state()}


@router.get("/diagnostics", response_model=DiagnosticsResponse)
async def diagnostics(
    game_id: str = "default",
    returns: Optional[list[float]] = Query(None),
    db: Session = Depends(get_db)
):
    """Run sample returns through the control pipeline without touching live state."""
    engine = engine_store.get_engine(db, game_id)
    return DiagnosticsResponse(
        market_state=engine.market_state(),
        controls=engine.control_diagnostics(returns or DEFAULT_DIAGNOSTIC_RETURNS),
    )
