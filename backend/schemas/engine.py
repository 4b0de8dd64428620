from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Any


class PriceRequest(BaseModel):
    game_id: str = "default"
    symbol: str = Field(..., min_length=1, max_length=20)
    sector: str
    base_price: float = Field(..., gt=0)
    current_time: datetime


class InstrumentIn(BaseModel):
    symbol: str = Field(..., min_length=1, max_length=20)
    sector: str
    base_price: float = Field(..., gt=0)


class JointPriceRequest(BaseModel):
    """Several instruments priced at the same step with correlated shocks."""
    game_id: str = "default"
    instruments: list[InstrumentIn] = Field(..., min_length=1, max_length=200)
    current_time: datetime


class PriceResponse(BaseModel):
    symbol: str
    base_price: float
    price: float
    event_impact: float
    shock: float
    raw_return: float
    adjusted_return: float
    regime: str
    volatility: float
    controls: Optional[dict[str, float]] = None


class IndicatorsIn(BaseModel):
    average_pe: Optional[float] = None
    volatility_ratio: Optional[float] = None
    return_6m: Optional[float] = None
    return_12m: Optional[float] = None
    sector_returns_12m: dict[str, float] = {}
    sentiment: Optional[float] = Field(None, ge=-1, le=1)
    liquidity: Optional[float] = Field(None, ge=0, le=1)


class AdvanceRequest(BaseModel):
    game_id: str = "default"
    current_time: datetime
    indicators: Optional[IndicatorsIn] = None


class EarlyWarningRequest(BaseModel):
    game_id: str = "default"
    indicators: IndicatorsIn
    current_time: Optional[datetime] = None


class WarningSignalOut(BaseModel):
    name: str
    value: float
    threshold: float
    description: str


class EarlyWarningResponse(BaseModel):
    warning_level: float
    amplification_factor: float
    baseline_probability: float
    adjusted_probability: float
    active_signals: list[WarningSignalOut]
    total_signals: int
    recommendation: str
    assessed_at: Optional[datetime] = None


class SnapshotRequest(BaseModel):
    game_id: str = "default"
    current_time: datetime


class SnapshotResponse(BaseModel):
    id: str
    game_id: str
    simulation_time: datetime
    created_at: datetime
    data: dict[str, Any]

    class Config:
        from_attributes = True


class RestoreRequest(BaseModel):
    game_id: str = "default"
    snapshot_id: Optional[str] = None  # latest when omitted


class DiagnosticsResponse(BaseModel):
    market_state: dict[str, Any]
    controls: list[dict[str, Any]]
