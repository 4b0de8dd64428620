from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Literal


class CascadingStageOut(BaseModel):
    day_offset: float
    multiplier: float


class RecoveryPatternOut(BaseModel):
    type: str
    duration_days: int
    volatility_decay: float


class EventImpactOut(BaseModel):
    market: float
    sector_impacts: dict[str, float]
    volatility_multiplier: float
    liquidity_reduction: float
    sentiment_shift: float


class MarketEventResponse(BaseModel):
    id: str
    name: str
    type: str
    severity: str
    status: str
    trigger: str
    is_dynamic: bool
    description: str
    activated_at: datetime
    deactivated_at: Optional[datetime] = None
    impact: EventImpactOut
    cascading_stages: list[CascadingStageOut]
    recovery_pattern: RecoveryPatternOut


class ScenarioSummary(BaseModel):
    id: str
    name: str
    type: str
    severity: str
    description: str
    historical: bool
    start_date: Optional[str] = None
    market_impact: float
    recovery_type: str
    duration_days: int


class TriggerRequest(BaseModel):
    """Trigger a catalog scenario by id, or a custom event when scenario_id is omitted."""
    game_id: str = "default"
    current_time: datetime
    scenario_id: Optional[str] = None
    market_impact: Optional[float] = Field(None, ge=-0.95, lt=0)
    event_type: Literal["market_crash", "sector_crash", "correction"] = "market_crash"
    severity: Literal["minor", "moderate", "severe", "catastrophic"] = "moderate"
    name: Optional[str] = Field(None, max_length=200)
    sector_impacts: Optional[dict[str, float]] = None
    volatility_multiplier: Optional[float] = Field(None, ge=1, le=20)
    duration_days: Optional[int] = Field(None, ge=1, le=7300)


class DeactivateRequest(BaseModel):
    game_id: str = "default"
    current_time: datetime
