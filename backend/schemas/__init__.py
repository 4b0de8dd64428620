from schemas.engine import (
    PriceRequest,
    JointPriceRequest,
    PriceResponse,
    AdvanceRequest,
    EarlyWarningRequest,
    EarlyWarningResponse,
    SnapshotRequest,
    SnapshotResponse,
    RestoreRequest,
    DiagnosticsResponse
)
from schemas.market_event import (
    MarketEventResponse,
    ScenarioSummary,
    TriggerRequest,
    DeactivateRequest
)

__all__ = [
    "PriceRequest",
    "JointPriceRequest",
    "PriceResponse",
    "AdvanceRequest",
    "EarlyWarningRequest",
    "EarlyWarningResponse",
    "SnapshotRequest",
    "SnapshotResponse",
    "RestoreRequest",
    "DiagnosticsResponse",
    "MarketEventResponse",
    "ScenarioSummary",
    "TriggerRequest",
    "DeactivateRequest",
]
