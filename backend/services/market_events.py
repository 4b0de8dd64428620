"""
Market event records: crashes, sector crashes and corrections.

An event carries an initial impact, an ordered list of cascading stages that
describe how much of that impact is still in force after N days, and a recovery
pattern whose duration bounds the event's lifetime.
"""
from __future__ import annotations

import bisect
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

SECONDS_PER_DAY = 86400.0


class EventType(str, Enum):
    MARKET_CRASH = "market_crash"
    SECTOR_CRASH = "sector_crash"
    CORRECTION = "correction"


class Severity(str, Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    SEVERE = "severe"
    CATASTROPHIC = "catastrophic"


class EventStatus(str, Enum):
    ACTIVE = "active"
    DEACTIVATED = "deactivated"


class TriggerType(str, Enum):
    HISTORICAL = "historical"
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class EventNotFoundError(KeyError):
    """Unknown event or scenario id."""


@dataclass(frozen=True)
class CascadingStage:
    day_offset: float
    multiplier: float


@dataclass(frozen=True)
class RecoveryPattern:
    type: str
    duration_days: int
    volatility_decay: float


@dataclass(frozen=True)
class EventImpact:
    market: float
    sector_impacts: dict[str, float] = field(default_factory=dict)
    volatility_multiplier: float = 1.0
    liquidity_reduction: float = 0.0
    sentiment_shift: float = 0.0


def elapsed_days(start: datetime, moment: datetime) -> float:
    return (moment - start).total_seconds() / SECONDS_PER_DAY


@dataclass
class MarketEvent:
    id: str
    name: str
    type: EventType
    severity: Severity
    activated_at: datetime
    impact: EventImpact
    cascading_stages: list[CascadingStage]
    recovery_pattern: RecoveryPattern
    status: EventStatus = EventStatus.ACTIVE
    deactivated_at: Optional[datetime] = None
    trigger: TriggerType = TriggerType.MANUAL
    is_dynamic: bool = False
    description: str = ""

    def __post_init__(self):
        if not self.cascading_stages:
            raise ValueError(f"event {self.id} has no cascading stages")
        offsets = [stage.day_offset for stage in self.cascading_stages]
        if offsets != sorted(offsets):
            raise ValueError(f"cascading stages of event {self.id} must be sorted by day offset")
        first = self.cascading_stages[0]
        if first.day_offset != 0 or first.multiplier != 1.0:
            raise ValueError(f"first cascading stage of event {self.id} must be (0, 1.0), got {first}")
        if self.recovery_pattern.duration_days <= 0:
            raise ValueError(f"recovery duration of event {self.id} must be positive")

    @property
    def is_active(self) -> bool:
        return self.status == EventStatus.ACTIVE

    @property
    def ends_at(self) -> datetime:
        return self.activated_at + timedelta(days=self.recovery_pattern.duration_days)

    def elapsed_days(self, moment: datetime) -> float:
        return elapsed_days(self.activated_at, moment)

    def stage_multiplier(self, elapsed: float) -> float:
        """Multiplier of the latest stage whose offset is <= elapsed (stepwise, no interpolation)."""
        if elapsed < 0:
            return 0.0
        offsets = [stage.day_offset for stage in self.cascading_stages]
        index = bisect.bisect_right(offsets, elapsed) - 1
        return self.cascading_stages[index].multiplier

    def is_expired(self, moment: datetime) -> bool:
        return self.elapsed_days(moment) > self.recovery_pattern.duration_days

    def applies_at(self, moment: datetime) -> bool:
        return self.is_active and 0 <= self.elapsed_days(moment) <= self.recovery_pattern.duration_days

    def deactivate(self, moment: datetime) -> None:
        self.status = EventStatus.DEACTIVATED
        self.deactivated_at = moment

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "severity": self.severity.value,
            "activated_at": self.activated_at.isoformat(),
            "deactivated_at": self.deactivated_at.isoformat() if self.deactivated_at else None,
            "status": self.status.value,
            "trigger": self.trigger.value,
            "is_dynamic": self.is_dynamic,
            "description": self.description,
            "impact": {
                "market": self.impact.market,
                "sector_impacts": dict(self.impact.sector_impacts),
                "volatility_multiplier": self.impact.volatility_multiplier,
                "liquidity_reduction": self.impact.liquidity_reduction,
                "sentiment_shift": self.impact.sentiment_shift,
            },
            "cascading_stages": [
                {"day_offset": stage.day_offset, "multiplier": stage.multiplier}
                for stage in self.cascading_stages
            ],
            "recovery_pattern": {
                "type": self.recovery_pattern.type,
                "duration_days": self.recovery_pattern.duration_days,
                "volatility_decay": self.recovery_pattern.volatility_decay,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MarketEvent":
        impact = data["impact"]
        recovery = data["recovery_pattern"]
        deactivated_at = data.get("deactivated_at")
        return cls(
            id=data["id"],
            name=data["name"],
            type=EventType(data["type"]),
            severity=Severity(data["severity"]),
            activated_at=datetime.fromisoformat(data["activated_at"]),
            deactivated_at=datetime.fromisoformat(deactivated_at) if deactivated_at else None,
            status=EventStatus(data.get("status", EventStatus.ACTIVE.value)),
            trigger=TriggerType(data.get("trigger", TriggerType.MANUAL.value)),
            is_dynamic=data.get("is_dynamic", False),
            description=data.get("description", ""),
            impact=EventImpact(
                market=impact["market"],
                sector_impacts=dict(impact.get("sector_impacts", {})),
                volatility_multiplier=impact.get("volatility_multiplier", 1.0),
                liquidity_reduction=impact.get("liquidity_reduction", 0.0),
                sentiment_shift=impact.get("sentiment_shift", 0.0),
            ),
            cascading_stages=[
                CascadingStage(stage["day_offset"], stage["multiplier"])
                for stage in data["cascading_stages"]
            ],
            recovery_pattern=RecoveryPattern(
                type=recovery["type"],
                duration_days=recovery["duration_days"],
                volatility_decay=recovery["volatility_decay"],
            ),
        )
