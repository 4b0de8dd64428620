"""
Market-wide liquidity and sentiment.

Each event leaves its mark once, when it first applies: liquidity shrinks by the
event's liquidity reduction, overall sentiment moves by its sentiment shift and
every sector it names moves by half its sector impact. While no event applies,
liquidity recovers 1% per simulated day (up to normal) and both sentiment
readings fade 5% per day toward neutral.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Sequence

from services.market_events import MarketEvent
from services.random_streams import day_number

logger = logging.getLogger(__name__)

LIQUIDITY_RECOVERY_RATE = 1.01
SENTIMENT_DECAY_RATE = 0.95
SECTOR_SENTIMENT_DECAY_RATE = 0.95
SECTOR_SENTIMENT_DAMPING = 0.5


def _clamp_sentiment(value: float) -> float:
    return max(-1.0, min(1.0, value))


@dataclass
class MarketConditions:
    liquidity_level: float = 1.0  # fraction of normal liquidity
    sentiment_score: float = 0.0  # -1 extreme fear .. 1 extreme greed
    sector_sentiment: dict[str, float] = field(default_factory=dict)
    applied_events: set[str] = field(default_factory=set)
    last_day: Optional[int] = None

    def _apply_event(self, event: MarketEvent) -> None:
        impact = event.impact
        self.liquidity_level *= 1.0 - impact.liquidity_reduction
        self.sentiment_score = _clamp_sentiment(self.sentiment_score + impact.sentiment_shift)
        for sector, sector_impact in impact.sector_impacts.items():
            current = self.sector_sentiment.get(sector, 0.0)
            self.sector_sentiment[sector] = _clamp_sentiment(current + sector_impact * SECTOR_SENTIMENT_DAMPING)
        self.applied_events.add(event.id)
        logger.debug(
            "Event %s moved liquidity to %.2f and sentiment to %.2f",
            event.id, self.liquidity_level, self.sentiment_score,
        )

    def _recover(self, days: int) -> None:
        self.liquidity_level = min(1.0, self.liquidity_level * LIQUIDITY_RECOVERY_RATE ** days)
        self.sentiment_score *= SENTIMENT_DECAY_RATE ** days
        for sector in self.sector_sentiment:
            self.sector_sentiment[sector] *= SECTOR_SENTIMENT_DECAY_RATE ** days

    def update(self, moment: datetime, events: Sequence[MarketEvent]) -> None:
        """Bring conditions forward to `moment`. Calling twice for the same day is a no-op."""
        day = day_number(moment)
        applying = [event for event in events if event.applies_at(moment)]
        if applying:
            for event in applying:
                if event.id not in self.applied_events:
                    self._apply_event(event)
        elif self.last_day is not None and day > self.last_day:
            self._recover(day - self.last_day)
        self.applied_events &= {event.id for event in applying}
        if self.last_day is None or day > self.last_day:
            self.last_day = day

    def reset(self) -> None:
        self.liquidity_level = 1.0
        self.sentiment_score = 0.0
        self.sector_sentiment.clear()
        self.applied_events.clear()
        self.last_day = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "liquidity_level": self.liquidity_level,
            "sentiment_score": self.sentiment_score,
            "sector_sentiment": dict(sorted(self.sector_sentiment.items())),
            "applied_events": sorted(self.applied_events),
            "last_day": self.last_day,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MarketConditions":
        return cls(
            liquidity_level=float(data.get("liquidity_level", 1.0)),
            sentiment_score=float(data.get("sentiment_score", 0.0)),
            sector_sentiment={s: float(v) for s, v in data.get("sector_sentiment", {}).items()},
            applied_events=set(data.get("applied_events", [])),
            last_day=data.get("last_day"),
        )
