"""
Procedural crash / correction generation for simulated (post-cutover) years.

Randomness comes only from streams keyed on the simulated date, so the same
(date, event type, salt) always produces the same event. Each check interval
converts annual probabilities into interval probabilities and rolls in priority
order: market crash, then correction, then sector crash. The first hit wins.
"""
from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from services.early_warning import EarlyWarningSystem, MarketIndicators
from services.engine_config import EngineConfig
from services.market_controls import Regime
from services.market_events import (
    CascadingStage,
    EventImpact,
    EventType,
    MarketEvent,
    RecoveryPattern,
    Severity,
    TriggerType,
)
from services.random_streams import RandomStreams, day_number, mix_seed, stable_salt

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = 365.0

# Sectors that receive explicit impacts from generated events
AFFECTED_SECTORS = ["Technology", "Financial", "Energy", "Healthcare", "Industrials", "Consumer"]


@dataclass(frozen=True)
class SeverityProfile:
    severity: Severity
    impact_range: tuple[float, float]  # magnitude of the market drop
    volatility_range: tuple[float, float]
    duration_range: tuple[int, int]  # days
    default_duration: int
    stage_fractions: tuple[float, ...]
    stage_multipliers: tuple[float, ...]
    recovery_type: str


SEVERITY_PROFILES: dict[Severity, SeverityProfile] = {
    Severity.CATASTROPHIC: SeverityProfile(
        severity=Severity.CATASTROPHIC,
        impact_range=(0.30, 0.55),
        volatility_range=(5.0, 10.0),
        duration_range=(1095, 3650),
        default_duration=3650,
        stage_fractions=(0.0, 0.05, 0.10, 0.15, 0.20, 0.30, 0.40, 0.50, 0.60, 0.70, 0.80, 0.90, 0.95),
        stage_multipliers=(1.0, 0.95, 0.90, 0.85, 0.80, 0.70, 0.60, 0.50, 0.40, 0.30, 0.20, 0.10, 0.05),
        recovery_type="decade-long",
    ),
    Severity.SEVERE: SeverityProfile(
        severity=Severity.SEVERE,
        impact_range=(0.20, 0.35),
        volatility_range=(3.5, 6.5),
        duration_range=(365, 1825),
        default_duration=1095,
        stage_fractions=(0.0, 0.05, 0.15, 0.30, 0.50, 0.70, 0.90),
        stage_multipliers=(1.0, 0.90, 0.75, 0.60, 0.40, 0.25, 0.10),
        recovery_type="slow",
    ),
    Severity.MODERATE: SeverityProfile(
        severity=Severity.MODERATE,
        impact_range=(0.10, 0.22),
        volatility_range=(2.5, 4.5),
        duration_range=(180, 730),
        default_duration=365,
        stage_fractions=(0.0, 0.10, 0.25, 0.50, 0.75),
        stage_multipliers=(1.0, 0.75, 0.50, 0.30, 0.10),
        recovery_type="gradual",
    ),
    Severity.MINOR: SeverityProfile(
        severity=Severity.MINOR,
        impact_range=(0.05, 0.13),
        volatility_range=(1.5, 3.0),
        duration_range=(30, 180),
        default_duration=90,
        stage_fractions=(0.0, 0.10, 0.30, 0.60),
        stage_multipliers=(1.0, 0.60, 0.30, 0.10),
        recovery_type="v-shaped",
    ),
}

EVENT_NAMES: dict[EventType, list[str]] = {
    EventType.MARKET_CRASH: [
        "Global Market Turbulence {year}",
        "{year} Market Crash",
        "Economic Downturn {month}/{year}",
        "Market Volatility Spike {year}",
    ],
    EventType.SECTOR_CRASH: [
        "Sector Crisis {year}",
        "Industry Shakeup {month}/{year}",
        "Sector Volatility {year}",
        "Industry Correction {year}",
    ],
    EventType.CORRECTION: [
        "Market Correction {month}/{year}",
        "{year} Retracement",
        "Pullback {year}",
        "Market Adjustment {month}/{year}",
    ],
}


def select_severity(u: float) -> Severity:
    if u < 0.10:
        return Severity.CATASTROPHIC
    if u < 0.35:
        return Severity.SEVERE
    if u < 0.70:
        return Severity.MODERATE
    return Severity.MINOR


def interval_probability(annual_probability: float, days: float) -> float:
    """Probability of at least one occurrence in `days` given an annual probability."""
    return 1.0 - (1.0 - annual_probability) ** (days / DAYS_PER_YEAR)


def volatility_decay_for(duration_days: int) -> float:
    """Daily decay whose half-life is half the event duration.

    Multi-year events decay by a small fraction of a percent per day, so their
    elevated volatility lingers for years; short events calm down within weeks.
    """
    return 0.5 ** (1.0 / max(1.0, duration_days * 0.5))


def build_cascading_stages(profile: SeverityProfile, duration_days: int, jitter: float = 0.0) -> list[CascadingStage]:
    """Stages at fixed fractions of the duration; `jitter` in [0, 1) shrinks later multipliers up to 20%.

    Offsets after the first are at least one day apart, so short events keep
    their full impact on day 0 and still step down through every stage.
    """
    stages = []
    for index, (fraction, multiplier) in enumerate(zip(profile.stage_fractions, profile.stage_multipliers)):
        offset = math.floor(duration_days * fraction)
        if index > 0:
            multiplier *= 1.0 - 0.2 * jitter
            offset = max(offset, stages[-1].day_offset + 1)
        stages.append(CascadingStage(day_offset=offset, multiplier=multiplier))
    return stages


def _sector_impacts(rng: random.Random, event_type: EventType, market_impact: float) -> dict[str, float]:
    if event_type == EventType.SECTOR_CRASH:
        target = rng.choice(AFFECTED_SECTORS)
        return {
            sector: market_impact * (1.5 if sector == target else 0.3)
            for sector in AFFECTED_SECTORS
        }
    spread = 0.2 if event_type == EventType.MARKET_CRASH else 0.05
    return {
        sector: market_impact + (rng.random() - 0.5) * spread
        for sector in AFFECTED_SECTORS
    }


class EventGenerator:
    """Check-interval state for one simulation.

    Owned by a single engine instance; two generators never share state.
    """

    def __init__(
        self,
        config: EngineConfig,
        streams: RandomStreams,
        early_warning: Optional[EarlyWarningSystem] = None,
    ):
        self.config = config
        self.streams = streams
        self.early_warning = early_warning
        self.last_check_day: Optional[int] = None
        self.last_event_day: Optional[int] = None
        self.generated: list[MarketEvent] = []

    @property
    def simulation_start_day(self) -> int:
        return date(self.config.cutover_year + 1, 1, 1).toordinal()

    def generate_event(self, moment: datetime, event_type: EventType, salt: int = 0) -> MarketEvent:
        """Build the event for (date, type, salt). Pure: no generator state is read or written."""
        day = day_number(moment)
        rng = self.streams.stream(day, mix_seed(stable_salt(f"event:{event_type.value}"), salt))

        # Fixed draw order keeps events reproducible
        u_severity = rng.random()
        u_impact = rng.random()
        u_volatility = rng.random()
        u_duration = rng.random()
        u_jitter = rng.random()
        u_name = rng.random()

        profile = SEVERITY_PROFILES[select_severity(u_severity)]
        low, high = profile.impact_range
        market_impact = -(low + u_impact * (high - low))
        vol_low, vol_high = profile.volatility_range
        volatility_multiplier = vol_low + u_volatility * (vol_high - vol_low)
        dur_low, dur_high = profile.duration_range
        duration_days = dur_low + math.floor(u_duration * (dur_high - dur_low))

        names = EVENT_NAMES[event_type]
        name = names[math.floor(u_name * len(names))].format(year=moment.year, month=moment.month)
        event_id = f"dynamic_{moment:%Y%m%d}_{event_type.value}"
        if salt:
            event_id = f"{event_id}_{salt}"

        return MarketEvent(
            id=event_id,
            name=name,
            type=event_type,
            severity=profile.severity,
            activated_at=moment,
            impact=EventImpact(
                market=market_impact,
                sector_impacts=_sector_impacts(rng, event_type, market_impact),
                volatility_multiplier=volatility_multiplier,
                liquidity_reduction=min(0.8, abs(market_impact) * 1.5),
                sentiment_shift=max(-0.95, market_impact * 2.0),
            ),
            cascading_stages=build_cascading_stages(profile, duration_days, u_jitter),
            recovery_pattern=RecoveryPattern(
                type=profile.recovery_type,
                duration_days=duration_days,
                volatility_decay=volatility_decay_for(duration_days),
            ),
            trigger=TriggerType.SCHEDULED,
            is_dynamic=True,
            description=f"Dynamically generated {event_type.value.replace('_', ' ')} event for {moment.year}",
        )

    def crash_probability(self, indicators: Optional[MarketIndicators], moment: datetime) -> float:
        annual = self.config.annual_crash_probability
        if indicators is None or self.early_warning is None or not self.config.early_warning_enabled:
            return annual
        return self.early_warning.assess(indicators, baseline_probability=annual, moment=moment).adjusted_probability

    def advance(
        self,
        moment: datetime,
        regime: Regime,
        indicators: Optional[MarketIndicators] = None,
    ) -> list[MarketEvent]:
        """Roll for a new event if a full check interval has accrued since the last roll."""
        if regime == Regime.HISTORICAL or not self.config.event_generation_enabled:
            return []

        day = day_number(moment)
        interval = self.config.check_interval_days
        if self.last_check_day is None:
            self.last_check_day = max(day - interval, self.simulation_start_day)

        elapsed = day - self.last_check_day
        if elapsed < interval:
            return []

        if self.last_event_day is not None and day - self.last_event_day < self.config.min_days_between_events:
            # Cooldown still consumes the interval
            self.last_check_day = day
            return []

        rolls = [
            (EventType.MARKET_CRASH, self.crash_probability(indicators, moment)),
            (EventType.CORRECTION, self.config.annual_correction_probability),
            (EventType.SECTOR_CRASH, self.config.annual_sector_crash_probability),
        ]
        rng = self.streams.stream(day, stable_salt("generator:roll"))
        self.last_check_day = day

        for event_type, annual_probability in rolls:
            if rng.random() < interval_probability(annual_probability, elapsed):
                event = self.generate_event(moment, event_type)
                self.last_event_day = day
                self.generated.append(event)
                logger.info(
                    "Generated %s event %s (%s, market impact %.1f%%, %d days)",
                    event.type.value, event.id, event.severity.value,
                    event.impact.market * 100, event.recovery_pattern.duration_days,
                )
                return [event]
        return []

    def reset(self) -> None:
        self.last_check_day = None
        self.last_event_day = None
        self.generated.clear()

    def to_snapshot(self) -> dict[str, Optional[int]]:
        return {"last_check_day": self.last_check_day, "last_event_day": self.last_event_day}

    def load_snapshot(self, data: dict[str, Optional[int]]) -> None:
        self.last_check_day = data.get("last_check_day")
        self.last_event_day = data.get("last_event_day")
