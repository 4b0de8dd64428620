"""
Catalog of historical and hypothetical crash scenarios that can be triggered by id,
plus a builder for custom events.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from services.event_generator import SEVERITY_PROFILES, build_cascading_stages, volatility_decay_for
from services.market_events import (
    CascadingStage,
    EventImpact,
    EventNotFoundError,
    EventType,
    MarketEvent,
    RecoveryPattern,
    Severity,
    TriggerType,
)

# Scenario kinds outside the engine's three event types
_TYPE_ALIASES = {
    "flash_crash": EventType.MARKET_CRASH,
    "contagion": EventType.MARKET_CRASH,
}

HISTORICAL_SCENARIOS: list[dict[str, Any]] = [
    {
        "id": "black_monday_1987",
        "name": "Black Monday 1987",
        "type": "market_crash",
        "severity": "catastrophic",
        "start_date": "1987-10-19",
        "description": "The largest single-day percentage decline in stock market history",
        "impact": {
            "market": -0.2278,
            "volatility_multiplier": 5.0,
            "liquidity_reduction": 0.6,
            "sentiment_shift": -0.8,
            "sectors": {"Financial": -0.25, "Technology": -0.20, "Industrials": -0.23, "Consumer": -0.18, "Energy": -0.22},
        },
        "stages": [(0, 1.0), (1, 0.3), (2, 0.15), (7, -0.2)],
        "recovery": ("gradual", 90, 0.95),
    },
    {
        "id": "dot_com_crash_2000",
        "name": "Dot-Com Bubble Burst",
        "type": "sector_crash",
        "severity": "catastrophic",
        "start_date": "2000-03-10",
        "description": "Technology sector bubble collapse with a decade-long impact",
        "impact": {
            "market": -0.40,
            "volatility_multiplier": 4.0,
            "liquidity_reduction": 0.5,
            "sentiment_shift": -0.8,
            "sectors": {"Technology": -0.78, "Financial": -0.15, "Industrials": -0.12, "Consumer": -0.10, "Energy": -0.08},
        },
        "stages": [
            (0, 1.0), (30, 0.9), (90, 0.8), (180, 0.7), (365, 0.6), (730, 0.5), (1095, 0.4), (1460, 0.35),
            (1825, 0.3), (2190, 0.25), (2555, 0.2), (2920, 0.15), (3285, 0.12), (3650, 0.10), (4380, 0.07),
            (5110, 0.05), (5475, 0.02),
        ],
        "recovery": ("decade-long", 5475, 0.9995),
    },
    {
        "id": "financial_crisis_2008",
        "name": "Financial Crisis of 2008",
        "type": "market_crash",
        "severity": "catastrophic",
        "start_date": "2008-09-15",
        "description": "Global financial crisis with a 6.5 year recovery to pre-crisis levels",
        "impact": {
            "market": -0.57,
            "volatility_multiplier": 5.5,
            "liquidity_reduction": 0.75,
            "sentiment_shift": -0.95,
            "sectors": {
                "Financial": -0.83, "Technology": -0.42, "Industrials": -0.54,
                "Consumer": -0.48, "Energy": -0.60, "Healthcare": -0.35,
            },
        },
        "stages": [
            (0, 1.0), (7, 0.95), (14, 0.90), (30, 0.85), (60, 0.80), (90, 0.75), (120, 0.70), (180, 0.65),
            (365, 0.60), (547, 0.55), (730, 0.50), (1095, 0.40), (1460, 0.30), (1825, 0.20), (2190, 0.10),
            (2375, 0.05),
        ],
        "recovery": ("decade-long", 2375, 0.9997),
    },
    {
        "id": "flash_crash_2010",
        "name": "Flash Crash of 2010",
        "type": "flash_crash",
        "severity": "severe",
        "start_date": "2010-05-06",
        "description": "Rapid algorithmic trading-induced crash and recovery",
        "impact": {
            "market": -0.09,
            "volatility_multiplier": 10.0,
            "liquidity_reduction": 0.9,
            "sentiment_shift": -0.6,
            "sectors": {"Financial": -0.10, "Technology": -0.09, "Industrials": -0.08, "Consumer": -0.08, "Energy": -0.09},
        },
        "stages": [(0, 1.0), (0.02, -0.7), (1, -0.95)],
        "recovery": ("immediate", 1, 0.85),
    },
    {
        "id": "covid_crash_2020",
        "name": "COVID-19 Pandemic Crash",
        "type": "market_crash",
        "severity": "severe",
        "start_date": "2020-02-20",
        "description": "Rapid market crash due to the COVID-19 pandemic",
        "impact": {
            "market": -0.34,
            "volatility_multiplier": 6.0,
            "liquidity_reduction": 0.5,
            "sentiment_shift": -0.85,
            "sectors": {
                "Financial": -0.40, "Technology": -0.25, "Industrials": -0.42,
                "Consumer": -0.45, "Energy": -0.55, "Healthcare": -0.20,
            },
        },
        "stages": [(0, 1.0), (1, 0.5), (3, 0.3), (7, 0.2), (14, -0.3)],
        "recovery": ("v-shaped", 150, 0.92),
    },
]

HYPOTHETICAL_SCENARIOS: list[dict[str, Any]] = [
    {
        "id": "tech_bubble_burst",
        "name": "Hypothetical Tech Bubble Burst",
        "type": "sector_crash",
        "severity": "catastrophic",
        "description": "Simulated collapse of an overvalued technology sector",
        "impact": {
            "market": -0.25,
            "volatility_multiplier": 4.0,
            "liquidity_reduction": 0.5,
            "sentiment_shift": -0.75,
            "sectors": {"Technology": -0.60, "Financial": -0.15, "Industrials": -0.10, "Consumer": -0.08, "Energy": -0.05},
        },
        "stages": [(0, 1.0), (7, 0.3), (30, 0.2), (90, 0.1)],
        "recovery": ("gradual", 365, 0.96),
    },
    {
        "id": "banking_crisis",
        "name": "Hypothetical Banking Crisis",
        "type": "contagion",
        "severity": "catastrophic",
        "description": "Simulated systemic banking failure",
        "impact": {
            "market": -0.45,
            "volatility_multiplier": 5.0,
            "liquidity_reduction": 0.8,
            "sentiment_shift": -0.95,
            "sectors": {"Financial": -0.70, "Technology": -0.35, "Industrials": -0.40, "Consumer": -0.42, "Energy": -0.38},
        },
        "stages": [(0, 1.0), (1, 0.5), (7, 0.4), (30, 0.3), (90, 0.2), (180, 0.1)],
        "recovery": ("slow", 730, 0.98),
    },
    {
        "id": "energy_crisis",
        "name": "Hypothetical Energy Crisis",
        "type": "sector_crash",
        "severity": "severe",
        "description": "Simulated oil and energy supply shock",
        "impact": {
            "market": -0.18,
            "volatility_multiplier": 3.5,
            "liquidity_reduction": 0.4,
            "sentiment_shift": -0.65,
            "sectors": {"Energy": -0.50, "Industrials": -0.25, "Consumer": -0.20, "Financial": -0.12, "Technology": -0.08},
        },
        "stages": [(0, 1.0), (7, 0.4), (30, 0.3), (90, 0.15)],
        "recovery": ("gradual", 180, 0.95),
    },
    {
        "id": "geopolitical_shock",
        "name": "Hypothetical Geopolitical Shock",
        "type": "market_crash",
        "severity": "severe",
        "description": "Simulated major geopolitical crisis",
        "impact": {
            "market": -0.28,
            "volatility_multiplier": 4.5,
            "liquidity_reduction": 0.55,
            "sentiment_shift": -0.80,
            "sectors": {"Financial": -0.32, "Technology": -0.22, "Industrials": -0.30, "Consumer": -0.25, "Energy": -0.35},
        },
        "stages": [(0, 1.0), (1, 0.4), (7, 0.25), (30, 0.15)],
        "recovery": ("gradual", 120, 0.94),
    },
]


def all_scenarios() -> list[dict[str, Any]]:
    return HISTORICAL_SCENARIOS + HYPOTHETICAL_SCENARIOS


def get_scenario(scenario_id: str) -> dict[str, Any]:
    for scenario in all_scenarios():
        if scenario["id"] == scenario_id:
            return scenario
    raise EventNotFoundError(scenario_id)


def scenario_event_type(raw_type: str) -> EventType:
    return _TYPE_ALIASES.get(raw_type) or EventType(raw_type)


def summarize_scenario(scenario: dict[str, Any]) -> dict[str, Any]:
    """Listing view of a catalog entry."""
    kind, duration, _ = scenario["recovery"]
    return {
        "id": scenario["id"],
        "name": scenario["name"],
        "type": scenario_event_type(scenario["type"]).value,
        "severity": scenario["severity"],
        "description": scenario["description"],
        "historical": "start_date" in scenario,
        "start_date": scenario.get("start_date"),
        "market_impact": scenario["impact"]["market"],
        "recovery_type": kind,
        "duration_days": duration,
    }


def build_scenario_event(scenario_id: str, activated_at: datetime, event_id: Optional[str] = None) -> MarketEvent:
    scenario = get_scenario(scenario_id)
    impact = scenario["impact"]
    recovery_type, duration, decay = scenario["recovery"]
    return MarketEvent(
        id=event_id or f"{scenario_id}_{activated_at:%Y%m%d}",
        name=scenario["name"],
        type=scenario_event_type(scenario["type"]),
        severity=Severity(scenario["severity"]),
        activated_at=activated_at,
        impact=EventImpact(
            market=impact["market"],
            sector_impacts=dict(impact["sectors"]),
            volatility_multiplier=impact["volatility_multiplier"],
            liquidity_reduction=impact["liquidity_reduction"],
            sentiment_shift=impact["sentiment_shift"],
        ),
        cascading_stages=[CascadingStage(offset, multiplier) for offset, multiplier in scenario["stages"]],
        recovery_pattern=RecoveryPattern(recovery_type, duration, decay),
        trigger=TriggerType.HISTORICAL if "start_date" in scenario else TriggerType.MANUAL,
        description=scenario["description"],
    )


def build_custom_event(
    event_id: str,
    activated_at: datetime,
    market_impact: float,
    event_type: EventType = EventType.MARKET_CRASH,
    severity: Severity = Severity.MODERATE,
    name: str = "Custom Market Event",
    sector_impacts: Optional[dict[str, float]] = None,
    volatility_multiplier: Optional[float] = None,
    duration_days: Optional[int] = None,
    liquidity_reduction: Optional[float] = None,
    sentiment_shift: Optional[float] = None,
    description: str = "Custom market crash scenario",
) -> MarketEvent:
    """Manual event shaped by its severity profile.

    Unset fields take the profile's midpoint volatility multiplier, its default
    duration and undamped cascading stages. Without sector impacts the event
    hits every instrument with the market impact alone.
    """
    profile = SEVERITY_PROFILES[severity]
    duration = duration_days or profile.default_duration
    if volatility_multiplier is None:
        volatility_multiplier = sum(profile.volatility_range) / 2.0
    return MarketEvent(
        id=event_id,
        name=name,
        type=event_type,
        severity=severity,
        activated_at=activated_at,
        impact=EventImpact(
            market=market_impact,
            sector_impacts=dict(sector_impacts or {}),
            volatility_multiplier=volatility_multiplier,
            liquidity_reduction=min(0.8, abs(market_impact) * 1.5) if liquidity_reduction is None else liquidity_reduction,
            sentiment_shift=max(-0.95, market_impact * 2.0) if sentiment_shift is None else sentiment_shift,
        ),
        cascading_stages=build_cascading_stages(profile, duration),
        recovery_pattern=RecoveryPattern(profile.recovery_type, duration, volatility_decay_for(duration)),
        trigger=TriggerType.MANUAL,
        description=description,
    )
