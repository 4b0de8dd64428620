"""
Market engine facade.

One MarketEngine instance owns every piece of mutable simulation state
(volatility models, macro state, generator checkpoints, events), so independent
games never share state. The engine performs no I/O: callers persist events and
snapshots through `to_snapshot()` / `load_snapshot()`.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from services.correlation_engine import CorrelationEngine
from services.crash_scenarios import build_custom_event, build_scenario_event
from services.early_warning import EarlyWarningSystem, MarketIndicators, WarningAssessment
from services.engine_config import EngineConfig, apply_update
from services.event_generator import EventGenerator
from services.market_conditions import MarketConditions
from services.market_controls import MacroState, MarketControlPipeline, Regime, resolve_regime
from services.market_events import EventNotFoundError, EventType, MarketEvent, Severity
from services.price_impact import Instrument, PriceImpact, PriceImpactAggregator
from services.random_streams import DateSeededStreams, RandomStreams

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def _build_correlation(config: EngineConfig) -> CorrelationEngine:
    return CorrelationEngine(
        default_within_sector=config.default_within_sector_correlation,
        default_cross_sector=config.default_cross_sector_correlation,
        stress_multiplier=config.stress_multiplier,
        max_correlation=config.max_correlation,
        diagonal_floor=config.cholesky_floor,
    )


class MarketEngine:
    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        seed: int = 0,
        streams: Optional[RandomStreams] = None,
    ):
        self.config = config or EngineConfig()
        self.seed = seed
        self.streams = streams or DateSeededStreams(seed)
        self.early_warning = EarlyWarningSystem(
            baseline_probability=self.config.baseline_crash_probability,
            max_probability=self.config.max_crash_probability,
        )
        self.correlation = _build_correlation(self.config)
        self.pipeline = MarketControlPipeline(self.config)
        self.generator = EventGenerator(self.config, self.streams, self.early_warning)
        self.aggregator = PriceImpactAggregator(self.config, self.streams, self.correlation, self.pipeline)
        self.events: dict[str, MarketEvent] = {}
        self.conditions = MarketConditions()

    # ── Configuration ──

    def get_configuration(self) -> dict[str, Any]:
        return self.config.model_dump()

    def describe_configuration(self) -> dict[str, dict[str, Any]]:
        return EngineConfig.describe(self.config)

    def update_configuration(self, partial: dict[str, Any]) -> dict[str, Any]:
        """Apply all of `partial` or none of it (ConfigurationError names the offending key)."""
        self._apply_config(apply_update(self.config, partial))
        logger.info("Engine configuration updated: %s", ", ".join(sorted(partial)))
        return self.get_configuration()

    def _apply_config(self, config: EngineConfig) -> None:
        self.config = config
        self.correlation = _build_correlation(config)
        self.early_warning.baseline_probability = config.baseline_crash_probability
        self.early_warning.max_probability = config.max_crash_probability
        self.pipeline.config = config
        self.generator.config = config
        self.aggregator.config = config
        self.aggregator.correlation = self.correlation

    # ── Pricing ──

    def regime(self, moment: datetime) -> Regime:
        return resolve_regime(moment, self.config.cutover_year)

    def price_impact_breakdown(self, symbol: str, sector: str, base_price: float, current_time: datetime) -> PriceImpact:
        self.expire_events(current_time)
        self.conditions.update(current_time, self.active_events())
        return self.aggregator.compute(Instrument(symbol, sector, base_price), current_time, self.active_events())

    def compute_price_impact(self, symbol: str, sector: str, base_price: float, current_time: datetime) -> float:
        """Price for one instrument at one simulated step; always > 0."""
        return self.price_impact_breakdown(symbol, sector, base_price, current_time).price

    def compute_price_impacts(self, instruments: Sequence[Instrument], current_time: datetime) -> list[PriceImpact]:
        self.expire_events(current_time)
        self.conditions.update(current_time, self.active_events())
        return self.aggregator.compute_many(instruments, current_time, self.active_events())

    # ── Events ──

    def derived_indicators(self) -> MarketIndicators:
        """Indicators the engine can read off its own macro state and market conditions."""
        state = self.pipeline.state
        return MarketIndicators(
            average_pe=state.current_pe,
            volatility_ratio=state.recent_volatility / self.config.initial_volatility,
            sentiment=self.conditions.sentiment_score,
            liquidity=self.conditions.liquidity_level,
        )

    def advance_and_maybe_generate_events(
        self,
        current_time: datetime,
        indicators: Optional[MarketIndicators] = None,
    ) -> list[MarketEvent]:
        """Roll the generator for this check interval; the caller persists the returned events."""
        self.expire_events(current_time)
        self.conditions.update(current_time, self.active_events())
        if indicators is None and self.config.early_warning_enabled:
            indicators = self.derived_indicators()
        new_events = self.generator.advance(current_time, self.regime(current_time), indicators)
        for event in new_events:
            self.add_event(event)
            if event.type == EventType.MARKET_CRASH:
                self.early_warning.record_crash(current_time, event.severity.value)
        return new_events

    def _unique_id(self, base: str) -> str:
        candidate, n = base, 1
        while candidate in self.events:
            n += 1
            candidate = f"{base}_{n}"
        return candidate

    def add_event(self, event: MarketEvent) -> MarketEvent:
        self.events[event.id] = event
        return event

    def trigger_event(
        self,
        current_time: datetime,
        scenario_id: Optional[str] = None,
        market_impact: Optional[float] = None,
        event_type: EventType = EventType.MARKET_CRASH,
        severity: Severity = Severity.MODERATE,
        **custom: Any,
    ) -> MarketEvent:
        """Activate a catalog scenario by id, or a custom event when no scenario is named."""
        if scenario_id is not None:
            event = build_scenario_event(scenario_id, current_time, self._unique_id(f"{scenario_id}_{current_time:%Y%m%d}"))
        else:
            if market_impact is None:
                raise ValueError("custom events need a market_impact")
            event = build_custom_event(
                self._unique_id(f"custom_{current_time:%Y%m%d}"),
                current_time,
                market_impact,
                event_type=event_type,
                severity=severity,
                **custom,
            )
        self.add_event(event)
        logger.info(
            "Triggered %s event %s (%s, market impact %.1f%%)",
            event.type.value, event.id, event.severity.value, event.impact.market * 100,
        )
        return event

    def get_event(self, event_id: str) -> MarketEvent:
        try:
            return self.events[event_id]
        except KeyError:
            raise EventNotFoundError(event_id) from None

    def deactivate_event(self, event_id: str, current_time: datetime) -> MarketEvent:
        event = self.get_event(event_id)
        if event.is_active:
            event.deactivate(current_time)
            self.aggregator.forget_event(event_id)
            logger.info("Deactivated event %s", event_id)
        return event

    def expire_events(self, current_time: datetime) -> list[MarketEvent]:
        expired = []
        for event in self.events.values():
            if event.is_active and event.is_expired(current_time):
                event.deactivate(event.ends_at)
                self.aggregator.forget_event(event.id)
                expired.append(event)
                logger.info("Event %s expired after %d days", event.id, event.recovery_pattern.duration_days)
        return expired

    def active_events(self) -> list[MarketEvent]:
        return [event for event in self.events.values() if event.is_active]

    def event_history(self, limit: Optional[int] = None) -> list[MarketEvent]:
        history = sorted(self.events.values(), key=lambda e: e.activated_at, reverse=True)
        return history[:limit] if limit is not None else history

    # ── Early warning ──

    def assess_crash_risk(self, indicators: MarketIndicators, current_time: Optional[datetime] = None) -> WarningAssessment:
        return self.early_warning.assess(indicators, moment=current_time)

    # ── State ──

    def market_state(self, current_time: Optional[datetime] = None) -> dict[str, Any]:
        state = {
            "macro_state": self.pipeline.state.to_dict(),
            "market_conditions": self.conditions.to_dict(),
            "active_events": len(self.active_events()),
            "total_events": len(self.events),
            "tracked_instruments": len(self.aggregator.volatility_models),
            "warning_level": self.early_warning.warning_level,
        }
        if current_time is not None:
            state["regime"] = self.regime(current_time).value
        return state

    def control_diagnostics(self, scenarios: Iterable[float]) -> list[dict[str, Any]]:
        return self.pipeline.diagnostics(scenarios)

    def to_snapshot(self) -> dict[str, Any]:
        # Pending same-day returns are folded in so a restore resumes from settled state
        self.pipeline.close_period()
        aggregator = self.aggregator.to_snapshot()
        return {
            "version": SNAPSHOT_VERSION,
            "active_events": [event.to_dict() for event in self.active_events()],
            "macro_state": self.pipeline.state.to_dict(),
            "market_conditions": self.conditions.to_dict(),
            "per_instrument_volatility": aggregator["per_instrument_volatility"],
            "shocked_events": aggregator["shocked_events"],
            "last_levels": aggregator["last_levels"],
            "generator": self.generator.to_snapshot(),
            "config": self.get_configuration(),
        }

    def load_snapshot(self, data: dict[str, Any]) -> None:
        """Replace all mutable state with the snapshot's contents."""
        if "config" in data:
            self._apply_config(EngineConfig.model_validate(data["config"]))
        self.events = {}
        for raw in data.get("active_events", []):
            self.add_event(MarketEvent.from_dict(raw))
        self.pipeline.reset()
        self.pipeline.state = MacroState.from_dict(data["macro_state"])
        self.conditions = MarketConditions.from_dict(data.get("market_conditions", {}))
        self.aggregator.load_snapshot(data)
        self.generator.load_snapshot(data.get("generator", {}))

    def reset(self) -> None:
        """Back to a fresh engine; configuration and seed are kept."""
        self.events = {}
        self.aggregator.reset()
        self.pipeline.reset()
        self.generator.reset()
        self.conditions.reset()
        self.early_warning.reset()
        logger.info("Engine state reset")
