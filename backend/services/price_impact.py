"""
Per-step price aggregation.

For one instrument and one simulated step: sum the stepwise impact of every
active event, scale that level by the instrument's GARCH shock (blended with a
sector-correlated shock when several instruments are priced together), pass
the aggregate through the control pipeline after the regime cutover and apply
it to the base price.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence

from services.correlation_engine import CorrelationEngine
from services.engine_config import EngineConfig
from services.market_controls import ControlResult, MarketControlPipeline, Regime, resolve_regime
from services.market_events import MarketEvent
from services.random_streams import RandomStreams, day_number, stable_salt
from services.volatility_model import VolatilityModel, sample_standard_normal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Instrument:
    symbol: str
    sector: str
    base_price: float


@dataclass
class PriceImpact:
    symbol: str
    base_price: float
    price: float
    event_impact: float
    shock: float
    raw_return: float
    adjusted_return: float
    regime: Regime
    volatility: float
    controls: Optional[ControlResult] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "base_price": self.base_price,
            "price": self.price,
            "event_impact": self.event_impact,
            "shock": self.shock,
            "raw_return": self.raw_return,
            "adjusted_return": self.adjusted_return,
            "regime": self.regime.value,
            "volatility": self.volatility,
            "controls": self.controls.to_dict()["controls"] if self.controls else None,
        }


def event_impact(event: MarketEvent, sector: str, moment: datetime) -> float:
    """Current impact of one event on an instrument in `sector`.

    Market and sector components are scaled by the stage multiplier in force;
    when the event names the sector, the two components are averaged.
    """
    if not event.applies_at(moment):
        return 0.0
    multiplier = event.stage_multiplier(event.elapsed_days(moment))
    market = event.impact.market * multiplier
    sector_impact = event.impact.sector_impacts.get(sector)
    if sector_impact is None:
        return market
    return (market + sector_impact * multiplier) / 2.0


class PriceImpactAggregator:
    def __init__(
        self,
        config: EngineConfig,
        streams: RandomStreams,
        correlation: CorrelationEngine,
        pipeline: MarketControlPipeline,
    ):
        self.config = config
        self.streams = streams
        self.correlation = correlation
        self.pipeline = pipeline
        self.volatility_models: dict[str, VolatilityModel] = {}
        # (event id, symbol) pairs whose volatility shock has been applied
        self.shocked: set[tuple[str, str]] = set()
        # Last aggregate return per symbol, used to derive step-over-step market moves
        self.last_levels: dict[str, float] = {}

    def get_volatility_model(self, symbol: str) -> VolatilityModel:
        """Per-symbol GARCH state, created with configured defaults on first reference."""
        model = self.volatility_models.get(symbol)
        if model is None:
            model = VolatilityModel(
                omega=self.config.garch_omega,
                alpha=self.config.garch_alpha,
                beta=self.config.garch_beta,
                variance_cap=self.config.variance_cap,
            )
            self.volatility_models[symbol] = model
            logger.debug("Initialized volatility state for %s", symbol)
        return model

    def _apply_event_volatility(self, symbol: str, model: VolatilityModel, events: Sequence[MarketEvent], moment: datetime) -> None:
        for event in events:
            if not event.applies_at(moment):
                continue
            vm = event.impact.volatility_multiplier
            key = (event.id, symbol)
            if key not in self.shocked:
                model.apply_volatility_shock(vm)
                self.shocked.add(key)
            # Elevated variance decays back toward the long-run level over the recovery
            decay = event.recovery_pattern.volatility_decay ** event.elapsed_days(moment)
            floor = model.unconditional_variance * (1.0 + (vm - 1.0) * decay)
            model.current_variance = max(model.current_variance, min(floor, model.variance_cap))

    def total_event_impact(self, sector: str, events: Sequence[MarketEvent], moment: datetime) -> float:
        return sum(event_impact(event, sector, moment) for event in events)

    def _idiosyncratic_shock(self, symbol: str, model: VolatilityModel, day: int) -> float:
        rng = self.streams.stream(day, stable_salt(symbol))
        return model.generate_return(
            rng,
            degrees_of_freedom=self.config.degrees_of_freedom,
            drift=self.config.drift,
            max_return_cap=self.config.max_daily_return,
        )

    def _finish(
        self,
        instrument: Instrument,
        moment: datetime,
        regime: Regime,
        impact: float,
        shock: float,
        model: VolatilityModel,
    ) -> PriceImpact:
        # Shock scales the post-event level
        raw = (1.0 + impact) * (1.0 + shock) - 1.0
        controls = None
        adjusted = raw
        if regime == Regime.SIMULATED:
            controls = self.pipeline.apply(raw, regime, update_state=False)
            adjusted = controls.adjusted_return
            previous = self.last_levels.get(instrument.symbol, 0.0)
            step_return = (1.0 + adjusted) / (1.0 + previous) - 1.0 if previous > -1.0 else adjusted
            self.pipeline.record_step(day_number(moment), step_return)
        self.last_levels[instrument.symbol] = adjusted

        price = max(self.config.min_price, instrument.base_price * (1.0 + adjusted))
        return PriceImpact(
            symbol=instrument.symbol,
            base_price=instrument.base_price,
            price=price,
            event_impact=impact,
            shock=shock,
            raw_return=raw,
            adjusted_return=adjusted,
            regime=regime,
            volatility=model.current_volatility,
            controls=controls,
        )

    def compute(self, instrument: Instrument, moment: datetime, events: Sequence[MarketEvent]) -> PriceImpact:
        if instrument.base_price <= 0:
            raise ValueError(f"base price of {instrument.symbol} must be positive, got {instrument.base_price}")
        regime = resolve_regime(moment, self.config.cutover_year)
        model = self.get_volatility_model(instrument.symbol)
        self._apply_event_volatility(instrument.symbol, model, events, moment)

        shock = self._idiosyncratic_shock(instrument.symbol, model, day_number(moment))
        model.update_volatility(shock)
        impact = self.total_event_impact(instrument.sector, events, moment)
        return self._finish(instrument, moment, regime, impact, shock, model)

    def compute_many(self, instruments: Sequence[Instrument], moment: datetime, events: Sequence[MarketEvent]) -> list[PriceImpact]:
        """Price several instruments together so their shocks share the sector correlation structure."""
        for instrument in instruments:
            if instrument.base_price <= 0:
                raise ValueError(f"base price of {instrument.symbol} must be positive, got {instrument.base_price}")
        if not instruments:
            return []

        day = day_number(moment)
        regime = resolve_regime(moment, self.config.cutover_year)
        stress = any(event.applies_at(moment) for event in events)

        joint_rng = self.streams.stream(day, stable_salt("joint:" + ",".join(i.symbol for i in instruments)))
        independent = [sample_standard_normal(joint_rng) for _ in instruments]
        correlated = self.correlation.generate_correlated_returns(instruments, independent, stress)

        blend = self.config.correlation_blend
        cap = self.config.max_daily_return
        results = []
        for instrument, z in zip(instruments, correlated):
            model = self.get_volatility_model(instrument.symbol)
            self._apply_event_volatility(instrument.symbol, model, events, moment)
            idiosyncratic = self._idiosyncratic_shock(instrument.symbol, model, day)
            common = max(-cap, min(cap, model.current_volatility * float(z)))
            shock = (1.0 - blend) * idiosyncratic + blend * common
            model.update_volatility(shock)
            impact = self.total_event_impact(instrument.sector, events, moment)
            results.append(self._finish(instrument, moment, regime, impact, shock, model))
        return results

    def forget_event(self, event_id: str) -> None:
        self.shocked = {key for key in self.shocked if key[0] != event_id}

    def reset(self) -> None:
        self.volatility_models.clear()
        self.shocked.clear()
        self.last_levels.clear()

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "per_instrument_volatility": {
                symbol: model.to_snapshot() for symbol, model in sorted(self.volatility_models.items())
            },
            "shocked_events": sorted([event_id, symbol] for event_id, symbol in self.shocked),
            "last_levels": dict(sorted(self.last_levels.items())),
        }

    def load_snapshot(self, data: dict[str, Any]) -> None:
        self.volatility_models = {
            symbol: VolatilityModel.from_snapshot(state, variance_cap=self.config.variance_cap)
            for symbol, state in data.get("per_instrument_volatility", {}).items()
        }
        self.shocked = {(event_id, symbol) for event_id, symbol in data.get("shocked_events", [])}
        self.last_levels = dict(data.get("last_levels", {}))
