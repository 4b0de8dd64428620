"""
Market average controls for forward-simulated periods.

Four ordered stages keep long-horizon simulated returns realistic:
  1. Mean reversion (discretized Ornstein-Uhlenbeck step toward a long-run target)
  2. Valuation dampening (positive returns only, by P/E band)
  3. Volatility-regime caps (symmetric clamp shrinking as volatility rises)
  4. Soft circuit breaker (only the excess beyond the threshold is dampened)

Before the regime cutover every stage is skipped and the pipeline is the identity.
"""
from __future__ import annotations

import copy
import logging
import math
from collections import deque
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, Optional

from services.engine_config import EngineConfig

logger = logging.getLogger(__name__)

RETURN_HISTORY_LIMIT = 10
MIN_RECENT_VOLATILITY = 0.05
MAX_RECENT_VOLATILITY = 1.0
PERIODS_PER_YEAR = {"daily": 252, "weekly": 52}


class Regime(str, Enum):
    HISTORICAL = "historical"
    SIMULATED = "simulated"


def resolve_regime(moment: date | datetime, cutover_year: int) -> Regime:
    """Years up to and including the cutover replay history; later years are simulated."""
    return Regime.HISTORICAL if moment.year <= cutover_year else Regime.SIMULATED


@dataclass
class MacroState:
    current_pe: float = 16.0
    recent_volatility: float = 0.15
    historical_returns: deque = field(default_factory=lambda: deque(maxlen=RETURN_HISTORY_LIMIT))

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_pe": self.current_pe,
            "recent_volatility": self.recent_volatility,
            "historical_returns": list(self.historical_returns),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MacroState":
        return cls(
            current_pe=float(data["current_pe"]),
            recent_volatility=float(data["recent_volatility"]),
            historical_returns=deque(data.get("historical_returns", []), maxlen=RETURN_HISTORY_LIMIT),
        )


@dataclass
class ControlResult:
    original_return: float
    adjusted_return: float
    regime: Regime
    mean_reversion: float = 0.0
    valuation_dampening: float = 0.0
    volatility_cap: float = 0.0
    circuit_breaker: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "original_return": self.original_return,
            "adjusted_return": self.adjusted_return,
            "regime": self.regime.value,
            "controls": {
                "mean_reversion": self.mean_reversion,
                "valuation_dampening": self.valuation_dampening,
                "volatility_cap": self.volatility_cap,
                "circuit_breaker": self.circuit_breaker,
            },
        }


def _interpolate(value: float, low: float, high: float, at_low: float, at_high: float) -> float:
    progress = (value - low) / (high - low)
    return at_low + (at_high - at_low) * progress


class MarketControlPipeline:
    def __init__(self, config: EngineConfig, state: Optional[MacroState] = None):
        self.config = config
        self.state = state or self.initial_state(config)
        # Returns seen during the current simulated day, folded into the state on day change
        self._pending_day: Optional[int] = None
        self._pending_returns: list[float] = []

    @staticmethod
    def initial_state(config: EngineConfig) -> MacroState:
        return MacroState(current_pe=config.initial_pe, recent_volatility=config.initial_volatility)

    @property
    def periods_per_year(self) -> int:
        return PERIODS_PER_YEAR[self.config.control_period]

    # ── Stages ──

    def long_run_target(self, regime: Regime) -> float:
        """Annual long-run return target expressed per control period."""
        mu = self.config.mu_historical if regime == Regime.HISTORICAL else self.config.mu_post_cutover
        return mu / self.periods_per_year

    def apply_mean_reversion(self, proposed_return: float, regime: Regime = Regime.SIMULATED) -> float:
        if not self.config.mean_reversion_enabled:
            return proposed_return
        mu = self.long_run_target(regime)
        return proposed_return - self.config.mean_reversion_theta * (proposed_return - mu)

    def valuation_factor(self, pe: float) -> float:
        c = self.config
        if pe >= c.extreme_pe:
            return c.dampening_extreme
        if pe >= c.high_pe:
            return _interpolate(pe, c.high_pe, c.extreme_pe, c.dampening_high, c.dampening_extreme)
        if pe >= c.normal_pe:
            return _interpolate(pe, c.normal_pe, c.high_pe, c.dampening_elevated, c.dampening_high)
        return 1.0

    def apply_valuation_dampening(self, proposed_return: float) -> float:
        if not self.config.valuation_enabled or proposed_return <= 0:
            return proposed_return
        return proposed_return * self.valuation_factor(self.state.current_pe)

    def return_cap(self, volatility: float) -> float:
        c = self.config
        if volatility >= c.extreme_volatility:
            return c.return_cap_extreme
        if volatility >= c.high_volatility:
            return _interpolate(volatility, c.high_volatility, c.extreme_volatility,
                                c.return_cap_elevated, c.return_cap_extreme)
        if volatility >= c.normal_volatility:
            return _interpolate(volatility, c.normal_volatility, c.high_volatility,
                                c.return_cap_normal, c.return_cap_elevated)
        return c.return_cap_normal

    def apply_volatility_cap(self, proposed_return: float) -> float:
        if not self.config.volatility_cap_enabled:
            return proposed_return
        cap = self.return_cap(self.state.recent_volatility)
        return max(-cap, min(cap, proposed_return))

    def circuit_breaker_threshold(self) -> float:
        if self.config.control_period == "weekly":
            return self.config.weekly_threshold
        return self.config.daily_threshold

    def apply_circuit_breaker(self, proposed_return: float) -> float:
        """Pass the return through up to the threshold and dampen only the excess."""
        if not self.config.circuit_breaker_enabled:
            return proposed_return
        threshold = self.circuit_breaker_threshold()
        magnitude = abs(proposed_return)
        if magnitude <= threshold:
            return proposed_return
        dampened = threshold + (magnitude - threshold) * self.config.circuit_breaker_dampening
        logger.debug("Circuit breaker: %.4f dampened to %.4f", proposed_return, math.copysign(dampened, proposed_return))
        return math.copysign(dampened, proposed_return)

    # ── Pipeline ──

    def apply(self, proposed_return: float, regime: Regime, update_state: bool = True) -> ControlResult:
        result = ControlResult(original_return=proposed_return, adjusted_return=proposed_return, regime=regime)
        if regime == Regime.HISTORICAL:
            return result

        current = proposed_return
        after = self.apply_mean_reversion(current, regime)
        result.mean_reversion, current = after - current, after
        after = self.apply_valuation_dampening(current)
        result.valuation_dampening, current = after - current, after
        after = self.apply_volatility_cap(current)
        result.volatility_cap, current = after - current, after
        after = self.apply_circuit_breaker(current)
        result.circuit_breaker, current = after - current, after
        result.adjusted_return = current

        if update_state:
            self.update_macro_state(current)
        return result

    def update_macro_state(self, price_return: float) -> None:
        """Compound P/E, roll the EWMA volatility and the bounded return history."""
        c = self.config
        state = self.state
        n = self.periods_per_year

        state.current_pe *= 1.0 + (price_return - c.earnings_growth / n)
        state.current_pe = max(c.pe_floor, min(c.pe_ceiling, state.current_pe))

        # EWMA on annualized squared returns
        variance = c.ewma_lambda * state.recent_volatility ** 2 + (1.0 - c.ewma_lambda) * price_return ** 2 * n
        state.recent_volatility = max(MIN_RECENT_VOLATILITY, min(MAX_RECENT_VOLATILITY, math.sqrt(variance)))

        state.historical_returns.append(price_return)

    def record_step(self, day: int, adjusted_return: float) -> None:
        """Collect a priced return for `day`; the previous day's mean is folded into the state first."""
        if self._pending_day is not None and day != self._pending_day:
            self.close_period()
        self._pending_day = day
        self._pending_returns.append(adjusted_return)

    def close_period(self) -> None:
        if self._pending_returns:
            self.update_macro_state(sum(self._pending_returns) / len(self._pending_returns))
        self._pending_day = None
        self._pending_returns = []

    def diagnostics(self, scenarios: Iterable[float]) -> list[dict[str, Any]]:
        """Run proposed returns through a copy of the pipeline; live state is untouched."""
        probe = MarketControlPipeline(self.config, copy.deepcopy(self.state))
        results = []
        for proposed in scenarios:
            result = probe.apply(proposed, Regime.SIMULATED)
            results.append({**result.to_dict(), "macro_state": probe.state.to_dict()})
        return results

    def reset(self) -> None:
        self.state = self.initial_state(self.config)
        self._pending_day = None
        self._pending_returns = []
