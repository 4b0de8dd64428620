"""
Tunable engine parameters with declared bounds.

Every key is a strict pydantic field carrying its type and {min, max}. Updates
are validated against the merged configuration as a whole: one bad key rejects
the entire update and nothing is applied.
"""
from __future__ import annotations

import logging
from typing import Any, Literal

import annotated_types
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Rejected configuration update, naming the key, its value and the violated bound."""

    def __init__(self, key: str, value: Any, bound: str):
        self.key = key
        self.value = value
        self.bound = bound
        super().__init__(f"Invalid configuration value for '{key}': {value!r} ({bound})")

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "value": self.value, "bound": self.bound}


class EngineConfig(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid", frozen=True)

    # ── Volatility (GARCH defaults for newly seen instruments) ──
    garch_omega: float = Field(0.00001, ge=1e-9, le=0.01)
    garch_alpha: float = Field(0.09, ge=0.0, le=1.0)
    garch_beta: float = Field(0.90, ge=0.0, le=1.0)
    variance_cap: float = Field(1.0, ge=0.0001, le=1.0)
    degrees_of_freedom: float = Field(5.0, ge=2.1, le=100.0)
    drift: float = Field(0.0, ge=-0.01, le=0.01)
    max_daily_return: float = Field(0.15, ge=0.001, le=0.5)

    # ── Correlation ──
    default_within_sector_correlation: float = Field(0.55, ge=-1.0, le=0.99)
    default_cross_sector_correlation: float = Field(0.25, ge=-1.0, le=0.99)
    stress_multiplier: float = Field(1.5, ge=1.0, le=3.0)
    max_correlation: float = Field(0.95, ge=0.0, le=0.99)
    cholesky_floor: float = Field(0.0001, ge=1e-12, le=0.01)
    correlation_blend: float = Field(0.5, ge=0.0, le=1.0)

    # ── Regime ──
    cutover_year: int = Field(2024, ge=1900, le=2200)

    # ── Event generation ──
    event_generation_enabled: bool = True
    annual_crash_probability: float = Field(0.15, ge=0.0, le=1.0)
    annual_correction_probability: float = Field(0.25, ge=0.0, le=1.0)
    annual_sector_crash_probability: float = Field(0.20, ge=0.0, le=1.0)
    check_interval_days: int = Field(90, ge=1, le=365)
    min_days_between_events: int = Field(90, ge=0, le=3650)

    # ── Early warning ──
    early_warning_enabled: bool = True
    baseline_crash_probability: float = Field(0.30, ge=0.0, le=1.0)
    max_crash_probability: float = Field(0.90, ge=0.0, le=1.0)

    # ── Control pipeline: mean reversion (Ornstein-Uhlenbeck) ──
    mean_reversion_enabled: bool = True
    mean_reversion_theta: float = Field(0.15, ge=0.0, le=1.0)
    mu_historical: float = Field(0.10, ge=-0.5, le=0.5)
    mu_post_cutover: float = Field(0.07, ge=-0.5, le=0.5)

    # ── Control pipeline: valuation dampening ──
    valuation_enabled: bool = True
    normal_pe: float = Field(16.0, ge=1.0, le=100.0)
    high_pe: float = Field(25.0, ge=1.0, le=100.0)
    extreme_pe: float = Field(35.0, ge=1.0, le=100.0)
    dampening_elevated: float = Field(0.7, ge=0.0, le=1.0)
    dampening_high: float = Field(0.4, ge=0.0, le=1.0)
    dampening_extreme: float = Field(0.2, ge=0.0, le=1.0)

    # ── Control pipeline: volatility-regime caps ──
    volatility_cap_enabled: bool = True
    normal_volatility: float = Field(0.15, ge=0.01, le=2.0)
    high_volatility: float = Field(0.30, ge=0.01, le=2.0)
    extreme_volatility: float = Field(0.50, ge=0.01, le=2.0)
    return_cap_normal: float = Field(0.40, ge=0.01, le=2.0)
    return_cap_elevated: float = Field(0.25, ge=0.01, le=2.0)
    return_cap_extreme: float = Field(0.15, ge=0.01, le=2.0)

    # ── Control pipeline: soft circuit breakers (threshold picked by control_period) ──
    circuit_breaker_enabled: bool = True
    control_period: Literal["daily", "weekly"] = "daily"
    daily_threshold: float = Field(0.10, ge=0.01, le=1.0)
    weekly_threshold: float = Field(0.20, ge=0.01, le=1.0)
    circuit_breaker_dampening: float = Field(0.5, ge=0.0, le=1.0)

    # ── Macro state ──
    initial_pe: float = Field(16.0, ge=1.0, le=100.0)
    initial_volatility: float = Field(0.15, ge=0.01, le=1.0)
    earnings_growth: float = Field(0.05, ge=-0.5, le=0.5)
    ewma_lambda: float = Field(0.94, ge=0.5, le=0.999)
    pe_floor: float = Field(5.0, ge=1.0, le=100.0)
    pe_ceiling: float = Field(50.0, ge=1.0, le=200.0)

    # ── Pricing ──
    min_price: float = Field(0.01, ge=1e-6, le=1.0)

    @classmethod
    def describe(cls, current: "EngineConfig | None" = None) -> dict[str, dict[str, Any]]:
        """Declared {type, min, max, value} for every key."""
        current = current or cls()
        schema = {}
        for name, field in cls.model_fields.items():
            lower = upper = None
            for meta in field.metadata:
                if isinstance(meta, annotated_types.Ge):
                    lower = meta.ge
                elif isinstance(meta, annotated_types.Le):
                    upper = meta.le
            annotation = field.annotation
            type_name = getattr(annotation, "__name__", None) or "choice"
            schema[name] = {
                "type": type_name if type_name in ("float", "int", "bool") else "choice",
                "min": lower,
                "max": upper,
                "value": getattr(current, name),
            }
        return schema


# Ordered bands: each key must stay strictly above the one before it
_ORDERED_BANDS: list[tuple[str, ...]] = [
    ("normal_pe", "high_pe", "extreme_pe"),
    ("normal_volatility", "high_volatility", "extreme_volatility"),
    ("pe_floor", "pe_ceiling"),
]


def _bound_from_error(error: dict[str, Any]) -> str:
    ctx = error.get("ctx") or {}
    kind = error["type"]
    if kind == "extra_forbidden":
        return "unknown configuration key"
    if "ge" in ctx:
        return f"must be >= {ctx['ge']}"
    if "le" in ctx:
        return f"must be <= {ctx['le']}"
    if kind == "literal_error":
        return f"must be one of {ctx.get('expected')}"
    return f"type mismatch: {error['msg']}"


def _check_bands(config: EngineConfig, changed: set[str]) -> None:
    for band in _ORDERED_BANDS:
        for lower_key, upper_key in zip(band, band[1:]):
            lower, upper = getattr(config, lower_key), getattr(config, upper_key)
            if lower < upper:
                continue
            # Blame the key the caller actually touched
            if upper_key in changed or lower_key not in changed:
                raise ConfigurationError(upper_key, upper, f"must be greater than {lower_key} ({lower})")
            raise ConfigurationError(lower_key, lower, f"must be less than {upper_key} ({upper})")

    if config.daily_threshold > config.weekly_threshold:
        key = "daily_threshold" if "daily_threshold" in changed else "weekly_threshold"
        raise ConfigurationError(key, getattr(config, key), "daily_threshold must not exceed weekly_threshold")


def apply_update(config: EngineConfig, partial: dict[str, Any]) -> EngineConfig:
    """Validate `partial` against `config` and return the new configuration.

    Raises ConfigurationError for the first offending key; `config` is never
    modified either way.
    """
    merged = {**config.model_dump(), **partial}
    try:
        updated = EngineConfig.model_validate(merged)
    except ValidationError as exc:
        error = exc.errors()[0]
        key = str(error["loc"][0]) if error["loc"] else "<config>"
        value = partial.get(key, error.get("input"))
        bound = _bound_from_error(error)
        logger.warning("Rejected configuration update: %s=%r (%s)", key, value, bound)
        raise ConfigurationError(key, value, bound) from exc

    try:
        _check_bands(updated, set(partial))
    except ConfigurationError as exc:
        logger.warning("Rejected configuration update: %s", exc)
        raise
    return updated
