"""
Per-instrument conditional volatility.

GARCH(1,1): sigma2_t = omega + alpha * eps2_{t-1} + beta * sigma2_{t-1}
Returns are drawn from a Student's t distribution scaled by the current
conditional volatility, which gives fat tails and volatility clustering.
"""
from __future__ import annotations

import logging
import math
import random
from collections import deque
from typing import Any

import numpy as np

logger = logging.getLogger(__name__)

TRADING_DAYS_PER_YEAR = 252

# Typical calibration for daily equity returns
DEFAULT_OMEGA = 0.00001
DEFAULT_ALPHA = 0.09
DEFAULT_BETA = 0.90
DEFAULT_VARIANCE_CAP = 1.0  # 100% daily


def sample_standard_normal(rng: random.Random) -> float:
    return rng.gauss(0.0, 1.0)


def sample_student_t(rng: random.Random, degrees_of_freedom: float = 5.0) -> float:
    """Student's t sample: Z / sqrt(ChiSquared(df) / df). Lower df means fatter tails."""
    if degrees_of_freedom <= 0:
        raise ValueError(f"degrees_of_freedom must be positive, got {degrees_of_freedom}")
    z = rng.gauss(0.0, 1.0)
    # ChiSquared(df) == Gamma(shape=df/2, scale=2)
    chi_squared = rng.gammavariate(degrees_of_freedom / 2.0, 2.0)
    return z / math.sqrt(chi_squared / degrees_of_freedom)


def excess_kurtosis(values) -> float:
    """Sample excess kurtosis (0 for a normal distribution, > 0 for fat tails)."""
    x = np.asarray(values, dtype=float)
    centered = x - x.mean()
    m2 = np.mean(centered ** 2)
    m4 = np.mean(centered ** 4)
    return float(m4 / m2 ** 2 - 3.0)


def skewness(values) -> float:
    """Sample skewness. Negative means the left tail is heavier."""
    x = np.asarray(values, dtype=float)
    centered = x - x.mean()
    m2 = np.mean(centered ** 2)
    m3 = np.mean(centered ** 3)
    return float(m3 / m2 ** 1.5)


class VolatilityModel:
    """GARCH(1,1) state for a single instrument."""

    def __init__(
        self,
        omega: float = DEFAULT_OMEGA,
        alpha: float = DEFAULT_ALPHA,
        beta: float = DEFAULT_BETA,
        variance_cap: float = DEFAULT_VARIANCE_CAP,
        history_window: int = TRADING_DAYS_PER_YEAR,
    ):
        if omega <= 0:
            raise ValueError(f"omega must be positive, got {omega}")
        if alpha < 0 or beta < 0:
            raise ValueError(f"alpha and beta must be non-negative, got alpha={alpha}, beta={beta}")
        if variance_cap <= 0:
            raise ValueError(f"variance_cap must be positive, got {variance_cap}")

        self.omega = omega
        self.alpha = alpha
        self.beta = beta
        self.variance_cap = variance_cap

        if not self.is_stationary:
            # Accepted as an explicit operator override, never auto-corrected
            logger.warning(
                "GARCH parameters are non-stationary: alpha + beta = %.4f >= 1; "
                "variance will drift toward the cap %.4f",
                self.persistence, variance_cap,
            )

        self.current_variance = self.unconditional_variance
        self.last_return = 0.0
        self.variance_history: deque[float] = deque(maxlen=history_window)
        self.return_history: deque[float] = deque(maxlen=history_window)

    @property
    def persistence(self) -> float:
        return self.alpha + self.beta

    @property
    def is_stationary(self) -> bool:
        return self.persistence < 1.0

    @property
    def unconditional_variance(self) -> float:
        """Long-run variance omega / (1 - alpha - beta).

        For non-stationary parameters there is no finite fixed point, so the
        variance cap stands in for it.
        """
        if not self.is_stationary:
            return self.variance_cap
        return min(self.omega / (1.0 - self.persistence), self.variance_cap)

    def update_volatility(self, return_value: float) -> float:
        """Feed one realized return through the recursion and return the new variance."""
        self.current_variance = (
            self.omega
            + self.alpha * return_value ** 2
            + self.beta * self.current_variance
        )
        self.current_variance = min(self.current_variance, self.variance_cap)
        self.last_return = return_value

        self.variance_history.append(self.current_variance)
        self.return_history.append(return_value)
        return self.current_variance

    @property
    def current_volatility(self) -> float:
        return math.sqrt(self.current_variance)

    @property
    def annualized_volatility(self) -> float:
        return math.sqrt(self.current_variance * TRADING_DAYS_PER_YEAR)

    def generate_return(
        self,
        rng: random.Random,
        degrees_of_freedom: float = 5.0,
        drift: float = 0.0,
        max_return_cap: float = 0.15,
    ) -> float:
        """Fat-tailed return scaled by the current volatility, clamped to +/- max_return_cap."""
        raw = drift + self.current_volatility * sample_student_t(rng, degrees_of_freedom)
        return max(-max_return_cap, min(max_return_cap, raw))

    def apply_volatility_shock(self, multiplier: float) -> None:
        """Scale the current variance at once, e.g. when a crash begins."""
        if multiplier < 0:
            raise ValueError(f"volatility shock multiplier must be non-negative, got {multiplier}")
        self.current_variance = min(self.current_variance * multiplier, self.variance_cap)

    def reset(self) -> None:
        self.current_variance = self.unconditional_variance
        self.last_return = 0.0
        self.variance_history.clear()
        self.return_history.clear()

    def get_parameters(self) -> dict[str, float]:
        return {
            "omega": self.omega,
            "alpha": self.alpha,
            "beta": self.beta,
            "persistence": self.persistence,
            "unconditional_volatility": math.sqrt(self.unconditional_variance),
        }

    def to_snapshot(self) -> dict[str, float]:
        return {
            "omega": self.omega,
            "alpha": self.alpha,
            "beta": self.beta,
            "current_variance": self.current_variance,
        }

    @classmethod
    def from_snapshot(cls, data: dict[str, Any], variance_cap: float = DEFAULT_VARIANCE_CAP) -> "VolatilityModel":
        model = cls(
            omega=data["omega"],
            alpha=data["alpha"],
            beta=data["beta"],
            variance_cap=variance_cap,
        )
        model.current_variance = max(0.0, min(float(data["current_variance"]), variance_cap))
        return model

    def __repr__(self) -> str:
        return (
            f"VolatilityModel(omega={self.omega}, alpha={self.alpha}, beta={self.beta}, "
            f"variance={self.current_variance:.6g})"
        )
