"""
Sector-based correlation structure and correlated shock generation.

Stocks in the same sector move together more than stocks across sectors, and
all correlations rise during market stress. Correlated shocks are produced by
factoring the correlation matrix C = L L^T and computing L z for independent
standard normal draws z.
"""
from __future__ import annotations

import logging
from typing import Iterable, Protocol, Sequence

import numpy as np

logger = logging.getLogger(__name__)

WITHIN_SECTOR_CORRELATIONS: dict[str, float] = {
    "Technology": 0.65,
    "Financial": 0.70,
    "Energy": 0.60,
    "Healthcare": 0.55,
    "Industrials": 0.60,
    "Consumer": 0.50,
    "Materials": 0.58,
    "Utilities": 0.62,
    "Real Estate": 0.68,
    "Communication": 0.63,
}

CROSS_SECTOR_CORRELATIONS: dict[frozenset[str], float] = {
    frozenset(pair): value
    for pair, value in {
        ("Technology", "Financial"): 0.35,
        ("Technology", "Energy"): 0.20,
        ("Technology", "Healthcare"): 0.28,
        ("Technology", "Industrials"): 0.38,
        ("Technology", "Consumer"): 0.42,
        ("Financial", "Energy"): 0.30,
        ("Financial", "Healthcare"): 0.25,
        ("Financial", "Industrials"): 0.45,
        ("Financial", "Consumer"): 0.38,
        ("Energy", "Healthcare"): 0.18,
        ("Energy", "Industrials"): 0.35,
        ("Energy", "Consumer"): 0.28,
        ("Healthcare", "Industrials"): 0.30,
        ("Healthcare", "Consumer"): 0.32,
        ("Industrials", "Consumer"): 0.48,
    }.items()
}


class HasSector(Protocol):
    sector: str


class CorrelationEngine:
    def __init__(
        self,
        within_sector: dict[str, float] | None = None,
        cross_sector: dict[frozenset[str], float] | None = None,
        default_within_sector: float = 0.55,
        default_cross_sector: float = 0.25,
        stress_multiplier: float = 1.5,
        max_correlation: float = 0.95,
        diagonal_floor: float = 0.0001,
    ):
        self.within_sector = dict(WITHIN_SECTOR_CORRELATIONS if within_sector is None else within_sector)
        self.cross_sector = dict(CROSS_SECTOR_CORRELATIONS if cross_sector is None else cross_sector)
        self.default_within_sector = default_within_sector
        self.default_cross_sector = default_cross_sector
        self.stress_multiplier = stress_multiplier
        self.max_correlation = max_correlation
        self.diagonal_floor = diagonal_floor

    def get_correlation(self, sector_a: str, sector_b: str, stress: bool = False) -> float:
        """Pairwise correlation for two instruments' sectors.

        Unknown pairs fall back to the default cross-sector value instead of failing.
        """
        if sector_a == sector_b:
            correlation = self.within_sector.get(sector_a, self.default_within_sector)
        else:
            correlation = self.cross_sector.get(frozenset((sector_a, sector_b)), self.default_cross_sector)

        if stress:
            # Correlations tend toward 1 during crashes
            correlation *= self.stress_multiplier
        return max(-1.0, min(self.max_correlation, correlation))

    def build_correlation_matrix(self, instruments: Sequence[HasSector], stress: bool = False) -> np.ndarray:
        n = len(instruments)
        matrix = np.eye(n)
        for i in range(n):
            for j in range(i + 1, n):
                value = self.get_correlation(instruments[i].sector, instruments[j].sector, stress)
                matrix[i, j] = value
                matrix[j, i] = value
        return matrix

    def cholesky_decomposition(self, matrix: np.ndarray) -> np.ndarray:
        """Lower-triangular L with L @ L.T ~= matrix.

        Diagonal pivots are floored at `diagonal_floor` so near-singular inputs
        still factor; the result is then only an approximation of `matrix`.
        """
        a = np.asarray(matrix, dtype=float)
        if a.ndim != 2 or a.shape[0] != a.shape[1]:
            raise ValueError(f"correlation matrix must be square, got shape {a.shape}")

        n = a.shape[0]
        lower = np.zeros_like(a)
        for i in range(n):
            for j in range(i + 1):
                partial = float(np.dot(lower[i, :j], lower[j, :j]))
                if i == j:
                    pivot = a[i, i] - partial
                    if pivot < self.diagonal_floor:
                        logger.debug("Cholesky pivot %d floored (%.3g < %.3g)", i, pivot, self.diagonal_floor)
                        pivot = self.diagonal_floor
                    lower[i, j] = np.sqrt(pivot)
                else:
                    lower[i, j] = (a[i, j] - partial) / lower[j, j]
        return lower

    def generate_correlated_returns(
        self,
        instruments: Sequence[HasSector],
        independent_shocks: Sequence[float],
        stress: bool = False,
    ) -> np.ndarray:
        """Turn independent N(0,1) shocks into shocks correlated by sector."""
        z = np.asarray(independent_shocks, dtype=float)
        if z.shape != (len(instruments),):
            raise ValueError(
                f"expected {len(instruments)} independent shocks, got {z.shape[0] if z.ndim else 0}"
            )
        if len(instruments) == 0:
            return z
        lower = self.cholesky_decomposition(self.build_correlation_matrix(instruments, stress))
        return lower @ z

    def add_market_factor(
        self,
        returns: Sequence[float],
        market_return: float,
        betas: Sequence[float] | None = None,
    ) -> np.ndarray:
        """Single-factor overlay: beta_i * market + idiosyncratic_i."""
        r = np.asarray(returns, dtype=float)
        b = np.ones_like(r) if betas is None else np.asarray(betas, dtype=float)
        return b * market_return + r

    def update_stress_multiplier(self, stress_level: float) -> float:
        """Interpolate the multiplier between 1.0 (calm) and 1.5 (maximum stress)."""
        stress_level = max(0.0, min(1.0, stress_level))
        self.stress_multiplier = 1.0 + stress_level * 0.5
        return self.stress_multiplier

    def average_sector_correlation(self, sector: str, other_sectors: Iterable[str]) -> float:
        values = [self.get_correlation(sector, other) for other in other_sectors]
        return sum(values) / len(values) if values else 0.0
