"""
Early warning scoring of macro conditions.

Counts how many fixed crash-precursor thresholds the current indicators breach
and turns the breach ratio into an amplified crash probability:

    warning_level = breached / total
    amplification = 1 + 2 * warning_level
    adjusted      = min(cap, baseline * amplification)
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Thresholds observed ahead of historical crashes
PE_EXTREME = 30.0
VOLATILITY_SPIKE = 2.5  # current / baseline volatility
RAPID_GROWTH_6M = 0.50
BUBBLE_GROWTH_12M = 1.00
SECTOR_BUBBLE_12M = 0.80
EXTREME_GREED = 0.75  # sentiment on a -1..1 scale
LIQUIDITY_DRAIN = 0.30  # fraction of normal liquidity

HISTORY_LIMIT = 365
# Warning level above which a following crash counts as predicted
PREDICTION_LEVEL = 0.25
HIGH_WARNING_LEVEL = 0.50
FALSE_POSITIVE_WINDOW_DAYS = 30


@dataclass
class MarketIndicators:
    average_pe: Optional[float] = None
    volatility_ratio: Optional[float] = None
    return_6m: Optional[float] = None
    return_12m: Optional[float] = None
    sector_returns_12m: dict[str, float] = field(default_factory=dict)
    sentiment: Optional[float] = None
    liquidity: Optional[float] = None


@dataclass
class WarningSignal:
    name: str
    value: float
    threshold: float
    description: str


@dataclass
class WarningAssessment:
    warning_level: float
    amplification_factor: float
    baseline_probability: float
    adjusted_probability: float
    active_signals: list[WarningSignal]
    total_signals: int
    recommendation: str
    assessed_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "warning_level": self.warning_level,
            "amplification_factor": self.amplification_factor,
            "baseline_probability": self.baseline_probability,
            "adjusted_probability": self.adjusted_probability,
            "active_signals": [vars(signal) for signal in self.active_signals],
            "total_signals": self.total_signals,
            "recommendation": self.recommendation,
            "assessed_at": self.assessed_at.isoformat() if self.assessed_at else None,
        }


def get_recommendation(warning_level: float) -> str:
    if warning_level >= 0.75:
        return "EXTREME RISK: Multiple crash indicators present. Consider defensive positioning."
    if warning_level >= 0.50:
        return "HIGH RISK: Elevated crash probability. Monitor closely and reduce exposure."
    if warning_level >= 0.25:
        return "MODERATE RISK: Some warning signs present. Stay vigilant."
    return "LOW RISK: Market conditions appear normal."


def _check_signals(indicators: MarketIndicators) -> tuple[list[WarningSignal], int]:
    """Evaluate every signal. Missing indicators count as not breached."""
    checks: list[tuple[str, Optional[float], float, str]] = [
        ("valuation", indicators.average_pe, PE_EXTREME, "Average P/E above historical extreme"),
        ("volatility", indicators.volatility_ratio, VOLATILITY_SPIKE, "Volatility spike versus baseline"),
        ("rapid_growth", indicators.return_6m, RAPID_GROWTH_6M, "Rapid 6-month price growth"),
        ("bubble_growth", indicators.return_12m, BUBBLE_GROWTH_12M, "12-month growth in bubble territory"),
        ("sentiment", indicators.sentiment, EXTREME_GREED, "Extreme greed in market sentiment"),
    ]

    active = [
        WarningSignal(name, value, threshold, description)
        for name, value, threshold, description in checks
        if value is not None and value > threshold
    ]

    # One signal for the whole sector table: any sector in a bubble breaches it
    bubbles = {s: r for s, r in indicators.sector_returns_12m.items() if r > SECTOR_BUBBLE_12M}
    if bubbles:
        hottest = max(bubbles, key=bubbles.get)
        active.append(WarningSignal(
            "sector_bubble", bubbles[hottest], SECTOR_BUBBLE_12M,
            f"{hottest} sector up {bubbles[hottest]:.0%} in 12 months",
        ))

    # Liquidity breaches from below
    if indicators.liquidity is not None and indicators.liquidity < LIQUIDITY_DRAIN:
        active.append(WarningSignal(
            "liquidity", indicators.liquidity, LIQUIDITY_DRAIN,
            f"Low liquidity ({indicators.liquidity:.0%} of normal)",
        ))

    return active, len(checks) + 2


class EarlyWarningSystem:
    def __init__(self, baseline_probability: float = 0.30, max_probability: float = 0.90):
        self.baseline_probability = baseline_probability
        self.max_probability = max_probability
        self.warning_level = 0.0
        self.history: deque[WarningAssessment] = deque(maxlen=HISTORY_LIMIT)
        self.crash_history: list[dict[str, Any]] = []

    def assess(
        self,
        indicators: MarketIndicators,
        baseline_probability: Optional[float] = None,
        moment: Optional[datetime] = None,
    ) -> WarningAssessment:
        baseline = self.baseline_probability if baseline_probability is None else baseline_probability
        active, total = _check_signals(indicators)

        warning_level = len(active) / total
        amplification = 1.0 + 2.0 * warning_level
        adjusted = min(self.max_probability, baseline * amplification)

        assessment = WarningAssessment(
            warning_level=warning_level,
            amplification_factor=amplification,
            baseline_probability=baseline,
            adjusted_probability=adjusted,
            active_signals=active,
            total_signals=total,
            recommendation=get_recommendation(warning_level),
            assessed_at=moment,
        )
        self.warning_level = warning_level
        self.history.append(assessment)
        if active:
            logger.debug(
                "Early warning level %.2f (%d/%d signals): %s",
                warning_level, len(active), total, ", ".join(s.name for s in active),
            )
        return assessment

    def record_crash(self, moment: datetime, severity: str) -> None:
        """Remember a crash for accuracy tracking, together with the warning level at the time."""
        self.crash_history.append({
            "date": moment,
            "severity": severity,
            "warning_level": self.warning_level,
            "predicted": self.warning_level > PREDICTION_LEVEL,
        })

    def _false_positive_rate(self) -> float:
        high_warnings = 0
        followed_by_crash = 0
        for assessment in self.history:
            if assessment.assessed_at is None or assessment.warning_level <= HIGH_WARNING_LEVEL:
                continue
            high_warnings += 1
            if any(
                0 <= (crash["date"] - assessment.assessed_at).days <= FALSE_POSITIVE_WINDOW_DAYS
                for crash in self.crash_history
            ):
                followed_by_crash += 1
        if high_warnings == 0:
            return 0.0
        return 1.0 - followed_by_crash / high_warnings

    def accuracy_metrics(self) -> Optional[dict[str, Any]]:
        if not self.crash_history:
            return None
        predicted = sum(1 for crash in self.crash_history if crash["predicted"])
        return {
            "total_crashes": len(self.crash_history),
            "predicted_crashes": predicted,
            "accuracy": predicted / len(self.crash_history),
            "false_positive_rate": self._false_positive_rate(),
        }

    def reset(self) -> None:
        self.warning_level = 0.0
        self.history.clear()
        self.crash_history.clear()
