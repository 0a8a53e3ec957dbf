"""Z-score anomaly scoring against an athlete's own history.

Z = (current - mean) / sample standard deviation. |Z| >= 1.5 is a notable
deviation, |Z| >= 2.0 a critical one.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

import numpy as np

from ..config import config


class AnomalyInterpretation(Enum):
    """Severity bucket of a z-score."""
    CRITICAL_LOW = "CRITICAL_LOW"
    ALERT_LOW = "ALERT_LOW"
    NORMAL = "NORMAL"
    ALERT_HIGH = "ALERT_HIGH"
    CRITICAL_HIGH = "CRITICAL_HIGH"


@dataclass(frozen=True)
class AnomalyResult:
    """Standardized deviation of a value from its history."""
    current_value: float
    mean: float
    std_dev: float
    z_score: float
    interpretation: AnomalyInterpretation
    insufficient_data: bool

    def to_dict(self) -> dict:
        return {
            "currentValue": self.current_value,
            "mean": self.mean,
            "stdDev": self.std_dev,
            "zScore": self.z_score,
            "interpretation": self.interpretation.value,
            "insufficientData": self.insufficient_data,
        }


class AnomalyScorer:
    """Score a current aggregate against a historical sample."""

    def __init__(self, alert: float = None, critical: float = None, min_points: int = None):
        self.alert = alert if alert is not None else config.ZSCORE_ALERT
        self.critical = critical if critical is not None else config.ZSCORE_CRITICAL
        self.min_points = min_points if min_points is not None else config.ZSCORE_MIN_POINTS

    def score(self, current_value: float, history: Sequence[float]) -> AnomalyResult:
        current_value = float(current_value)

        # Sample standard deviation needs two points
        if len(history) < max(self.min_points, 2):
            return AnomalyResult(
                current_value=current_value,
                mean=0.0,
                std_dev=0.0,
                z_score=0.0,
                interpretation=AnomalyInterpretation.NORMAL,
                insufficient_data=True,
            )

        values = np.asarray(history, dtype=float)
        mean = float(np.mean(values))
        std_dev = float(np.std(values, ddof=1))

        # All-equal history: no spread to measure against
        if std_dev == 0:
            return AnomalyResult(
                current_value=current_value,
                mean=round(mean, 2),
                std_dev=0.0,
                z_score=0.0,
                interpretation=AnomalyInterpretation.NORMAL,
                insufficient_data=False,
            )

        z_score = (current_value - mean) / std_dev

        return AnomalyResult(
            current_value=current_value,
            mean=round(mean, 2),
            std_dev=round(std_dev, 2),
            z_score=round(z_score, 2),
            interpretation=self.interpret(z_score),
            insufficient_data=False,
        )

    def interpret(self, z_score: float) -> AnomalyInterpretation:
        """First matching bucket wins; order matters."""
        if z_score >= self.critical:
            return AnomalyInterpretation.CRITICAL_HIGH
        if z_score >= self.alert:
            return AnomalyInterpretation.ALERT_HIGH
        if z_score <= -self.critical:
            return AnomalyInterpretation.CRITICAL_LOW
        if z_score <= -self.alert:
            return AnomalyInterpretation.ALERT_LOW
        return AnomalyInterpretation.NORMAL
