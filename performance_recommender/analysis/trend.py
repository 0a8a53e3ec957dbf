"""Linear trend detection over rated sessions.

Fits an ordinary least squares line to (elapsed days, rating) points and
classifies the direction of the slope. Ratings live on a 0-10 scale, so the
one-step forecast is clamped to that range.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Sequence, Tuple

import numpy as np

from ..config import config

SECONDS_PER_DAY = 86400.0


class TrendClassification(Enum):
    """Direction of a performance trend."""
    IMPROVING = "IMPROVING"
    STABLE = "STABLE"
    WORSENING = "WORSENING"


@dataclass(frozen=True)
class PerformanceSample:
    """A single rated observation."""
    date: datetime
    value: float


@dataclass(frozen=True)
class TrendResult:
    """Outcome of a trend fit."""
    slope: float
    intercept: float
    classification: TrendClassification
    r_squared: float
    next_value_prediction: float
    insufficient_data: bool

    def to_dict(self) -> dict:
        return {
            "slope": self.slope,
            "intercept": self.intercept,
            "classification": self.classification.value,
            "rSquared": self.r_squared,
            "nextValuePrediction": self.next_value_prediction,
            "insufficientData": self.insufficient_data,
        }


class TrendAnalyzer:
    """Classify a time series of ratings as improving, stable or worsening."""

    def __init__(
        self,
        improving_slope: float = None,
        worsening_slope: float = None,
        min_points: int = None,
    ):
        self.improving_slope = improving_slope if improving_slope is not None else config.TREND_IMPROVING_SLOPE
        self.worsening_slope = worsening_slope if worsening_slope is not None else config.TREND_WORSENING_SLOPE
        self.min_points = min_points if min_points is not None else config.TREND_MIN_POINTS

    def analyze(self, samples: Iterable) -> TrendResult:
        """Fit a trend to samples given as PerformanceSample or (date, value) pairs.

        Input does not need to be sorted.
        """
        points = sorted(
            (self._as_sample(s) for s in samples), key=lambda s: s.date
        )

        if not points or len(points) < self.min_points:
            return TrendResult(
                slope=0.0,
                intercept=0.0,
                classification=TrendClassification.STABLE,
                r_squared=0.0,
                next_value_prediction=float(points[-1].value) if points else 0.0,
                insufficient_data=True,
            )

        x = self._elapsed_days(points)
        y = np.array([float(p.value) for p in points])

        slope, intercept, r_squared = self.linear_regression(x, y)
        classification = self.classify(slope)

        # One day past the last observation
        raw_prediction = slope * (x[-1] + 1) + intercept
        prediction = float(np.clip(raw_prediction, config.RATING_MIN, config.RATING_MAX))

        return TrendResult(
            slope=slope,
            intercept=intercept,
            classification=classification,
            r_squared=r_squared,
            next_value_prediction=round(prediction, 1),
            insufficient_data=False,
        )

    @staticmethod
    def linear_regression(x: np.ndarray, y: np.ndarray) -> Tuple[float, float, float]:
        """Ordinary least squares: returns (slope, intercept, r_squared), rounded."""
        n = len(x)
        if n < 2:
            return 0.0, 0.0, 0.0

        sum_x = float(np.sum(x))
        sum_y = float(np.sum(y))
        sum_xy = float(np.sum(x * y))
        sum_x2 = float(np.sum(x * x))

        denominator = n * sum_x2 - sum_x * sum_x
        if denominator == 0:
            return 0.0, round(sum_y / n, 2), 0.0

        slope = (n * sum_xy - sum_x * sum_y) / denominator
        intercept = (sum_y - slope * sum_x) / n

        predicted = slope * x + intercept
        ss_tot = float(np.sum((y - sum_y / n) ** 2))
        ss_res = float(np.sum((y - predicted) ** 2))
        r_squared = 0.0 if ss_tot == 0 else 1 - ss_res / ss_tot
        r_squared = min(max(r_squared, 0.0), 1.0)

        return round(slope, 3), round(intercept, 2), round(r_squared, 2)

    def classify(self, slope: float) -> TrendClassification:
        if slope > self.improving_slope:
            return TrendClassification.IMPROVING
        if slope < self.worsening_slope:
            return TrendClassification.WORSENING
        return TrendClassification.STABLE

    @staticmethod
    def _elapsed_days(points: Sequence[PerformanceSample]) -> np.ndarray:
        first = points[0].date
        return np.array(
            [(p.date - first).total_seconds() / SECONDS_PER_DAY for p in points]
        )

    @staticmethod
    def _as_sample(sample) -> PerformanceSample:
        if isinstance(sample, PerformanceSample):
            return sample
        date, value = sample
        return PerformanceSample(date=date, value=float(value))


def analyze_trend(samples: List) -> TrendResult:
    """Convenience wrapper using configured thresholds."""
    return TrendAnalyzer().analyze(samples)
