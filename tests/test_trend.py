"""Tests for linear trend detection."""

import pytest
from datetime import datetime, timedelta

from performance_recommender.analysis.trend import (
    PerformanceSample,
    TrendAnalyzer,
    TrendClassification,
    analyze_trend,
)


def series(values, start=datetime(2024, 3, 1), step_days=1):
    """Build (date, value) pairs one step apart."""
    return [(start + timedelta(days=i * step_days), v) for i, v in enumerate(values)]


class TestTrendAnalyzer:
    """Test trend fitting and classification."""

    def setup_method(self):
        """Set up test fixtures."""
        self.analyzer = TrendAnalyzer()

    def test_strictly_decreasing_is_worsening(self):
        """Three decreasing points give a confident worsening trend."""
        result = self.analyzer.analyze(series([4, 3, 2]))

        assert result.classification == TrendClassification.WORSENING
        assert result.insufficient_data is False
        assert result.slope == pytest.approx(-1.0)
        assert result.intercept == pytest.approx(4.0)
        assert result.r_squared == pytest.approx(1.0)
        assert result.next_value_prediction == pytest.approx(1.0)

    def test_increasing_is_improving(self):
        result = self.analyzer.analyze(series([2, 3, 4, 5]))

        assert result.classification == TrendClassification.IMPROVING
        assert result.slope == pytest.approx(1.0)

    def test_flat_series_is_stable(self):
        result = self.analyzer.analyze(series([6, 6, 6]))

        assert result.classification == TrendClassification.STABLE
        assert result.slope == 0
        assert result.r_squared == 0
        assert result.insufficient_data is False

    def test_small_slope_is_stable(self):
        """Slopes within +/-0.1 per day are not a trend."""
        result = self.analyzer.analyze(series([5.0, 5.05, 5.1]))

        assert result.classification == TrendClassification.STABLE

    @pytest.mark.parametrize("values", [[], [7], [7, 3]])
    def test_fewer_than_three_points(self, values):
        """Short histories are flagged instead of fitted."""
        result = self.analyzer.analyze(series(values))

        assert result.insufficient_data is True
        assert result.classification == TrendClassification.STABLE
        assert result.slope == 0
        assert result.intercept == 0
        assert result.r_squared == 0

    def test_insufficient_prediction_is_latest_value(self):
        """Prediction falls back to the most recent value, or 0 when empty."""
        start = datetime(2024, 3, 1)
        unsorted = [(start + timedelta(days=2), 8), (start, 3)]

        assert self.analyzer.analyze(unsorted).next_value_prediction == 8
        assert self.analyzer.analyze([]).next_value_prediction == 0

    def test_input_order_does_not_matter(self):
        ordered = series([9, 7, 6, 4])
        shuffled = [ordered[2], ordered[0], ordered[3], ordered[1]]

        assert self.analyzer.analyze(shuffled) == self.analyzer.analyze(ordered)

    def test_prediction_clamped_to_rating_scale(self):
        """Steep slopes never forecast outside 0-10."""
        rising = self.analyzer.analyze(series([2, 6, 10]))
        falling = self.analyzer.analyze(series([9, 5, 1]))

        assert rising.next_value_prediction == 10
        assert falling.next_value_prediction == 0

    def test_elapsed_days_drive_the_slope(self):
        """Points a week apart give a gentler per-day slope."""
        result = self.analyzer.analyze(series([3, 4, 5], step_days=7))

        assert result.slope == pytest.approx(0.143, abs=1e-3)
        assert result.classification == TrendClassification.IMPROVING

    def test_same_day_points_do_not_divide_by_zero(self):
        day = datetime(2024, 3, 1)
        result = self.analyzer.analyze([(day, 2), (day, 4), (day, 6)])

        assert result.slope == 0
        assert result.intercept == pytest.approx(4.0)
        assert result.r_squared == 0
        assert result.classification == TrendClassification.STABLE

    def test_r_squared_within_unit_interval(self):
        result = self.analyzer.analyze(series([5, 9, 2, 8, 3, 7]))

        assert 0 <= result.r_squared <= 1

    def test_accepts_performance_samples(self):
        samples = [PerformanceSample(date=d, value=v) for d, v in series([8, 6, 4])]

        assert analyze_trend(samples).classification == TrendClassification.WORSENING

    def test_custom_thresholds(self):
        analyzer = TrendAnalyzer(improving_slope=2.0, worsening_slope=-2.0)

        assert analyzer.analyze(series([4, 3, 2])).classification == TrendClassification.STABLE

    def test_to_dict(self):
        data = self.analyzer.analyze(series([4, 3, 2])).to_dict()

        assert data["classification"] == "WORSENING"
        assert data["insufficientData"] is False
        assert set(data) == {
            "slope", "intercept", "classification", "rSquared", "nextValuePrediction", "insufficientData"
        }

    def test_explicit_zero_minimum_is_kept(self):
        analyzer = TrendAnalyzer(min_points=0)

        assert analyzer.min_points == 0
        assert analyzer.analyze([]).insufficient_data is True

        result = analyzer.analyze(series([6, 4]))
        assert result.insufficient_data is False
        assert result.classification == TrendClassification.WORSENING
