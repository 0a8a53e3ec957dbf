"""Tests for z-score anomaly scoring."""

import pytest

from performance_recommender.analysis.anomaly import AnomalyInterpretation, AnomalyScorer


class TestAnomalyScorer:
    """Test anomaly scoring against an athlete's history."""

    def setup_method(self):
        """Set up test fixtures."""
        self.scorer = AnomalyScorer()

    @pytest.mark.parametrize("history", [[], [5], [5, 6]])
    def test_short_history_is_insufficient(self, history):
        result = self.scorer.score(2, history)

        assert result.insufficient_data is True
        assert result.z_score == 0
        assert result.interpretation == AnomalyInterpretation.NORMAL

    def test_identical_history_low_current(self):
        """Zero spread is a neutral result, not an error."""
        result = self.scorer.score(2, [5, 5, 5])

        assert result.std_dev == 0
        assert result.z_score == 0
        assert result.interpretation == AnomalyInterpretation.NORMAL
        assert result.insufficient_data is False
        assert result.mean == 5

    def test_identical_history_high_current(self):
        """The zero-spread guard wins over a large raw deviation."""
        result = self.scorer.score(9, [5, 5, 5, 5, 5])

        assert result.z_score == 0
        assert result.interpretation == AnomalyInterpretation.NORMAL
        assert result.insufficient_data is False

    def test_uses_sample_standard_deviation(self):
        """Divides by n - 1, not n."""
        result = self.scorer.score(5, [2, 4, 4, 4, 5, 5, 7, 9])

        assert result.mean == 5
        assert result.std_dev == pytest.approx(2.14)

    @pytest.mark.parametrize(
        "current,expected",
        [
            (7.0, AnomalyInterpretation.CRITICAL_HIGH),
            (6.5, AnomalyInterpretation.ALERT_HIGH),
            (5.5, AnomalyInterpretation.NORMAL),
            (3.4, AnomalyInterpretation.ALERT_LOW),
            (3.0, AnomalyInterpretation.CRITICAL_LOW),
        ],
    )
    def test_interpretation_thresholds(self, current, expected):
        """History [4, 5, 6] has mean 5 and sample std 1."""
        result = self.scorer.score(current, [4, 5, 6])

        assert result.interpretation == expected
        assert result.z_score == pytest.approx(current - 5)

    def test_interpret_order(self):
        assert self.scorer.interpret(2.0) == AnomalyInterpretation.CRITICAL_HIGH
        assert self.scorer.interpret(1.5) == AnomalyInterpretation.ALERT_HIGH
        assert self.scorer.interpret(1.49) == AnomalyInterpretation.NORMAL
        assert self.scorer.interpret(-1.5) == AnomalyInterpretation.ALERT_LOW
        assert self.scorer.interpret(-2.0) == AnomalyInterpretation.CRITICAL_LOW

    def test_to_dict(self):
        data = self.scorer.score(3, [4, 5, 6]).to_dict()

        assert data["interpretation"] == "CRITICAL_LOW"
        assert data["zScore"] == -2.0
        assert data["insufficientData"] is False

    def test_explicit_zero_minimum_is_kept(self):
        scorer = AnomalyScorer(min_points=0)

        assert scorer.min_points == 0
        assert scorer.score(8, [5]).insufficient_data is True

        result = scorer.score(8, [4, 6])
        assert result.insufficient_data is False
        assert result.interpretation == AnomalyInterpretation.CRITICAL_HIGH
