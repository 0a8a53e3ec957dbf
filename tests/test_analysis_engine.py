"""Tests for the per-athlete performance analysis engine."""

import pytest

from factories import NOW, Factory, days_ago, memory_db
from performance_recommender.analysis.anomaly import AnomalyInterpretation
from performance_recommender.analysis.performance import (
    DetectedPattern,
    PatternType,
    PerformanceAnalysisEngine,
)
from performance_recommender.analysis.rules import RuleEngine
from performance_recommender.analysis.trend import TrendClassification
from performance_recommender.db.models import ExerciseCategory, Priority
from performance_recommender.db.repository import ActiveInjury, CatalogExercise
from performance_recommender.errors import NotFoundError


class TestPerformanceAnalysisEngine:
    """Test analysis over an in-memory database."""

    def setup_method(self):
        """Set up test fixtures."""
        self.db = memory_db()
        self.factory = Factory(self.db)
        self.engine = PerformanceAnalysisEngine(self.db, clock=lambda: NOW)
        self.athlete_id, _, _ = self.factory.athlete()

    def teardown_method(self):
        self.db.close()

    def _seed_struggling_ground_work(self):
        """Ground technique averaging 4.8 with two problematic exercises."""
        f = self.factory
        ids = {
            "o_soto": f.exercise("O-soto-gari", difficulty=3),
            "uchi_mata": f.exercise("Uchi-mata", difficulty=3),
            "kata_guruma": f.exercise("Kata-guruma", difficulty=4),
            "uchikomi": f.exercise("Uchikomi", difficulty=1),
            "nage_komi": f.exercise("Nage-komi", difficulty=2, body_zones=["Knee"]),
            "randori": f.exercise("Light randori", difficulty=3, contraindications="Avoid with shoulder injury"),
            "sutemi": f.exercise("Sutemi-waza", difficulty=5),
            "retired": f.exercise("Retired drill", difficulty=1, active=False),
        }

        f.performance(self.athlete_id, ids["o_soto"], days_ago(9), rating=4)
        f.performance(self.athlete_id, ids["uchi_mata"], days_ago(8), rating=7)
        f.performance(self.athlete_id, ids["kata_guruma"], days_ago(7), rating=None, completed=False)
        f.performance(self.athlete_id, ids["o_soto"], days_ago(6), rating=3)
        f.performance(self.athlete_id, ids["uchi_mata"], days_ago(5), rating=8)
        f.performance(self.athlete_id, ids["kata_guruma"], days_ago(4), rating=None, completed=False)
        f.performance(self.athlete_id, ids["o_soto"], days_ago(3), rating=2)

        f.injury(self.athlete_id, "knee")
        f.injury(self.athlete_id, "shoulder", resolved=True)
        return ids

    def _seed_critical_drop(self):
        """Twenty good ground sessions followed by three very poor ones."""
        exercise_id = self.factory.exercise("Ne-waza drill", difficulty=2)
        for day in range(8, 28):
            self.factory.performance(self.athlete_id, exercise_id, days_ago(day), rating=8)
        for day in (5, 4, 3):
            self.factory.performance(self.athlete_id, exercise_id, days_ago(day), rating=2)
        return exercise_id

    def test_unknown_athlete(self):
        with pytest.raises(NotFoundError):
            self.engine.analyze(999)

    def test_too_few_records_gives_empty_snapshot(self):
        exercise_id = self.factory.exercise("Uchikomi")
        self.factory.performance(self.athlete_id, exercise_id, days_ago(2), rating=1)
        self.factory.performance(self.athlete_id, exercise_id, days_ago(1), rating=1)

        snapshot = self.engine.analyze(self.athlete_id)

        assert snapshot.athlete_name == "Ana Torres"
        assert snapshot.summary.total_records == 2
        assert snapshot.summary.total_sessions == 0
        assert snapshot.summary.global_average == 0
        assert snapshot.categories == []
        assert snapshot.problematic_exercises == []
        assert snapshot.patterns == []
        assert snapshot.needs_attention is False

    def test_window_uses_session_date(self):
        """A session outside the window is ignored even if entered today."""
        exercise_id = self.factory.exercise("Uchikomi")
        for day in (3, 2, 1):
            self.factory.performance(self.athlete_id, exercise_id, days_ago(day), rating=7)
        self.factory.performance(self.athlete_id, exercise_id, days_ago(40), rating=1, recorded_at=NOW)

        snapshot = self.engine.analyze(self.athlete_id)

        assert snapshot.summary.total_records == 3
        assert snapshot.summary.global_average == 7
        assert snapshot.window.days == 30
        assert snapshot.window.end == NOW

    def test_summary_and_category_statistics(self):
        self._seed_struggling_ground_work()

        snapshot = self.engine.analyze(self.athlete_id)

        assert snapshot.summary.total_sessions == 7
        assert snapshot.summary.total_records == 7
        assert snapshot.summary.global_average == pytest.approx(4.8)

        assert len(snapshot.categories) == 1
        ground = snapshot.category(ExerciseCategory.GROUND_TECHNIQUE)
        assert ground.average_rating == pytest.approx(4.8)
        assert ground.sample_count == 5
        assert ground.anomaly.interpretation == AnomalyInterpretation.NORMAL
        assert ground.trend.insufficient_data is False

    def test_problem_detection(self):
        ids = self._seed_struggling_ground_work()

        snapshot = self.engine.analyze(self.athlete_id)

        # Worst first: never-rated incomplete exercise, then the low-rated one
        assert [p.exercise_id for p in snapshot.problematic_exercises] == [ids["kata_guruma"], ids["o_soto"]]

        kata_guruma, o_soto = snapshot.problematic_exercises
        assert kata_guruma.times_assigned == 2
        assert kata_guruma.times_incomplete == 2
        assert kata_guruma.trend is None

        assert o_soto.times_assigned == 3
        assert o_soto.times_completed == 3
        assert o_soto.average_rating == 3
        assert o_soto.trend == TrendClassification.WORSENING

    def test_exercise_substitutes_avoid_injuries(self):
        ids = self._seed_struggling_ground_work()

        snapshot = self.engine.analyze(self.athlete_id)
        o_soto = next(p for p in snapshot.problematic_exercises if p.exercise_id == ids["o_soto"])

        # Knee-zone exercise filtered, itself and harder ones excluded
        assert [c.exercise_id for c in o_soto.substitute_candidates] == [
            ids["uchikomi"], ids["uchi_mata"], ids["randori"]
        ]
        assert o_soto.substitute_candidates[0].reason == "Lower difficulty to reinforce fundamentals"
        assert o_soto.substitute_candidates[1].reason == "Same-level alternative"

    def test_category_substitutes_follow_fitness_level(self):
        ids = self._seed_struggling_ground_work()

        no_test = self.engine.analyze(self.athlete_id).category(ExerciseCategory.GROUND_TECHNIQUE)
        assert [c.exercise_id for c in no_test.substitute_candidates] == [
            ids["uchikomi"], ids["o_soto"], ids["uchi_mata"]
        ]

        self.factory.fitness_test(self.athlete_id, 3.5)
        low_level = self.engine.analyze(self.athlete_id).category(ExerciseCategory.GROUND_TECHNIQUE)
        assert [c.exercise_id for c in low_level.substitute_candidates] == [ids["uchikomi"]]
        assert low_level.substitute_candidates[0].reason == "Basic exercise to reinforce fundamentals"

    def test_patterns_and_attention(self):
        self._seed_struggling_ground_work()

        snapshot = self.engine.analyze(self.athlete_id)

        assert [(p.type, p.severity) for p in snapshot.patterns] == [
            (PatternType.LOW_CATEGORY_PERFORMANCE, Priority.HIGH),
            (PatternType.RECURRING_EXERCISE_FAILURE, Priority.MEDIUM),
        ]
        assert snapshot.needs_attention is True
        assert snapshot.attention_priority == Priority.HIGH

    def test_anomaly_uses_wider_history(self):
        """A short window is scored against 28 days of history."""
        exercise_id = self._seed_critical_drop()

        snapshot = self.engine.analyze(self.athlete_id, window_days=7)

        ground = snapshot.category(ExerciseCategory.GROUND_TECHNIQUE)
        assert ground.sample_count == 3
        assert ground.average_rating == 2
        assert ground.anomaly.interpretation == AnomalyInterpretation.CRITICAL_LOW
        assert ground.anomaly.z_score < -2

        low = snapshot.patterns[0]
        assert low.type == PatternType.LOW_CATEGORY_PERFORMANCE
        assert low.severity == Priority.CRITICAL
        assert snapshot.attention_priority == Priority.CRITICAL
        assert [p.exercise_id for p in snapshot.problematic_exercises] == [exercise_id]

    def test_rules_over_analyzed_snapshot(self):
        self._seed_critical_drop()

        drafts = RuleEngine().evaluate(self.engine.analyze(self.athlete_id, window_days=7))

        assert [d.rule_id for d in drafts] == ["R3", "R1", "R2"]

    def test_snapshot_to_dict(self):
        self._seed_struggling_ground_work()

        data = self.engine.analyze(self.athlete_id).to_dict()

        assert data["athleteId"] == str(self.athlete_id)
        assert data["window"]["days"] == 30
        assert data["categories"][0]["category"] == "GROUND_TECHNIQUE"
        assert data["attentionPriority"] == "HIGH"
        assert isinstance(data["problematicExercises"][0]["exerciseId"], str)


class TestPatternDetection:
    """Test problem and pattern detection over seeded histories."""

    def setup_method(self):
        """Set up test fixtures."""
        self.db = memory_db()
        self.factory = Factory(self.db)
        self.engine = PerformanceAnalysisEngine(self.db, clock=lambda: NOW)
        self.athlete_id, _, _ = self.factory.athlete()

    def teardown_method(self):
        self.db.close()

    def test_confident_downward_trend(self):
        exercise_id = self.factory.exercise("Sprint intervals", category=ExerciseCategory.PHYSICAL)
        for day, rating in zip((9, 7, 5, 3, 1), (9, 8, 7, 6, 5)):
            self.factory.performance(self.athlete_id, exercise_id, days_ago(day), rating=rating)

        snapshot = self.engine.analyze(self.athlete_id)

        physical = snapshot.category(ExerciseCategory.PHYSICAL)
        assert physical.average_rating == 7
        assert physical.trend.classification == TrendClassification.WORSENING
        assert physical.anomaly.interpretation == AnomalyInterpretation.NORMAL
        assert snapshot.problematic_exercises == []

        assert [(p.type, p.severity) for p in snapshot.patterns] == [
            (PatternType.NEGATIVE_TREND, Priority.HIGH)
        ]
        trend = snapshot.patterns[0]
        assert trend.affected_category == ExerciseCategory.PHYSICAL
        assert trend.data["slope"] == pytest.approx(-0.5)
        assert trend.data["confidence"] == pytest.approx(1.0)
        assert snapshot.needs_attention is True
        assert snapshot.attention_priority == Priority.HIGH

    def test_notable_improvement(self):
        """A recent rise well above the 28-day baseline is informational only."""
        exercise_id = self.factory.exercise("Reaction starts", category=ExerciseCategory.SPEED)
        for day in range(10, 28):
            self.factory.performance(self.athlete_id, exercise_id, days_ago(day), rating=4)
        for day, rating in zip((5, 3, 1), (7, 8, 9)):
            self.factory.performance(self.athlete_id, exercise_id, days_ago(day), rating=rating)

        snapshot = self.engine.analyze(self.athlete_id, window_days=7)

        speed = snapshot.category(ExerciseCategory.SPEED)
        assert speed.average_rating == 8
        assert speed.trend.classification == TrendClassification.IMPROVING
        assert speed.anomaly.interpretation == AnomalyInterpretation.CRITICAL_HIGH

        assert [(p.type, p.severity) for p in snapshot.patterns] == [
            (PatternType.IMPROVEMENT_DETECTED, Priority.LOW)
        ]
        assert snapshot.needs_attention is False
        assert snapshot.attention_priority == Priority.LOW
        assert [d.rule_id for d in RuleEngine().evaluate(snapshot)] == ["R5"]

    def test_single_very_low_rating_is_enough(self):
        f = self.factory
        kumi_kata = f.exercise("Kumi-kata", category=ExerciseCategory.STANDING_TECHNIQUE)
        seoi_nage = f.exercise("Seoi-nage", category=ExerciseCategory.STANDING_TECHNIQUE)
        tai_otoshi = f.exercise("Tai-otoshi", category=ExerciseCategory.STANDING_TECHNIQUE)
        f.performance(self.athlete_id, kumi_kata, days_ago(3), rating=2)
        f.performance(self.athlete_id, seoi_nage, days_ago(2), rating=3)
        f.performance(self.athlete_id, tai_otoshi, days_ago(1), rating=4)

        snapshot = self.engine.analyze(self.athlete_id)

        assert [p.exercise_id for p in snapshot.problematic_exercises] == [kumi_kata, seoi_nage]
        for exercise in snapshot.problematic_exercises:
            assert exercise.times_assigned == 1
            assert exercise.times_incomplete == 0
            assert exercise.trend is None

    def test_problematic_list_is_capped_worst_first(self):
        ratings = [3, 0, 2, 1, 3, 2, 0, 1, 3, 2, 1, 0]
        for day, rating in enumerate(ratings, start=1):
            exercise_id = self.factory.exercise(f"Sprint drill {day}", category=ExerciseCategory.SPEED)
            self.factory.performance(self.athlete_id, exercise_id, days_ago(day), rating=rating)

        snapshot = self.engine.analyze(self.athlete_id)

        averages = [p.average_rating for p in snapshot.problematic_exercises]
        assert averages == [0, 0, 0, 1, 1, 1, 2, 2, 2, 3]
        assert len(snapshot.category(ExerciseCategory.SPEED).problematic_exercises) == 10

    def test_exercise_meeting_every_condition_is_reported_once(self):
        exercise_id = self.factory.exercise("Sankaku-jime", difficulty=3)
        self.factory.performance(self.athlete_id, exercise_id, days_ago(4), rating=1)
        self.factory.performance(self.athlete_id, exercise_id, days_ago(3), rating=2)
        self.factory.performance(self.athlete_id, exercise_id, days_ago(2), completed=False)
        self.factory.performance(self.athlete_id, exercise_id, days_ago(1), completed=False)

        snapshot = self.engine.analyze(self.athlete_id)

        assert len(snapshot.problematic_exercises) == 1
        exercise = snapshot.problematic_exercises[0]
        assert exercise.exercise_id == exercise_id
        assert exercise.times_assigned == 4
        assert exercise.times_completed == 2
        assert exercise.times_incomplete == 2
        assert exercise.average_rating == 1.5

        assert [p.type for p in snapshot.patterns] == [PatternType.RECURRING_EXERCISE_FAILURE]
        assert snapshot.patterns[0].affected_exercise.exercise_id == exercise_id

    def test_zero_day_window_is_kept(self):
        exercise_id = self.factory.exercise("Uchikomi")
        for day in (3, 2, 1):
            self.factory.performance(self.athlete_id, exercise_id, days_ago(day), rating=7)

        snapshot = self.engine.analyze(self.athlete_id, window_days=0)

        assert snapshot.window.days == 0
        assert snapshot.window.start == NOW
        assert snapshot.summary.total_records == 0


class TestContraindications:
    """Test injury-zone matching."""

    def _candidate(self, contraindications=None, body_zones=()):
        return CatalogExercise(
            exercise_id=1,
            name="Drill",
            category=ExerciseCategory.PHYSICAL,
            difficulty_level=1,
            contraindications=contraindications,
            body_zones=list(body_zones),
        )

    def test_no_injuries(self):
        assert not PerformanceAnalysisEngine.is_contraindicated(self._candidate("knee"), [])

    def test_contraindication_text_is_case_insensitive(self):
        injuries = [ActiveInjury(zone="Knee", injury_type=None)]
        candidate = self._candidate("Avoid with KNEE injuries")

        assert PerformanceAnalysisEngine.is_contraindicated(candidate, injuries)

    def test_body_zone_substring_both_ways(self):
        narrow = [ActiveInjury(zone="knee", injury_type=None)]
        broad = [ActiveInjury(zone="left knee", injury_type=None)]

        assert PerformanceAnalysisEngine.is_contraindicated(self._candidate(body_zones=["Left Knee"]), narrow)
        assert PerformanceAnalysisEngine.is_contraindicated(self._candidate(body_zones=["knee"]), broad)

    def test_unrelated_zone(self):
        injuries = [ActiveInjury(zone="shoulder", injury_type=None)]
        candidate = self._candidate("Avoid with knee injuries", ["knee", "ankle"])

        assert not PerformanceAnalysisEngine.is_contraindicated(candidate, injuries)


class TestAttentionRollup:
    """Test the attention flag derived from patterns."""

    def _pattern(self, severity):
        return DetectedPattern(type=PatternType.NEGATIVE_TREND, severity=severity, description="x")

    def test_no_patterns(self):
        assert PerformanceAnalysisEngine.evaluate_attention([]) == (False, Priority.LOW)

    def test_informational_only(self):
        assert PerformanceAnalysisEngine.evaluate_attention([self._pattern(Priority.LOW)]) == (False, Priority.LOW)

    def test_highest_severity_wins(self):
        patterns = [self._pattern(Priority.MEDIUM), self._pattern(Priority.CRITICAL), self._pattern(Priority.LOW)]
        assert PerformanceAnalysisEngine.evaluate_attention(patterns) == (True, Priority.CRITICAL)
