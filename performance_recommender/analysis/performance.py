"""Per-exercise performance analysis for an athlete.

This module provides:
1. Grouping of rated exercise outcomes by exercise category
2. Category-level anomaly (z-score) and trend scoring
3. Detection of problematic exercises and substitute candidates
4. Pattern detection and an attention rollup for the whole snapshot
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from ..config import config
from ..db import get_db
from ..db.database import Database
from ..db.models import ExerciseCategory, Priority
from ..db.repository import (
    ActiveInjury,
    AthleteInfo,
    CatalogExercise,
    PerformanceRecord,
    PerformanceRepository,
)
from ..errors import NotFoundError
from .anomaly import AnomalyInterpretation, AnomalyResult, AnomalyScorer
from .trend import PerformanceSample, TrendAnalyzer, TrendClassification, TrendResult

logger = logging.getLogger(__name__)


class PatternType(Enum):
    """Patterns detected over an analysis snapshot."""
    LOW_CATEGORY_PERFORMANCE = "LOW_CATEGORY_PERFORMANCE"
    RECURRING_EXERCISE_FAILURE = "RECURRING_EXERCISE_FAILURE"
    NEGATIVE_TREND = "NEGATIVE_TREND"
    IMPROVEMENT_DETECTED = "IMPROVEMENT_DETECTED"


@dataclass(frozen=True)
class SubstituteCandidate:
    """Catalog exercise suggested in place of a struggling one."""
    exercise_id: int
    name: str
    difficulty_level: int
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exerciseId": str(self.exercise_id),
            "name": self.name,
            "difficultyLevel": self.difficulty_level,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class ProblematicExercise:
    """Exercise whose outcomes meet at least one problem condition."""
    exercise_id: int
    name: str
    category: ExerciseCategory
    average_rating: float
    times_assigned: int
    times_completed: int
    times_incomplete: int
    trend: Optional[TrendClassification] = None
    substitute_candidates: List[SubstituteCandidate] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exerciseId": str(self.exercise_id),
            "name": self.name,
            "category": self.category.value,
            "averageRating": self.average_rating,
            "timesAssigned": self.times_assigned,
            "timesCompleted": self.times_completed,
            "timesIncomplete": self.times_incomplete,
            "trend": self.trend.value if self.trend else None,
            "substituteCandidates": [c.to_dict() for c in self.substitute_candidates],
        }


@dataclass(frozen=True)
class ExerciseCategoryPerformance:
    """Aggregated statistics of one exercise category."""
    category: ExerciseCategory
    average_rating: float
    sample_count: int
    trend: TrendResult
    anomaly: AnomalyResult
    problematic_exercises: List[ProblematicExercise] = field(default_factory=list)
    substitute_candidates: List[SubstituteCandidate] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "averageRating": self.average_rating,
            "sampleCount": self.sample_count,
            "trend": self.trend.to_dict(),
            "anomaly": self.anomaly.to_dict(),
            "problematicExercises": [p.to_dict() for p in self.problematic_exercises],
            "substituteCandidates": [c.to_dict() for c in self.substitute_candidates],
        }


@dataclass(frozen=True)
class AffectedExercise:
    exercise_id: int
    name: str


@dataclass(frozen=True)
class DetectedPattern:
    """A notable pattern with its severity and supporting numbers."""
    type: PatternType
    severity: Priority
    description: str
    affected_category: Optional[ExerciseCategory] = None
    affected_exercise: Optional[AffectedExercise] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "description": self.description,
            "affectedCategory": self.affected_category.value if self.affected_category else None,
            "affectedExercise": (
                {"id": str(self.affected_exercise.exercise_id), "name": self.affected_exercise.name}
                if self.affected_exercise
                else None
            ),
            "data": dict(self.data),
        }


@dataclass(frozen=True)
class AnalysisWindow:
    start: datetime
    end: datetime
    days: int


@dataclass(frozen=True)
class PerformanceSummary:
    total_sessions: int
    total_records: int
    global_average: float


@dataclass(frozen=True)
class AnalysisSnapshot:
    """Full output of one analysis run for one athlete and window."""
    athlete_id: int
    athlete_name: str
    window: AnalysisWindow
    summary: PerformanceSummary
    categories: List[ExerciseCategoryPerformance] = field(default_factory=list)
    problematic_exercises: List[ProblematicExercise] = field(default_factory=list)
    patterns: List[DetectedPattern] = field(default_factory=list)
    needs_attention: bool = False
    attention_priority: Priority = Priority.LOW

    def category(self, category: ExerciseCategory) -> Optional[ExerciseCategoryPerformance]:
        for performance in self.categories:
            if performance.category == category:
                return performance
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "athleteId": str(self.athlete_id),
            "athleteName": self.athlete_name,
            "window": {
                "start": self.window.start.isoformat(),
                "end": self.window.end.isoformat(),
                "days": self.window.days,
            },
            "summary": {
                "totalSessions": self.summary.total_sessions,
                "totalRecords": self.summary.total_records,
                "globalAverage": self.summary.global_average,
            },
            "categories": [c.to_dict() for c in self.categories],
            "problematicExercises": [p.to_dict() for p in self.problematic_exercises],
            "patterns": [p.to_dict() for p in self.patterns],
            "needsAttention": self.needs_attention,
            "attentionPriority": self.attention_priority.value,
        }


class PerformanceAnalysisEngine:
    """Analyze an athlete's exercise history and build an AnalysisSnapshot.

    Each call opens its own read session and builds fresh result objects, so
    concurrent analyses for different athletes share no mutable state.
    """

    def __init__(
        self,
        db: Database = None,
        trend_analyzer: TrendAnalyzer = None,
        anomaly_scorer: AnomalyScorer = None,
        clock=None,
    ):
        self.db = db or get_db()
        self.trend_analyzer = trend_analyzer or TrendAnalyzer()
        self.anomaly_scorer = anomaly_scorer or AnomalyScorer()
        self.clock = clock or datetime.utcnow

        self.low_threshold = config.LOW_PERFORMANCE_THRESHOLD
        self.very_low_threshold = config.VERY_LOW_PERFORMANCE_THRESHOLD
        self.min_assignments = config.MIN_ASSIGNMENTS_FOR_PROBLEM
        self.min_incomplete = config.MIN_INCOMPLETE_FOR_ALERT
        self.min_records = config.MIN_RECORDS_FOR_ANALYSIS
        self.max_problematic = config.MAX_PROBLEMATIC_EXERCISES
        self.max_substitutes = config.MAX_SUBSTITUTES_PER_EXERCISE
        self.trend_confidence = config.TREND_CONFIDENCE_R2

    def analyze(self, athlete_id: int, window_days: int = None) -> AnalysisSnapshot:
        """Analyze the athlete's performance over the last `window_days` days.

        Raises:
            NotFoundError: the athlete does not exist
        """
        if window_days is None:
            window_days = config.ANALYSIS_WINDOW_DAYS

        with self.db.get_session() as session:
            repo = PerformanceRepository(session)

            athlete = repo.get_athlete(athlete_id)
            if athlete is None:
                raise NotFoundError("Athlete", athlete_id)

            until = self.clock()
            since = until - timedelta(days=window_days)
            window = AnalysisWindow(start=since, end=until, days=window_days)

            records = repo.get_performance_records(athlete_id, since, until)
            if len(records) < self.min_records:
                logger.debug(
                    f"Athlete {athlete_id}: {len(records)} records in {window_days} days, "
                    f"returning empty snapshot"
                )
                return self._empty_snapshot(athlete, window, len(records))

            injuries = repo.get_active_injuries(athlete_id)
            fitness_level = repo.get_latest_fitness_level(athlete_id)
            frame = self._to_frame(records)

            problematic_by_id = self._detect_problematic_exercises(frame, repo, injuries)

            categories = []
            for category, group in frame.groupby("category", sort=False):
                performance = self._analyze_category(
                    category, group, athlete_id, until, repo, injuries, fitness_level, problematic_by_id
                )
                if performance is not None:
                    categories.append(performance)

        problematic = self._worst_first(problematic_by_id.values())
        patterns = self.detect_patterns(categories, problematic)
        needs_attention, attention_priority = self.evaluate_attention(patterns)

        return AnalysisSnapshot(
            athlete_id=athlete.athlete_id,
            athlete_name=athlete.display_name,
            window=window,
            summary=PerformanceSummary(
                total_sessions=int(frame["session_id"].nunique()),
                total_records=len(records),
                global_average=self._rounded_mean(frame["rating"]),
            ),
            categories=categories,
            problematic_exercises=problematic,
            patterns=patterns,
            needs_attention=needs_attention,
            attention_priority=attention_priority,
        )

    def _analyze_category(
        self,
        category: ExerciseCategory,
        group: pd.DataFrame,
        athlete_id: int,
        until: datetime,
        repo: PerformanceRepository,
        injuries: List[ActiveInjury],
        fitness_level: Optional[float],
        problematic_by_id: Dict[int, ProblematicExercise],
    ) -> Optional[ExerciseCategoryPerformance]:
        rated = group[group["rating"].notna()]
        if rated.empty:
            return None

        average = self._rounded_mean(rated["rating"])

        # Anomaly baseline uses its own, wider history window
        history_since = until - timedelta(days=config.ANOMALY_HISTORY_DAYS)
        history = repo.get_category_ratings(athlete_id, category, history_since)
        anomaly = self.anomaly_scorer.score(average, history)

        trend = self.trend_analyzer.analyze(self._samples(rated))

        problematic = self._worst_first(
            p for p in problematic_by_id.values() if p.category == category
        )

        return ExerciseCategoryPerformance(
            category=category,
            average_rating=average,
            sample_count=len(rated),
            trend=trend,
            anomaly=anomaly,
            problematic_exercises=problematic,
            substitute_candidates=self.find_category_substitutes(
                repo, category, injuries, fitness_level
            ),
        )

    def _detect_problematic_exercises(
        self,
        frame: pd.DataFrame,
        repo: PerformanceRepository,
        injuries: List[ActiveInjury],
    ) -> Dict[int, ProblematicExercise]:
        """Apply the problem conditions to every exercise; each is reported once."""
        problematic = {}

        for exercise_id, group in frame.groupby("exercise_id", sort=False):
            exercise_id = int(exercise_id)
            first = group.iloc[0]

            times_assigned = len(group)
            times_completed = int(group["completed"].sum())
            times_incomplete = times_assigned - times_completed

            rated = group[group["rating"].notna()]
            average = self._rounded_mean(rated["rating"])

            if not self.is_problematic(times_assigned, len(rated), average, times_incomplete):
                continue

            trend = self.trend_analyzer.analyze(self._samples(rated))

            problematic[exercise_id] = ProblematicExercise(
                exercise_id=exercise_id,
                name=first["exercise_name"],
                category=first["category"],
                average_rating=average,
                times_assigned=times_assigned,
                times_completed=times_completed,
                times_incomplete=times_incomplete,
                trend=None if trend.insufficient_data else trend.classification,
                substitute_candidates=self.find_exercise_substitutes(
                    repo, exercise_id, first["category"], int(first["difficulty_level"]), injuries
                ),
            )

        return problematic

    def is_problematic(
        self, times_assigned: int, rated_count: int, average: float, times_incomplete: int
    ) -> bool:
        """An exercise is problematic when any condition holds.

        (a) assigned repeatedly with a low average
        (b) a single very bad rated occurrence is enough
        (c) left incomplete repeatedly
        """
        return (
            (times_assigned >= self.min_assignments and average < self.low_threshold)
            or (rated_count > 0 and average <= self.very_low_threshold)
            or times_incomplete >= self.min_incomplete
        )

    def find_exercise_substitutes(
        self,
        repo: PerformanceRepository,
        exercise_id: int,
        category: ExerciseCategory,
        difficulty_level: int,
        injuries: List[ActiveInjury],
    ) -> List[SubstituteCandidate]:
        """Same-category exercises at the same or lower difficulty that avoid injured zones."""
        candidates = repo.get_catalog_exercises(category, difficulty_level)

        substitutes = []
        for candidate in candidates:
            if len(substitutes) >= self.max_substitutes:
                break
            if candidate.exercise_id == exercise_id:
                continue
            if self.is_contraindicated(candidate, injuries):
                continue

            if candidate.difficulty_level < difficulty_level:
                reason = "Lower difficulty to reinforce fundamentals"
            else:
                reason = "Same-level alternative"

            substitutes.append(
                SubstituteCandidate(
                    exercise_id=candidate.exercise_id,
                    name=candidate.name,
                    difficulty_level=candidate.difficulty_level,
                    reason=reason,
                )
            )

        return substitutes

    def find_category_substitutes(
        self,
        repo: PerformanceRepository,
        category: ExerciseCategory,
        injuries: List[ActiveInjury],
        fitness_level: Optional[float],
    ) -> List[SubstituteCandidate]:
        """Category-level alternatives capped by the athlete's fitness-test difficulty ceiling.

        Used when a whole category underperforms but no single exercise
        repeats enough to be flagged on its own.
        """
        ceiling = config.get_difficulty_ceiling(fitness_level)
        candidates = repo.get_catalog_exercises(category, ceiling)

        substitutes = []
        for candidate in candidates:
            if self.is_contraindicated(candidate, injuries):
                continue

            if candidate.difficulty_level <= 2:
                reason = "Basic exercise to reinforce fundamentals"
            elif candidate.difficulty_level <= 3:
                reason = "Intermediate exercise to consolidate"
            else:
                reason = "Alternative exercise of the same category"

            substitutes.append(
                SubstituteCandidate(
                    exercise_id=candidate.exercise_id,
                    name=candidate.name,
                    difficulty_level=candidate.difficulty_level,
                    reason=reason,
                )
            )
            if len(substitutes) >= self.max_substitutes:
                break

        return substitutes

    @staticmethod
    def is_contraindicated(candidate: CatalogExercise, injuries: Sequence[ActiveInjury]) -> bool:
        """Case-insensitive zone matching against contraindications and body zones."""
        zones = [injury.zone.lower() for injury in injuries if injury.zone]
        if not zones:
            return False

        if candidate.contraindications:
            text = candidate.contraindications.lower()
            if any(zone in text for zone in zones):
                return True

        for body_zone in candidate.body_zones or []:
            body_zone = body_zone.lower()
            for zone in zones:
                if body_zone in zone or zone in body_zone:
                    return True

        return False

    def detect_patterns(
        self,
        categories: Sequence[ExerciseCategoryPerformance],
        problematic: Sequence[ProblematicExercise],
    ) -> List[DetectedPattern]:
        """Detect the four pattern types; they are independent and may co-occur."""
        patterns = []

        # Low performance in a whole category
        for performance in categories:
            if (
                performance.average_rating < self.low_threshold
                and performance.sample_count >= self.min_assignments
            ):
                critical = performance.anomaly.interpretation == AnomalyInterpretation.CRITICAL_LOW
                patterns.append(
                    DetectedPattern(
                        type=PatternType.LOW_CATEGORY_PERFORMANCE,
                        severity=Priority.CRITICAL if critical else Priority.HIGH,
                        description=f"Low performance in {performance.category.value} exercises",
                        affected_category=performance.category,
                        data={
                            "averageRating": performance.average_rating,
                            "zScore": performance.anomaly.z_score,
                            "trend": performance.trend.classification.value,
                        },
                    )
                )

        # A single exercise left incomplete repeatedly
        for exercise in problematic:
            if exercise.times_incomplete >= self.min_incomplete:
                patterns.append(
                    DetectedPattern(
                        type=PatternType.RECURRING_EXERCISE_FAILURE,
                        severity=Priority.MEDIUM,
                        description=(
                            f'Exercise "{exercise.name}" not completed in '
                            f"{exercise.times_incomplete} of {exercise.times_assigned} sessions"
                        ),
                        affected_category=exercise.category,
                        affected_exercise=AffectedExercise(exercise.exercise_id, exercise.name),
                        data={
                            "timesAssigned": exercise.times_assigned,
                            "timesIncomplete": exercise.times_incomplete,
                            "averageRating": exercise.average_rating,
                        },
                    )
                )

        # Confident downward trend
        for performance in categories:
            if (
                performance.trend.classification == TrendClassification.WORSENING
                and performance.trend.r_squared > self.trend_confidence
            ):
                patterns.append(
                    DetectedPattern(
                        type=PatternType.NEGATIVE_TREND,
                        severity=Priority.HIGH,
                        description=f"Worsening trend in {performance.category.value} exercises",
                        affected_category=performance.category,
                        data={
                            "slope": performance.trend.slope,
                            "confidence": performance.trend.r_squared,
                        },
                    )
                )

        # Informational: notable improvement
        for performance in categories:
            if (
                performance.anomaly.interpretation
                in (AnomalyInterpretation.ALERT_HIGH, AnomalyInterpretation.CRITICAL_HIGH)
                and performance.trend.classification == TrendClassification.IMPROVING
            ):
                patterns.append(
                    DetectedPattern(
                        type=PatternType.IMPROVEMENT_DETECTED,
                        severity=Priority.LOW,
                        description=f"Notable improvement in {performance.category.value} exercises",
                        affected_category=performance.category,
                        data={
                            "slope": performance.trend.slope,
                            "zScore": performance.anomaly.z_score,
                        },
                    )
                )

        return patterns

    @staticmethod
    def evaluate_attention(patterns: Sequence[DetectedPattern]):
        """Return (needs_attention, priority) from the most severe pattern.

        Purely informational (LOW) patterns do not require attention.
        """
        if not patterns:
            return False, Priority.LOW

        highest = max((p.severity for p in patterns), key=lambda s: s.rank)
        return highest != Priority.LOW, highest

    def _worst_first(self, exercises) -> List[ProblematicExercise]:
        ordered = sorted(exercises, key=lambda p: p.average_rating)
        return ordered[: self.max_problematic]

    def _empty_snapshot(self, athlete: AthleteInfo, window: AnalysisWindow, record_count: int) -> AnalysisSnapshot:
        return AnalysisSnapshot(
            athlete_id=athlete.athlete_id,
            athlete_name=athlete.display_name,
            window=window,
            summary=PerformanceSummary(total_sessions=0, total_records=record_count, global_average=0.0),
        )

    @staticmethod
    def _to_frame(records: Sequence[PerformanceRecord]) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "exercise_id": [r.exercise_id for r in records],
                "exercise_name": [r.exercise_name for r in records],
                "category": [r.category for r in records],
                "difficulty_level": [r.difficulty_level for r in records],
                "session_id": [r.session_id for r in records],
                "session_date": [r.session_date for r in records],
                "completed": [bool(r.completed) for r in records],
                "rating": [float(r.rating) if r.rating is not None else float("nan") for r in records],
            }
        )

    @staticmethod
    def _samples(rated: pd.DataFrame) -> List[PerformanceSample]:
        return [
            PerformanceSample(date=pd.Timestamp(date).to_pydatetime(), value=float(rating))
            for date, rating in zip(rated["session_date"], rated["rating"])
        ]

    @staticmethod
    def _rounded_mean(ratings: pd.Series) -> float:
        ratings = ratings.dropna()
        if ratings.empty:
            return 0.0
        return round(float(ratings.mean()), 2)
