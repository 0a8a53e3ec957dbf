"""Read-side queries consumed by the performance analysis engine."""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from .models import (
    Athlete,
    Exercise,
    ExerciseCategory,
    ExercisePerformance,
    FitnessTest,
    Injury,
    PostTrainingRecord,
    SessionExercise,
    TrainingSession,
)


@dataclass(frozen=True)
class PerformanceRecord:
    """One exercise outcome joined with exercise and session metadata."""
    performance_id: int
    exercise_id: int
    exercise_name: str
    category: ExerciseCategory
    difficulty_level: int
    session_id: int
    session_date: datetime
    recorded_at: datetime
    completed: bool
    rating: Optional[float]
    perceived_difficulty: Optional[float] = None


@dataclass(frozen=True)
class CatalogExercise:
    """Active catalog exercise with contraindication metadata."""
    exercise_id: int
    name: str
    category: ExerciseCategory
    difficulty_level: int
    contraindications: Optional[str]
    body_zones: List[str]


@dataclass(frozen=True)
class ActiveInjury:
    zone: str
    injury_type: Optional[str]


@dataclass(frozen=True)
class AthleteInfo:
    athlete_id: int
    display_name: str
    user_id: int
    trainer_user_id: Optional[int]


class PerformanceRepository:
    """Read-only queries over an open session.

    Rows are converted to frozen dataclasses so analysis code never holds
    ORM state across calls.
    """

    def __init__(self, session: Session):
        self.session = session

    def get_athlete(self, athlete_id: int) -> Optional[AthleteInfo]:
        athlete = self.session.get(Athlete, athlete_id)
        if athlete is None:
            return None
        return AthleteInfo(
            athlete_id=athlete.id,
            display_name=athlete.display_name,
            user_id=athlete.user_id,
            trainer_user_id=athlete.trainer_user_id,
        )

    def get_performance_records(
        self, athlete_id: int, since: datetime, until: datetime
    ) -> List[PerformanceRecord]:
        """Exercise outcomes whose session date (not entry date) falls in [since, until]."""
        rows = (
            self.session.query(ExercisePerformance, SessionExercise, Exercise, TrainingSession, PostTrainingRecord)
            .join(PostTrainingRecord, ExercisePerformance.record_id == PostTrainingRecord.id)
            .join(SessionExercise, ExercisePerformance.session_exercise_id == SessionExercise.id)
            .join(Exercise, SessionExercise.exercise_id == Exercise.id)
            .join(TrainingSession, SessionExercise.session_id == TrainingSession.id)
            .filter(
                PostTrainingRecord.athlete_id == athlete_id,
                TrainingSession.date >= since,
                TrainingSession.date <= until,
            )
            .order_by(ExercisePerformance.created_at.desc(), ExercisePerformance.id.desc())
            .all()
        )

        return [
            PerformanceRecord(
                performance_id=performance.id,
                exercise_id=exercise.id,
                exercise_name=exercise.name,
                category=exercise.category,
                difficulty_level=exercise.difficulty_level or 1,
                session_id=training_session.id,
                session_date=training_session.date,
                recorded_at=record.record_date,
                completed=bool(performance.completed),
                rating=performance.rating,
                perceived_difficulty=performance.perceived_difficulty,
            )
            for performance, _, exercise, training_session, record in rows
        ]

    def get_category_ratings(
        self, athlete_id: int, category: ExerciseCategory, since: datetime
    ) -> List[float]:
        """Rated outcomes of one category since a cutoff, for anomaly baselines."""
        rows = (
            self.session.query(ExercisePerformance.rating)
            .join(PostTrainingRecord, ExercisePerformance.record_id == PostTrainingRecord.id)
            .join(SessionExercise, ExercisePerformance.session_exercise_id == SessionExercise.id)
            .join(Exercise, SessionExercise.exercise_id == Exercise.id)
            .join(TrainingSession, SessionExercise.session_id == TrainingSession.id)
            .filter(
                PostTrainingRecord.athlete_id == athlete_id,
                Exercise.category == category,
                TrainingSession.date >= since,
                ExercisePerformance.rating.isnot(None),
            )
            .all()
        )
        return [float(rating) for (rating,) in rows]

    def get_catalog_exercises(
        self,
        category: ExerciseCategory,
        max_difficulty: int,
        limit: Optional[int] = None,
    ) -> List[CatalogExercise]:
        """Active exercises of a category up to a difficulty ceiling, easiest first."""
        query = (
            self.session.query(Exercise)
            .filter(
                Exercise.category == category,
                Exercise.active.is_(True),
                Exercise.difficulty_level <= max_difficulty,
            )
            .order_by(Exercise.difficulty_level.asc(), Exercise.id.asc())
        )
        if limit is not None:
            query = query.limit(limit)

        return [
            CatalogExercise(
                exercise_id=exercise.id,
                name=exercise.name,
                category=exercise.category,
                difficulty_level=exercise.difficulty_level or 1,
                contraindications=exercise.contraindications,
                body_zones=exercise.body_zones,
            )
            for exercise in query.all()
        ]

    def get_active_injuries(self, athlete_id: int) -> List[ActiveInjury]:
        injuries = (
            self.session.query(Injury)
            .filter(Injury.athlete_id == athlete_id, Injury.resolved.is_(False))
            .all()
        )
        return [ActiveInjury(zone=i.zone, injury_type=i.injury_type) for i in injuries]

    def get_latest_fitness_level(self, athlete_id: int) -> Optional[float]:
        test = (
            self.session.query(FitnessTest)
            .filter(FitnessTest.athlete_id == athlete_id)
            .order_by(FitnessTest.test_date.desc())
            .first()
        )
        return test.shuttle_level if test else None
