"""Builders for database-backed tests."""

from datetime import datetime, timedelta

from performance_recommender.db.database import Database
from performance_recommender.db.models import (
    Athlete,
    Exercise,
    ExerciseCategory,
    ExercisePerformance,
    FitnessTest,
    Injury,
    PostTrainingRecord,
    Priority,
    Recommendation,
    RecommendationState,
    RecommendationType,
    SessionExercise,
    TrainingCycle,
    TrainingSession,
    User,
    UserRole,
)

NOW = datetime(2024, 6, 1, 12, 0, 0)


def days_ago(days: float) -> datetime:
    return NOW - timedelta(days=days)


def memory_db() -> Database:
    db = Database("sqlite:///:memory:")
    db.create_tables()
    return db


class Factory:
    """Small helpers that insert rows and return their ids."""

    def __init__(self, db: Database):
        self.db = db

    def _add(self, obj):
        with self.db.get_session() as session:
            session.add(obj)
            session.flush()
            return obj.id

    def user(self, name="Ana Torres", role=UserRole.ATHLETE, active=True):
        return self._add(User(full_name=name, role=role, active=active))

    def athlete(self, name="Ana Torres", with_trainer=True, weight_category="-63kg"):
        """Returns (athlete_id, athlete_user_id, trainer_user_id)."""
        user_id = self.user(name)
        trainer_id = self.user("Coach Ruiz", UserRole.TRAINER) if with_trainer else None
        athlete_id = self._add(
            Athlete(user_id=user_id, trainer_user_id=trainer_id, weight_category=weight_category)
        )
        return athlete_id, user_id, trainer_id

    def exercise(self, name, category=ExerciseCategory.GROUND_TECHNIQUE, difficulty=2,
                 contraindications=None, body_zones=None, active=True):
        exercise = Exercise(
            name=name,
            category=category,
            difficulty_level=difficulty,
            contraindications=contraindications,
            active=active,
        )
        exercise.body_zones = body_zones or []
        return self._add(exercise)

    def cycle(self, code="MC-2024-22"):
        return self._add(TrainingCycle(code=code, cycle_type="LOAD", start_date=NOW, end_date=NOW + timedelta(days=7)))

    def session(self, date=None, approved=False, exercise_ids=(), **fields):
        with self.db.get_session() as db_session:
            training_session = TrainingSession(date=date or NOW, approved=approved, **fields)
            for position, exercise_id in enumerate(exercise_ids):
                training_session.exercises.append(
                    SessionExercise(exercise_id=exercise_id, position=position)
                )
            db_session.add(training_session)
            db_session.flush()
            return training_session.id

    def performance(self, athlete_id, exercise_id, date, rating=None, completed=True, recorded_at=None):
        """One exercise outcome in its own session on `date`."""
        with self.db.get_session() as db_session:
            training_session = TrainingSession(date=date, approved=True)
            session_exercise = SessionExercise(exercise_id=exercise_id, position=0)
            training_session.exercises.append(session_exercise)
            record = PostTrainingRecord(
                athlete_id=athlete_id,
                record_date=recorded_at or date,
                attended=True,
            )
            db_session.add_all([training_session, record])
            db_session.flush()
            record.session_id = training_session.id

            performance = ExercisePerformance(
                record_id=record.id,
                session_exercise_id=session_exercise.id,
                completed=completed,
                rating=rating,
                created_at=recorded_at or date,
            )
            db_session.add(performance)
            db_session.flush()
            return performance.id

    def injury(self, athlete_id, zone, resolved=False):
        return self._add(Injury(athlete_id=athlete_id, zone=zone, injury_type="strain", resolved=resolved))

    def fitness_test(self, athlete_id, level, date=None):
        return self._add(FitnessTest(athlete_id=athlete_id, test_date=date or NOW, shuttle_level=level))

    def recommendation(self, athlete_id, state=RecommendationState.PENDING, priority=Priority.HIGH,
                       generated_session_id=None, affected_session_ids=(), cycle_id=None,
                       created_at=None, reviewed_at=None, rec_type=RecommendationType.TACTICAL_PERSONALIZATION):
        recommendation = Recommendation(
            athlete_id=athlete_id,
            affected_cycle_id=cycle_id,
            type=rec_type,
            priority=priority,
            title="Low performance in ground technique (ne-waza) exercises",
            message="Average 4.2/10 over 6 sessions.",
            suggested_action="Reinforce fundamentals",
            generated_session_id=generated_session_id,
            state=state,
            created_at=created_at or NOW,
            reviewed_at=reviewed_at,
        )
        recommendation.analysis_data = {"kind": "LOW_CATEGORY_PERFORMANCE", "averageRating": 4.2}
        recommendation.suggested_changes = {"reduce": [], "add": [], "modify": []}
        recommendation.affected_session_ids = list(affected_session_ids)
        return self._add(recommendation)
