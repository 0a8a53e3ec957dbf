"""Database models for athletes, training records and recommendations."""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# 64-bit identifiers; SQLite only autoincrements INTEGER primary keys.
BigIntId = BigInteger().with_variant(Integer, "sqlite")


class ExerciseCategory(Enum):
    """Coarse exercise classification."""

    PHYSICAL = "PHYSICAL"
    STANDING_TECHNIQUE = "STANDING_TECHNIQUE"
    GROUND_TECHNIQUE = "GROUND_TECHNIQUE"
    ENDURANCE = "ENDURANCE"
    SPEED = "SPEED"


class Priority(Enum):
    """Recommendation and pattern priority."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.CRITICAL: 3,
    Priority.HIGH: 2,
    Priority.MEDIUM: 1,
    Priority.LOW: 0,
}


class RecommendationType(Enum):
    """What kind of intervention a recommendation proposes."""

    TACTICAL_PERSONALIZATION = "TACTICAL_PERSONALIZATION"
    FATIGUE_ALERT = "FATIGUE_ALERT"
    PLANNING_ADJUSTMENT = "PLANNING_ADJUSTMENT"


class RecommendationState(Enum):
    """Lifecycle states of a persisted recommendation."""

    PENDING = "PENDING"
    IN_REVIEW = "IN_REVIEW"
    FULFILLED = "FULFILLED"
    REJECTED = "REJECTED"
    AMENDED = "AMENDED"

    @property
    def is_terminal(self) -> bool:
        return self in (
            RecommendationState.FULFILLED,
            RecommendationState.REJECTED,
            RecommendationState.AMENDED,
        )


class HistoryAction(Enum):
    """Audit trail actions."""

    CREATED = "CREATED"
    IN_REVIEW = "IN_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    AMENDED = "AMENDED"


class UserRole(Enum):
    ATHLETE = "ATHLETE"
    TRAINER = "TRAINER"
    TECHNICAL_COMMITTEE = "TECHNICAL_COMMITTEE"
    ADMINISTRATOR = "ADMINISTRATOR"


def _dump(value) -> Optional[str]:
    return None if value is None else json.dumps(value)


def _load(raw: Optional[str], default=None):
    if not raw:
        return default
    return json.loads(raw)


class User(Base):
    """Application user (athlete, trainer or committee member)."""

    __tablename__ = "users"

    id = Column(BigIntId, primary_key=True)
    full_name = Column(String(255), nullable=False)
    role = Column(SAEnum(UserRole, native_enum=False, length=30), nullable=False)
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<User(id={self.id}, name={self.full_name}, role={self.role})>"


class Athlete(Base):
    """Athlete profile linked to its user account and assigned trainer."""

    __tablename__ = "athletes"

    id = Column(BigIntId, primary_key=True)
    user_id = Column(BigIntId, ForeignKey("users.id"), nullable=False)
    trainer_user_id = Column(BigIntId, ForeignKey("users.id"))
    weight_category = Column(String(50))
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", foreign_keys=[user_id])
    trainer = relationship("User", foreign_keys=[trainer_user_id])

    @property
    def display_name(self) -> str:
        return self.user.full_name if self.user else f"Athlete {self.id}"

    def __repr__(self):
        return f"<Athlete(id={self.id}, user_id={self.user_id})>"


class TrainingCycle(Base):
    """Microcycle that groups planned sessions."""

    __tablename__ = "training_cycles"

    id = Column(BigIntId, primary_key=True)
    code = Column(String(50), unique=True, nullable=False)
    cycle_type = Column(String(50))  # LOAD, DELOAD, RECOVERY, COMPETITION
    start_date = Column(DateTime)
    end_date = Column(DateTime)

    def __repr__(self):
        return f"<TrainingCycle(code={self.code}, type={self.cycle_type})>"


class TrainingSession(Base):
    """Planned or executed training session."""

    __tablename__ = "training_sessions"

    id = Column(BigIntId, primary_key=True)
    cycle_id = Column(BigIntId, ForeignKey("training_cycles.id"))
    date = Column(DateTime, nullable=False)
    session_type = Column(String(50))
    approved = Column(Boolean, default=False)

    # Planned load
    planned_duration = Column(Integer)  # minutes
    planned_volume = Column(Integer)  # percent
    planned_intensity = Column(Integer)  # percent

    # Content
    physical_content = Column(Text)
    technical_content = Column(Text)
    tactical_content = Column(Text)
    main_part = Column(Text)
    notes = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    exercises = relationship(
        "SessionExercise", back_populates="session", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<TrainingSession(id={self.id}, date={self.date}, approved={self.approved})>"


class Exercise(Base):
    """Exercise catalog entry."""

    __tablename__ = "exercises"

    id = Column(BigIntId, primary_key=True)
    name = Column(String(255), nullable=False)
    category = Column(SAEnum(ExerciseCategory, native_enum=False, length=30), nullable=False)
    difficulty_level = Column(Integer, default=1)  # 1-5
    active = Column(Boolean, default=True)
    contraindications = Column(Text)
    body_zones_json = Column("body_zones", Text)  # JSON list of zone names

    @property
    def body_zones(self) -> List[str]:
        return _load(self.body_zones_json, [])

    @body_zones.setter
    def body_zones(self, zones: List[str]):
        self.body_zones_json = _dump(list(zones) if zones else [])

    def __repr__(self):
        return f"<Exercise(id={self.id}, name={self.name}, category={self.category})>"


class SessionExercise(Base):
    """An exercise assigned within a training session."""

    __tablename__ = "session_exercises"

    id = Column(BigIntId, primary_key=True)
    session_id = Column(BigIntId, ForeignKey("training_sessions.id", ondelete="CASCADE"), nullable=False)
    exercise_id = Column(BigIntId, ForeignKey("exercises.id"), nullable=False)
    position = Column(Integer, default=0)

    session = relationship("TrainingSession", back_populates="exercises")
    exercise = relationship("Exercise")
    performances = relationship(
        "ExercisePerformance", back_populates="session_exercise", cascade="all, delete-orphan"
    )


class PostTrainingRecord(Base):
    """Trainer-entered record of an athlete's attendance to a session."""

    __tablename__ = "post_training_records"

    id = Column(BigIntId, primary_key=True)
    athlete_id = Column(BigIntId, ForeignKey("athletes.id"), nullable=False)
    session_id = Column(BigIntId, ForeignKey("training_sessions.id", ondelete="CASCADE"))
    record_date = Column(DateTime, default=datetime.utcnow)  # when the data was entered
    attended = Column(Boolean, default=True)
    rpe = Column(Float)

    performances = relationship("ExercisePerformance", back_populates="record")


class ExercisePerformance(Base):
    """Per-exercise outcome inside a post-training record."""

    __tablename__ = "exercise_performances"

    id = Column(BigIntId, primary_key=True)
    record_id = Column(BigIntId, ForeignKey("post_training_records.id"), nullable=False)
    session_exercise_id = Column(
        BigIntId, ForeignKey("session_exercises.id", ondelete="CASCADE"), nullable=False
    )
    completed = Column(Boolean, default=True)
    rating = Column(Float)  # 0-10, null when not rated
    perceived_difficulty = Column(Float)
    created_at = Column(DateTime, default=datetime.utcnow)

    record = relationship("PostTrainingRecord", back_populates="performances")
    session_exercise = relationship("SessionExercise", back_populates="performances")


class Injury(Base):
    """Reported injury or discomfort in a body zone."""

    __tablename__ = "injuries"

    id = Column(BigIntId, primary_key=True)
    athlete_id = Column(BigIntId, ForeignKey("athletes.id"), nullable=False)
    zone = Column(String(100), nullable=False)
    injury_type = Column(String(100))
    resolved = Column(Boolean, default=False)
    reported_at = Column(DateTime, default=datetime.utcnow)


class FitnessTest(Base):
    """Physical test summary; only the shuttle-run level is used here."""

    __tablename__ = "fitness_tests"

    id = Column(BigIntId, primary_key=True)
    athlete_id = Column(BigIntId, ForeignKey("athletes.id"), nullable=False)
    test_date = Column(DateTime, nullable=False)
    shuttle_level = Column(Float)  # navette palier


class Recommendation(Base):
    """Rule-generated recommendation moving through the approval workflow."""

    __tablename__ = "recommendations"

    id = Column(BigIntId, primary_key=True)
    athlete_id = Column(BigIntId, ForeignKey("athletes.id"), nullable=False)
    affected_cycle_id = Column(BigIntId, ForeignKey("training_cycles.id"))

    type = Column(SAEnum(RecommendationType, native_enum=False, length=40), nullable=False)
    priority = Column(SAEnum(Priority, native_enum=False, length=20), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    suggested_action = Column(Text)
    analysis_data_json = Column("analysis_data", Text)
    suggested_changes_json = Column("suggested_changes", Text)

    # Sessions created from this recommendation
    generated_session_id = Column(BigIntId, ForeignKey("training_sessions.id"))
    affected_session_ids_json = Column("affected_session_ids", Text)

    state = Column(
        SAEnum(RecommendationState, native_enum=False, length=20),
        nullable=False,
        default=RecommendationState.PENDING,
    )
    reviewed_by = Column(BigIntId, ForeignKey("users.id"))
    reviewed_at = Column(DateTime)
    review_comment = Column(Text)
    applied_by = Column(BigIntId, ForeignKey("users.id"))
    applied_at = Column(DateTime)
    amendments_json = Column("amendments", Text)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}

    athlete = relationship("Athlete")
    affected_cycle = relationship("TrainingCycle")

    @property
    def analysis_data(self) -> Dict[str, Any]:
        return _load(self.analysis_data_json, {})

    @analysis_data.setter
    def analysis_data(self, value: Dict[str, Any]):
        self.analysis_data_json = _dump(value)

    @property
    def suggested_changes(self) -> Dict[str, List[Dict[str, Any]]]:
        return _load(self.suggested_changes_json, {"reduce": [], "add": [], "modify": []})

    @suggested_changes.setter
    def suggested_changes(self, value: Dict[str, List[Dict[str, Any]]]):
        self.suggested_changes_json = _dump(value)

    @property
    def affected_session_ids(self) -> List[int]:
        return [int(sid) for sid in _load(self.affected_session_ids_json, [])]

    @affected_session_ids.setter
    def affected_session_ids(self, value: List[int]):
        self.affected_session_ids_json = _dump([int(sid) for sid in value or []])

    @property
    def amendments(self) -> Optional[Dict[str, Any]]:
        return _load(self.amendments_json)

    @amendments.setter
    def amendments(self, value: Optional[Dict[str, Any]]):
        self.amendments_json = _dump(value)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with string identifiers for transport boundaries."""
        return {
            "id": str(self.id),
            "athleteId": str(self.athlete_id),
            "affectedCycleId": _str_or_none(self.affected_cycle_id),
            "type": self.type.value,
            "priority": self.priority.value,
            "title": self.title,
            "message": self.message,
            "suggestedAction": self.suggested_action,
            "analysisData": self.analysis_data,
            "suggestedChanges": self.suggested_changes,
            "generatedSessionId": _str_or_none(self.generated_session_id),
            "affectedSessionIds": [str(sid) for sid in self.affected_session_ids],
            "state": self.state.value,
            "reviewedBy": _str_or_none(self.reviewed_by),
            "reviewedAt": _iso_or_none(self.reviewed_at),
            "reviewComment": self.review_comment,
            "appliedBy": _str_or_none(self.applied_by),
            "appliedAt": _iso_or_none(self.applied_at),
            "amendments": self.amendments,
            "createdAt": _iso_or_none(self.created_at),
            "updatedAt": _iso_or_none(self.updated_at),
        }

    def __repr__(self):
        return f"<Recommendation(id={self.id}, state={self.state}, priority={self.priority})>"


class RecommendationHistory(Base):
    """Append-only audit entry for a recommendation state change."""

    __tablename__ = "recommendation_history"

    id = Column(BigIntId, primary_key=True)
    recommendation_id = Column(BigIntId, ForeignKey("recommendations.id"), nullable=False)
    previous_state = Column(SAEnum(RecommendationState, native_enum=False, length=20))
    new_state = Column(SAEnum(RecommendationState, native_enum=False, length=20), nullable=False)
    actor_id = Column(BigIntId, ForeignKey("users.id"))
    action = Column(SAEnum(HistoryAction, native_enum=False, length=20), nullable=False)
    comment = Column(Text)
    extra_data_json = Column("extra_data", Text)  # schema-less forensic data
    created_at = Column(DateTime, default=datetime.utcnow)

    @property
    def extra_data(self) -> Optional[Dict[str, Any]]:
        return _load(self.extra_data_json)

    @extra_data.setter
    def extra_data(self, value: Optional[Dict[str, Any]]):
        self.extra_data_json = _dump(value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "recommendationId": str(self.recommendation_id),
            "previousState": self.previous_state.value if self.previous_state else None,
            "newState": self.new_state.value,
            "actorId": _str_or_none(self.actor_id),
            "action": self.action.value,
            "comment": self.comment,
            "extraData": self.extra_data,
            "timestamp": _iso_or_none(self.created_at),
        }

    def __repr__(self):
        return (
            f"<RecommendationHistory(recommendation_id={self.recommendation_id}, "
            f"{self.previous_state} -> {self.new_state})>"
        )


class Notification(Base):
    """In-app notification for a user."""

    __tablename__ = "notifications"

    id = Column(BigIntId, primary_key=True)
    recipient_id = Column(BigIntId, ForeignKey("users.id"), nullable=False)
    kind = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    priority = Column(SAEnum(Priority, native_enum=False, length=20), default=Priority.MEDIUM)
    read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Notification(recipient_id={self.recipient_id}, kind={self.kind})>"


def _str_or_none(value) -> Optional[str]:
    return None if value is None else str(value)


def _iso_or_none(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
