"""Database module for the performance recommender."""

from .database import Database, get_db, close_db
from .models import (
    Athlete,
    Exercise,
    ExerciseCategory,
    Notification,
    Priority,
    Recommendation,
    RecommendationHistory,
    RecommendationState,
    RecommendationType,
    TrainingSession,
)
from .repository import PerformanceRepository

__all__ = [
    "Database",
    "get_db",
    "close_db",
    "Athlete",
    "Exercise",
    "ExerciseCategory",
    "Notification",
    "Priority",
    "Recommendation",
    "RecommendationHistory",
    "RecommendationState",
    "RecommendationType",
    "TrainingSession",
    "PerformanceRepository",
]
