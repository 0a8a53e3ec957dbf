"""Recommendation approval workflow."""

from .notifications import NotificationDispatcher
from .recommendations import TRANSITIONS, RecommendationWorkflow, can_transition

__all__ = [
    "NotificationDispatcher",
    "RecommendationWorkflow",
    "TRANSITIONS",
    "can_transition",
]
