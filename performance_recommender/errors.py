"""Exceptions raised by the performance recommender."""


class PerformanceRecommenderError(Exception):
    """Base class for all performance recommender errors."""
    pass


class NotFoundError(PerformanceRecommenderError):
    """A referenced athlete, recommendation or session does not exist."""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InvalidTransitionError(PerformanceRecommenderError):
    """A recommendation state change that the workflow does not allow."""

    def __init__(self, recommendation_id, current_state, target_state, message: str = None):
        self.recommendation_id = recommendation_id
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(
            message
            or f"Cannot move recommendation {recommendation_id} from "
               f"{_state_name(current_state)} to {_state_name(target_state)}"
        )


class ConcurrentTransitionError(InvalidTransitionError):
    """Another process transitioned the recommendation first."""
    pass


class PayloadValidationError(PerformanceRecommenderError, ValueError):
    """Malformed amendment or analysis payload."""
    pass


def _state_name(state) -> str:
    return getattr(state, "value", state)
