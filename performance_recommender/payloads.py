"""Structured payloads carried by recommendations.

Analysis payloads, suggested changes, amendments and rejection feedback
are known shapes, each serialized with a `kind` tag where several shapes
share one column. Only history extra data stays a free-form dict.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

from .db.models import ExerciseCategory, Priority, RecommendationType
from .errors import PayloadValidationError


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _plain(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


@dataclass(frozen=True)
class ExerciseChange:
    """Exercise to reduce or add, with the reason shown to reviewers."""
    exercise_id: int
    name: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"exerciseId": str(self.exercise_id), "name": self.name, "reason": self.reason}


@dataclass(frozen=True)
class ExerciseModification:
    """Free-text change. Exercise id 0 means the change is category wide."""
    exercise_id: int
    change: str

    def to_dict(self) -> Dict[str, Any]:
        return {"exerciseId": str(self.exercise_id), "change": self.change}


@dataclass(frozen=True)
class SuggestedChanges:
    reduce: List[ExerciseChange] = field(default_factory=list)
    add: List[ExerciseChange] = field(default_factory=list)
    modify: List[ExerciseModification] = field(default_factory=list)

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            "reduce": [c.to_dict() for c in self.reduce],
            "add": [c.to_dict() for c in self.add],
            "modify": [m.to_dict() for m in self.modify],
        }


# Analysis payloads (one shape per rule)

@dataclass(frozen=True)
class AnalysisPayload:
    """Base for the audit excerpt of the snapshot that triggered a rule."""
    kind: ClassVar[str] = ""

    def to_dict(self) -> Dict[str, Any]:
        data = {"kind": self.kind}
        for f in fields(self):
            data[_camel(f.name)] = _plain(getattr(self, f.name))
        return data


@dataclass(frozen=True)
class LowCategoryPayload(AnalysisPayload):
    kind: ClassVar[str] = "LOW_CATEGORY_PERFORMANCE"
    category: ExerciseCategory
    average_rating: float
    z_score: float
    trend: str
    record_count: int


@dataclass(frozen=True)
class RecurringFailurePayload(AnalysisPayload):
    kind: ClassVar[str] = "RECURRING_EXERCISE_FAILURE"
    exercise_id: str
    exercise_name: str
    times_assigned: int
    times_incomplete: int
    average_rating: float


@dataclass(frozen=True)
class CriticalAnomalyPayload(AnalysisPayload):
    kind: ClassVar[str] = "CRITICAL_ANOMALY"
    category: ExerciseCategory
    z_score: float
    interpretation: str
    current_rating: float
    historical_mean: float


@dataclass(frozen=True)
class NegativeTrendPayload(AnalysisPayload):
    kind: ClassVar[str] = "NEGATIVE_TREND"
    category: ExerciseCategory
    slope: float
    confidence: float
    prediction: float
    current_rating: float


@dataclass(frozen=True)
class ImprovementPayload(AnalysisPayload):
    kind: ClassVar[str] = "IMPROVEMENT_DETECTED"
    category: ExerciseCategory
    z_score: float
    current_rating: float
    trend: str


@dataclass(frozen=True)
class RejectionFeedback:
    """Stored under the `feedback` key of a rejected recommendation's analysis data."""
    rejection_reason: Optional[str]
    alternative_action: Optional[str]
    rejected_at: datetime
    rejected_type: RecommendationType
    original_priority: Priority

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rejectionReason": self.rejection_reason,
            "alternativeAction": self.alternative_action,
            "rejectedAt": self.rejected_at.isoformat(),
            "rejectedType": self.rejected_type.value,
            "originalPriority": self.original_priority.value,
        }


# Amendments

SESSION_NUMBER_LIMITS = {
    "planned_duration": (0, 300),
    "planned_volume": (0, 100),
    "planned_intensity": (0, 100),
}

SESSION_TEXT_LIMITS = {
    "physical_content": 500,
    "technical_content": 500,
    "tactical_content": 500,
    "main_part": 1000,
    "notes": 500,
}

GLOBAL_ADJUSTMENT_LIMITS = (-50, 50)
JUSTIFICATION_MAX_LENGTH = 1000
COMMENT_MAX_LENGTH = 500
REJECTION_REASON_MAX_LENGTH = 1000


@dataclass(frozen=True)
class SessionAdjustments:
    """Reviewer edits to the generated session. Only provided fields are applied."""
    planned_duration: Optional[float] = None
    planned_volume: Optional[float] = None
    planned_intensity: Optional[float] = None
    physical_content: Optional[str] = None
    technical_content: Optional[str] = None
    tactical_content: Optional[str] = None
    main_part: Optional[str] = None
    notes: Optional[str] = None

    def validate(self):
        for name, (low, high) in SESSION_NUMBER_LIMITS.items():
            _check_number(f"sessionAdjustments.{_camel(name)}", getattr(self, name), low, high, whole=True)
        for name, max_length in SESSION_TEXT_LIMITS.items():
            _check_text(f"sessionAdjustments.{_camel(name)}", getattr(self, name), max_length)

    def provided(self) -> Dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }

    def apply_to(self, session) -> List[str]:
        """Set the provided fields on a TrainingSession; returns the names changed."""
        changed = []
        for name, value in self.provided().items():
            # validate() only lets whole numbers through
            if name in SESSION_NUMBER_LIMITS:
                value = int(value)
            setattr(session, name, value)
            changed.append(name)
        return changed

    def to_dict(self) -> Dict[str, Any]:
        return {_camel(name): value for name, value in self.provided().items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionAdjustments":
        return cls(**_known_keys(cls, data, "sessionAdjustments"))


@dataclass(frozen=True)
class Amendments:
    """Reviewer amendments stored verbatim on an AMENDED recommendation."""
    session_adjustments: Optional[SessionAdjustments] = None
    global_volume_adjustment: Optional[float] = None
    global_intensity_adjustment: Optional[float] = None

    def validate(self):
        if self.session_adjustments is not None:
            self.session_adjustments.validate()
        low, high = GLOBAL_ADJUSTMENT_LIMITS
        _check_number("globalVolumeAdjustment", self.global_volume_adjustment, low, high)
        _check_number("globalIntensityAdjustment", self.global_intensity_adjustment, low, high)

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        if self.session_adjustments is not None:
            data["sessionAdjustments"] = self.session_adjustments.to_dict()
        if self.global_volume_adjustment is not None:
            data["globalVolumeAdjustment"] = self.global_volume_adjustment
        if self.global_intensity_adjustment is not None:
            data["globalIntensityAdjustment"] = self.global_intensity_adjustment
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Amendments":
        """Build from snake_case or camelCase keys, rejecting unknown ones."""
        if not isinstance(data, dict):
            raise PayloadValidationError("amendments must be an object")

        values = _known_keys(cls, data, "amendments")
        adjustments = values.get("session_adjustments")
        if adjustments is not None and not isinstance(adjustments, SessionAdjustments):
            if not isinstance(adjustments, dict):
                raise PayloadValidationError("sessionAdjustments must be an object")
            values["session_adjustments"] = SessionAdjustments.from_dict(adjustments)
        return cls(**values)


def validate_justification(justification: Optional[str]) -> str:
    if justification is None or not str(justification).strip():
        raise PayloadValidationError("A justification is required to amend a recommendation")
    _check_text("justification", justification, JUSTIFICATION_MAX_LENGTH)
    return justification


def validate_comment(name: str, comment: Optional[str], max_length: int = COMMENT_MAX_LENGTH):
    _check_text(name, comment, max_length)
    return comment


def _known_keys(cls, data: Dict[str, Any], label: str) -> Dict[str, Any]:
    by_alias = {}
    for f in fields(cls):
        by_alias[f.name] = f.name
        by_alias[_camel(f.name)] = f.name

    values = {}
    for key, value in data.items():
        if key not in by_alias:
            raise PayloadValidationError(f"Unknown field in {label}: {key}")
        values[by_alias[key]] = value
    return values


def _check_number(name: str, value, low: float, high: float, whole: bool = False):
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PayloadValidationError(f"{name} must be a number")
    if whole and isinstance(value, float) and not value.is_integer():
        raise PayloadValidationError(f"{name} must be a whole number")
    if value < low or value > high:
        raise PayloadValidationError(f"{name} must be between {low} and {high}")


def _check_text(name: str, value, max_length: int):
    if value is None:
        return
    if not isinstance(value, str):
        raise PayloadValidationError(f"{name} must be a string")
    if len(value) > max_length:
        raise PayloadValidationError(f"{name} must be at most {max_length} characters")
