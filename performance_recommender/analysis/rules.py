"""IF-THEN rules turning an analysis snapshot into recommendation drafts.

Rules are evaluated in a fixed order (CRITICAL first, LOW last) and every
satisfied rule fires. A rule that raises is logged and skipped.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Sequence

from ..config import config
from ..db.models import ExerciseCategory, Priority, RecommendationType
from ..payloads import (
    AnalysisPayload,
    CriticalAnomalyPayload,
    ExerciseChange,
    ExerciseModification,
    ImprovementPayload,
    LowCategoryPayload,
    NegativeTrendPayload,
    RecurringFailurePayload,
    SuggestedChanges,
)
from .anomaly import AnomalyInterpretation
from .performance import AnalysisSnapshot, ExerciseCategoryPerformance, ProblematicExercise
from .trend import TrendClassification

logger = logging.getLogger(__name__)

# Readable category names used in titles and messages
CATEGORY_LABELS: Dict[ExerciseCategory, str] = {
    ExerciseCategory.PHYSICAL: "physical",
    ExerciseCategory.STANDING_TECHNIQUE: "standing technique (tachi-waza)",
    ExerciseCategory.GROUND_TECHNIQUE: "ground technique (ne-waza)",
    ExerciseCategory.ENDURANCE: "endurance",
    ExerciseCategory.SPEED: "speed",
}

# Exercise id used by modifications that apply to a whole category
CATEGORY_WIDE = 0


@dataclass(frozen=True)
class RecommendationDraft:
    """Output of one rule firing, before persistence."""
    type: RecommendationType
    title: str
    message: str
    suggested_action: str
    priority: Priority
    analysis: AnalysisPayload
    changes: SuggestedChanges = field(default_factory=SuggestedChanges)
    rule_id: str = ""

    def to_dict(self) -> dict:
        return {
            "ruleId": self.rule_id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "suggestedAction": self.suggested_action,
            "priority": self.priority.value,
            "suggestedChanges": self.changes.to_dict(),
            "analysisData": self.analysis.to_dict(),
        }


@dataclass(frozen=True)
class Rule:
    """A predicate over a snapshot coupled with the action that builds a draft."""
    id: str
    name: str
    description: str
    priority: Priority
    predicate: Callable[[AnalysisSnapshot], bool]
    action: Callable[[AnalysisSnapshot], RecommendationDraft]


def category_label(category: ExerciseCategory) -> str:
    return CATEGORY_LABELS.get(category, category.value)


def _percent(r_squared: float) -> int:
    return int(round(r_squared * 100))


# R1: sustained low performance in a category

def _find_low_category(snapshot: AnalysisSnapshot) -> Optional[ExerciseCategoryPerformance]:
    for performance in snapshot.categories:
        if (
            performance.average_rating < config.LOW_PERFORMANCE_THRESHOLD
            and performance.sample_count >= config.MIN_RECORDS_FOR_ANALYSIS
            and performance.trend.classification != TrendClassification.IMPROVING
        ):
            return performance
    return None


def _low_category_action(snapshot: AnalysisSnapshot) -> RecommendationDraft:
    performance = _find_low_category(snapshot)
    label = category_label(performance.category)

    message = (
        f"{snapshot.athlete_name} has averaged {performance.average_rating:.1f}/10 "
        f"in {label} exercises over the last {performance.sample_count} sessions.\n\n"
    )

    if performance.problematic_exercises:
        message += "Problematic exercises detected:\n"
        for exercise in performance.problematic_exercises[:3]:
            message += f"- {exercise.name}: {exercise.average_rating:.1f}/10 ({exercise.times_assigned} sessions"
            if exercise.times_incomplete > 0:
                message += f", {exercise.times_incomplete} not completed"
            message += ")\n"
        message += "\n"

    interpretation = performance.anomaly.interpretation.value.lower().replace("_", " ")
    message += (
        "Statistical analysis:\n"
        f"- Z-score: {performance.anomaly.z_score} ({interpretation})\n"
        f"- Trend: {performance.trend.classification.value}\n"
        f"- Analysis confidence: {_percent(performance.trend.r_squared)}%"
    )

    reduce = []
    if performance.problematic_exercises:
        reduce = [
            ExerciseChange(
                exercise_id=exercise.exercise_id,
                name=exercise.name,
                reason=f"Sustained low performance ({exercise.average_rating:.1f}/10)",
            )
            for exercise in performance.problematic_exercises[:2]
        ]

    # Category-level alternatives, never re-suggesting a struggling exercise
    problematic_ids = {exercise.exercise_id for exercise in performance.problematic_exercises}
    add = [
        ExerciseChange(exercise_id=c.exercise_id, name=c.name, reason=c.reason)
        for c in performance.substitute_candidates
        if c.exercise_id not in problematic_ids
    ][:3]

    return RecommendationDraft(
        type=RecommendationType.TACTICAL_PERSONALIZATION,
        title=f"Low performance in {label} exercises",
        message=message,
        suggested_action=(
            "Review the problematic exercises and consider the suggested alternatives. "
            "Reinforce fundamentals before moving on to advanced techniques."
        ),
        priority=Priority.HIGH,
        changes=SuggestedChanges(reduce=reduce, add=add),
        analysis=LowCategoryPayload(
            category=performance.category,
            average_rating=performance.average_rating,
            z_score=performance.anomaly.z_score,
            trend=performance.trend.classification.value,
            record_count=performance.sample_count,
        ),
    )


# R2: one exercise failing repeatedly

def _find_recurring_failure(snapshot: AnalysisSnapshot) -> Optional[ProblematicExercise]:
    for exercise in snapshot.problematic_exercises:
        if exercise.times_assigned < config.MIN_ASSIGNMENTS_FOR_PROBLEM:
            continue
        if (
            exercise.times_incomplete >= config.MIN_INCOMPLETE_FOR_ALERT
            or exercise.average_rating < config.RECURRING_FAILURE_RATING
        ):
            return exercise
    return None


def _recurring_failure_action(snapshot: AnalysisSnapshot) -> RecommendationDraft:
    exercise = _find_recurring_failure(snapshot)

    message = (
        f'{snapshot.athlete_name} has struggled with "{exercise.name}" '
        f"over the last {exercise.times_assigned} sessions.\n\n"
        f"Average performance: {exercise.average_rating:.1f}/10\n"
        f"Not completed: {exercise.times_incomplete} of {exercise.times_assigned} times"
    )
    if exercise.trend:
        message += f"\nTrend: {exercise.trend.value}"

    return RecommendationDraft(
        type=RecommendationType.TACTICAL_PERSONALIZATION,
        title=f'Exercise "{exercise.name}" with recurring low performance',
        message=message,
        suggested_action="Replace with a lower difficulty alternative exercise",
        priority=Priority.MEDIUM,
        changes=SuggestedChanges(
            reduce=[
                ExerciseChange(
                    exercise_id=exercise.exercise_id,
                    name=exercise.name,
                    reason="Recurring low performance",
                )
            ],
            add=[
                ExerciseChange(exercise_id=c.exercise_id, name=c.name, reason=c.reason)
                for c in exercise.substitute_candidates
            ],
        ),
        analysis=RecurringFailurePayload(
            exercise_id=str(exercise.exercise_id),
            exercise_name=exercise.name,
            times_assigned=exercise.times_assigned,
            times_incomplete=exercise.times_incomplete,
            average_rating=exercise.average_rating,
        ),
    )


# R3: critically low z-score

def _find_critical_anomaly(snapshot: AnalysisSnapshot) -> Optional[ExerciseCategoryPerformance]:
    for performance in snapshot.categories:
        if performance.anomaly.interpretation == AnomalyInterpretation.CRITICAL_LOW:
            return performance
    return None


def _critical_anomaly_action(snapshot: AnalysisSnapshot) -> RecommendationDraft:
    performance = _find_critical_anomaly(snapshot)
    label = category_label(performance.category)

    message = (
        f"{snapshot.athlete_name}'s performance in {label} exercises is "
        "significantly below their usual level.\n\n"
        f"Z-score: {performance.anomaly.z_score} (critical)\n"
        f"Current performance: {performance.average_rating:.1f}/10\n"
        f"Historical mean: {performance.anomaly.mean}/10\n\n"
        "This may indicate accumulated fatigue, an unreported injury, external "
        "problems or training overload."
    )

    return RecommendationDraft(
        type=RecommendationType.FATIGUE_ALERT,
        title=f"Critical drop in {label} exercise performance",
        message=message,
        suggested_action=(
            "URGENT: investigate the cause. Consider a significant load reduction or rest. "
            "Talk to the athlete."
        ),
        priority=Priority.CRITICAL,
        changes=SuggestedChanges(
            modify=[
                ExerciseModification(
                    exercise_id=CATEGORY_WIDE,
                    change=(
                        f"Reduce frequency and intensity of {label} exercises by 30-50% "
                        "until performance recovers"
                    ),
                )
            ]
        ),
        analysis=CriticalAnomalyPayload(
            category=performance.category,
            z_score=performance.anomaly.z_score,
            interpretation=performance.anomaly.interpretation.value,
            current_rating=performance.average_rating,
            historical_mean=performance.anomaly.mean,
        ),
    )


# R4: confident worsening trend

def _find_negative_trend(snapshot: AnalysisSnapshot) -> Optional[ExerciseCategoryPerformance]:
    for performance in snapshot.categories:
        if (
            performance.trend.classification == TrendClassification.WORSENING
            and performance.trend.r_squared > config.TREND_CONFIDENCE_R2
            and performance.sample_count >= config.MIN_RECORDS_FOR_ANALYSIS
        ):
            return performance
    return None


def _negative_trend_action(snapshot: AnalysisSnapshot) -> RecommendationDraft:
    performance = _find_negative_trend(snapshot)
    label = category_label(performance.category)
    trend = performance.trend

    message = (
        f"A worsening trend was detected in {label} exercises for {snapshot.athlete_name}.\n\n"
        f"Slope: {trend.slope}/day\n"
        f"Confidence: {_percent(trend.r_squared)}%\n"
        f"Current performance: {performance.average_rating:.1f}/10\n\n"
        f"If the trend continues, the projected performance for the next session is "
        f"{trend.next_value_prediction}/10."
    )

    return RecommendationDraft(
        type=RecommendationType.PLANNING_ADJUSTMENT,
        title=f"Negative trend in {label} exercises",
        message=message,
        suggested_action=(
            "Review the planning. Consider a consolidation period before progressing. "
            "A DELOAD microcycle may be needed."
        ),
        priority=Priority.HIGH,
        changes=SuggestedChanges(
            reduce=[
                ExerciseChange(
                    exercise_id=exercise.exercise_id,
                    name=exercise.name,
                    reason="Contributes to the negative trend",
                )
                for exercise in performance.problematic_exercises[:2]
            ],
            modify=[
                ExerciseModification(
                    exercise_id=CATEGORY_WIDE,
                    change="Consider a DELOAD or RECOVERY microcycle",
                )
            ],
        ),
        analysis=NegativeTrendPayload(
            category=performance.category,
            slope=trend.slope,
            confidence=trend.r_squared,
            prediction=trend.next_value_prediction,
            current_rating=performance.average_rating,
        ),
    )


# R5: notable improvement (informational)

def _find_improvement(snapshot: AnalysisSnapshot) -> Optional[ExerciseCategoryPerformance]:
    for performance in snapshot.categories:
        if (
            performance.anomaly.interpretation
            in (AnomalyInterpretation.ALERT_HIGH, AnomalyInterpretation.CRITICAL_HIGH)
            and performance.trend.classification == TrendClassification.IMPROVING
        ):
            return performance
    return None


def _improvement_action(snapshot: AnalysisSnapshot) -> RecommendationDraft:
    performance = _find_improvement(snapshot)
    label = category_label(performance.category)

    message = (
        f"A significant improvement was detected in {label} exercises for {snapshot.athlete_name}.\n\n"
        f"Z-score: +{performance.anomaly.z_score} (above their historical mean)\n"
        f"Current performance: {performance.average_rating:.1f}/10\n"
        f"Trend: {performance.trend.classification.value}\n\n"
        "This is positive. Consider gradually increasing the difficulty."
    )

    return RecommendationDraft(
        type=RecommendationType.TACTICAL_PERSONALIZATION,
        title=f"Improvement detected in {label} exercises",
        message=message,
        suggested_action="Consider gradually increasing difficulty or adding more advanced exercises.",
        priority=Priority.LOW,
        changes=SuggestedChanges(
            modify=[
                ExerciseModification(
                    exercise_id=CATEGORY_WIDE,
                    change=f"Consider progressing to harder {label} exercises",
                )
            ]
        ),
        analysis=ImprovementPayload(
            category=performance.category,
            z_score=performance.anomaly.z_score,
            current_rating=performance.average_rating,
            trend=performance.trend.classification.value,
        ),
    )


LOW_CATEGORY_PERFORMANCE = Rule(
    id="R1",
    name="Low performance in exercise category",
    description="Category average below the low threshold, enough records and no improving trend",
    priority=Priority.HIGH,
    predicate=lambda snapshot: _find_low_category(snapshot) is not None,
    action=_low_category_action,
)

RECURRING_EXERCISE_FAILURE = Rule(
    id="R2",
    name="Exercise with recurring failures",
    description="Exercise assigned repeatedly that is left incomplete or rated below 4",
    priority=Priority.MEDIUM,
    predicate=lambda snapshot: _find_recurring_failure(snapshot) is not None,
    action=_recurring_failure_action,
)

CRITICAL_ANOMALY = Rule(
    id="R3",
    name="Critical deviation from normal performance",
    description="Category z-score is critically low",
    priority=Priority.CRITICAL,
    predicate=lambda snapshot: _find_critical_anomaly(snapshot) is not None,
    action=_critical_anomaly_action,
)

NEGATIVE_TREND = Rule(
    id="R4",
    name="Worsening trend detected",
    description="Worsening category trend with R-squared above the confidence threshold",
    priority=Priority.HIGH,
    predicate=lambda snapshot: _find_negative_trend(snapshot) is not None,
    action=_negative_trend_action,
)

NOTABLE_IMPROVEMENT = Rule(
    id="R5",
    name="Significant improvement detected",
    description="High z-score together with an improving trend",
    priority=Priority.LOW,
    predicate=lambda snapshot: _find_improvement(snapshot) is not None,
    action=_improvement_action,
)

# Evaluation order: CRITICAL -> HIGH -> HIGH -> MEDIUM -> LOW
DEFAULT_RULES = (
    CRITICAL_ANOMALY,
    LOW_CATEGORY_PERFORMANCE,
    NEGATIVE_TREND,
    RECURRING_EXERCISE_FAILURE,
    NOTABLE_IMPROVEMENT,
)


class RuleEngine:
    """Forward-chaining evaluation of an ordered rule registry."""

    def __init__(self, rules: Sequence[Rule] = DEFAULT_RULES):
        self.rules = tuple(rules)

    def evaluate(self, snapshot: AnalysisSnapshot) -> List[RecommendationDraft]:
        """Fire every satisfied rule, in registry order."""
        drafts = []

        for rule in self.rules:
            try:
                if rule.predicate(snapshot):
                    drafts.append(replace(rule.action(snapshot), rule_id=rule.id))
            except Exception as e:
                logger.error(f"Error evaluating rule {rule.id}: {e}")

        return drafts


def evaluate_rules(snapshot: AnalysisSnapshot) -> List[RecommendationDraft]:
    """Evaluate the default rule registry against a snapshot."""
    return RuleEngine().evaluate(snapshot)


def max_priority(drafts: Sequence[RecommendationDraft]) -> Priority:
    """Highest priority among drafts, LOW when there are none."""
    if not drafts:
        return Priority.LOW
    return max((d.priority for d in drafts), key=lambda p: p.rank)
