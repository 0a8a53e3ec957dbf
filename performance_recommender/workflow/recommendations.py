"""Human-in-the-loop approval workflow for generated recommendations.

State machine:

    PENDING -> IN_REVIEW -> FULFILLED | REJECTED | AMENDED

FULFILLED, REJECTED and AMENDED are terminal. Each transition runs as one
unit of work (lock, validate, mutate, commit); its history entry is
appended only after that commit succeeds.
"""

import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from sqlalchemy import case, func
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..analysis.performance import PerformanceAnalysisEngine
from ..analysis.rules import RecommendationDraft, RuleEngine, max_priority
from ..config import config
from ..db import get_db
from ..db.database import Database
from ..db.models import (
    Athlete,
    HistoryAction,
    Priority,
    Recommendation,
    RecommendationHistory,
    RecommendationState,
    TrainingSession,
)
from ..errors import ConcurrentTransitionError, InvalidTransitionError, NotFoundError
from ..payloads import (
    REJECTION_REASON_MAX_LENGTH,
    Amendments,
    RejectionFeedback,
    validate_comment,
    validate_justification,
)
from .notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

TRANSITIONS = {
    RecommendationState.PENDING: frozenset({RecommendationState.IN_REVIEW}),
    RecommendationState.IN_REVIEW: frozenset({
        RecommendationState.FULFILLED,
        RecommendationState.REJECTED,
        RecommendationState.AMENDED,
    }),
    RecommendationState.FULFILLED: frozenset(),
    RecommendationState.REJECTED: frozenset(),
    RecommendationState.AMENDED: frozenset(),
}

OPEN_STATES = (RecommendationState.PENDING, RecommendationState.IN_REVIEW)


def can_transition(current: RecommendationState, target: RecommendationState) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


class RecommendationWorkflow:
    """Persist rule drafts and drive reviewed recommendations to a decision."""

    def __init__(
        self,
        db: Database = None,
        notifier: NotificationDispatcher = None,
        analysis_engine: PerformanceAnalysisEngine = None,
        rule_engine: RuleEngine = None,
        clock: Callable[[], datetime] = None,
    ):
        self.db = db or get_db()
        self.notifier = notifier or NotificationDispatcher(self.db)
        self.analysis_engine = analysis_engine
        self.rule_engine = rule_engine or RuleEngine()
        self.clock = clock or datetime.utcnow

    # Creation

    def submit_drafts(
        self,
        athlete_id: int,
        drafts: Sequence[RecommendationDraft],
        actor_id: Optional[int] = None,
    ) -> List[Recommendation]:
        """Persist drafts as PENDING recommendations and alert the technical committee."""
        if not drafts:
            return []

        with self.db.get_session() as session:
            athlete = session.get(Athlete, athlete_id)
            if athlete is None:
                raise NotFoundError("Athlete", athlete_id)
            athlete_name = athlete.display_name

            recommendations = []
            for draft in drafts:
                recommendation = Recommendation(
                    athlete_id=athlete_id,
                    type=draft.type,
                    priority=draft.priority,
                    title=f"[{draft.rule_id}] {draft.title}" if draft.rule_id else draft.title,
                    message=draft.message,
                    suggested_action=draft.suggested_action,
                    state=RecommendationState.PENDING,
                )
                recommendation.analysis_data = draft.analysis.to_dict()
                recommendation.suggested_changes = draft.changes.to_dict()
                recommendation.affected_session_ids = []
                session.add(recommendation)
                recommendations.append(recommendation)

            session.flush()

        for recommendation, draft in zip(recommendations, drafts):
            self._record_history(
                recommendation.id,
                None,
                RecommendationState.PENDING,
                actor_id,
                HistoryAction.CREATED,
                "Generated by the rule engine",
                {"ruleId": draft.rule_id},
            )

        logger.info(f"Created {len(recommendations)} recommendations for athlete {athlete_id}")

        highest = max_priority(drafts)
        committee_priority = highest if highest in (Priority.CRITICAL, Priority.HIGH) else Priority.MEDIUM
        try:
            self.notifier.notify_new_recommendations(athlete_name, len(recommendations), committee_priority)
        except Exception as e:
            logger.error(f"Error notifying technical committee: {e}")

        return recommendations

    def generate_for_athlete(
        self,
        athlete_id: int,
        window_days: int = None,
        actor_id: Optional[int] = None,
    ) -> List[Recommendation]:
        """Analyze, evaluate the rules and persist whatever fires."""
        engine = self.analysis_engine or PerformanceAnalysisEngine(self.db)
        snapshot = engine.analyze(athlete_id, window_days)
        drafts = self.rule_engine.evaluate(snapshot)
        return self.submit_drafts(athlete_id, drafts, actor_id)

    # Queries

    def get(self, recommendation_id) -> Recommendation:
        with self.db.get_session() as session:
            recommendation = session.get(Recommendation, _as_id(recommendation_id))
            if recommendation is None:
                raise NotFoundError("Recommendation", recommendation_id)
            return recommendation

    def list_pending(
        self,
        page: int = 1,
        limit: int = None,
        priority: Optional[Priority] = None,
        athlete_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Open recommendations, most urgent first, then oldest first."""
        limit = limit or config.PENDING_PAGE_SIZE
        rank = case(
            *[(Recommendation.priority == p, p.rank) for p in Priority],
            else_=0,
        )

        with self.db.get_session() as session:
            query = session.query(Recommendation).filter(Recommendation.state.in_(OPEN_STATES))
            if priority is not None:
                query = query.filter(Recommendation.priority == priority)
            if athlete_id is not None:
                query = query.filter(Recommendation.athlete_id == athlete_id)

            total = query.count()
            items = (
                query.order_by(rank.desc(), Recommendation.created_at.asc(), Recommendation.id.asc())
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )

        return _page(items, total, page, limit)

    def list_all(
        self,
        page: int = 1,
        limit: int = None,
        state: Optional[RecommendationState] = None,
        athlete_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Every recommendation, newest first."""
        limit = limit or config.PENDING_PAGE_SIZE

        with self.db.get_session() as session:
            query = session.query(Recommendation)
            if state is not None:
                query = query.filter(Recommendation.state == state)
            if athlete_id is not None:
                query = query.filter(Recommendation.athlete_id == athlete_id)

            total = query.count()
            items = (
                query.order_by(Recommendation.created_at.desc(), Recommendation.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )

        return _page(items, total, page, limit)

    # Transitions

    def start_review(self, recommendation_id, reviewer_id: int) -> Recommendation:
        """PENDING -> IN_REVIEW."""
        now = self.clock()

        def mutate(session: Session, recommendation: Recommendation):
            recommendation.reviewed_by = reviewer_id
            recommendation.reviewed_at = now

        recommendation, previous = self._transition(
            recommendation_id, RecommendationState.IN_REVIEW, mutate
        )
        self._record_history(
            recommendation.id,
            previous,
            recommendation.state,
            reviewer_id,
            HistoryAction.IN_REVIEW,
            "Review started",
        )
        return recommendation

    def approve(self, recommendation_id, actor_id: int, comment: Optional[str] = None) -> Recommendation:
        """IN_REVIEW -> FULFILLED, approving every session the recommendation produced."""
        validate_comment("comment", comment, REJECTION_REASON_MAX_LENGTH)
        now = self.clock()
        context = {}

        def mutate(session: Session, recommendation: Recommendation):
            recommendation.applied_by = actor_id
            recommendation.applied_at = now
            recommendation.review_comment = comment
            context["approved_session_id"] = recommendation.generated_session_id
            context["recipients"] = self._plan_recipients(recommendation)
            self._approve_sessions(session, recommendation)

        recommendation, previous = self._transition(
            recommendation_id, RecommendationState.FULFILLED, mutate
        )
        approved_session_id = context["approved_session_id"]
        self._record_history(
            recommendation.id,
            previous,
            recommendation.state,
            actor_id,
            HistoryAction.APPROVED,
            comment or "Recommendation approved",
            {"approvedSessionId": str(approved_session_id) if approved_session_id else None},
        )

        self._notify_plan_approved(context["recipients"])
        return recommendation

    def reject(
        self,
        recommendation_id,
        actor_id: int,
        reason: Optional[str] = None,
        alternative_action: Optional[str] = None,
    ) -> Recommendation:
        """IN_REVIEW -> REJECTED, deleting the sessions the recommendation produced.

        The reason is kept in the analysis data under `feedback` so rejected
        recommendations can be reviewed when tuning rule thresholds.
        """
        validate_comment("reason", reason, REJECTION_REASON_MAX_LENGTH)
        validate_comment("alternativeAction", alternative_action)
        now = self.clock()
        context = {}

        def mutate(session: Session, recommendation: Recommendation):
            feedback = RejectionFeedback(
                rejection_reason=reason,
                alternative_action=alternative_action,
                rejected_at=now,
                rejected_type=recommendation.type,
                original_priority=recommendation.priority,
            )
            context["type"] = recommendation.type
            context["deleted"] = self._delete_sessions(session, recommendation)

            analysis_data = dict(recommendation.analysis_data)
            analysis_data["feedback"] = feedback.to_dict()
            recommendation.analysis_data = analysis_data
            recommendation.reviewed_by = actor_id
            recommendation.reviewed_at = now
            recommendation.review_comment = reason

        recommendation, previous = self._transition(
            recommendation_id, RecommendationState.REJECTED, mutate
        )
        self._record_history(
            recommendation.id,
            previous,
            recommendation.state,
            actor_id,
            HistoryAction.REJECTED,
            reason,
            {
                "alternativeAction": alternative_action,
                "recommendationType": context["type"].value,
                "deletedSessionCount": context["deleted"],
            },
        )
        return recommendation

    def amend(
        self,
        recommendation_id,
        actor_id: int,
        amendments: Union[Amendments, Dict[str, Any]],
        justification: str,
        extra_comment: Optional[str] = None,
    ) -> Recommendation:
        """IN_REVIEW -> AMENDED, applying the reviewer's session adjustments."""
        if not isinstance(amendments, Amendments):
            amendments = Amendments.from_dict(amendments)
        amendments.validate()
        validate_justification(justification)
        validate_comment("extraComment", extra_comment)

        now = self.clock()
        context = {}

        def mutate(session: Session, recommendation: Recommendation):
            recommendation.applied_by = actor_id
            recommendation.applied_at = now
            recommendation.amendments = amendments.to_dict()
            recommendation.review_comment = justification
            context["recipients"] = self._plan_recipients(recommendation)
            self._apply_session_adjustments(session, recommendation, amendments)

        recommendation, previous = self._transition(
            recommendation_id, RecommendationState.AMENDED, mutate
        )
        self._record_history(
            recommendation.id,
            previous,
            recommendation.state,
            actor_id,
            HistoryAction.AMENDED,
            justification,
            {"amendments": amendments.to_dict(), "extraComment": extra_comment},
        )

        self._notify_plan_approved(context["recipients"])
        return recommendation

    # Audit and feedback

    def get_history(self, recommendation_id) -> List[RecommendationHistory]:
        """History entries, newest first."""
        recommendation_id = _as_id(recommendation_id)
        with self.db.get_session() as session:
            if session.get(Recommendation, recommendation_id) is None:
                raise NotFoundError("Recommendation", recommendation_id)
            return (
                session.query(RecommendationHistory)
                .filter(RecommendationHistory.recommendation_id == recommendation_id)
                .order_by(RecommendationHistory.created_at.desc(), RecommendationHistory.id.desc())
                .all()
            )

    def get_statistics(self) -> Dict[str, Any]:
        with self.db.get_session() as session:
            state_counts = dict(
                session.query(Recommendation.state, func.count(Recommendation.id))
                .group_by(Recommendation.state)
                .all()
            )
            open_by_priority = dict(
                session.query(Recommendation.priority, func.count(Recommendation.id))
                .filter(Recommendation.state.in_(OPEN_STATES))
                .group_by(Recommendation.priority)
                .all()
            )

        pending = state_counts.get(RecommendationState.PENDING, 0)
        in_review = state_counts.get(RecommendationState.IN_REVIEW, 0)
        fulfilled = state_counts.get(RecommendationState.FULFILLED, 0)
        rejected = state_counts.get(RecommendationState.REJECTED, 0)
        amended = state_counts.get(RecommendationState.AMENDED, 0)

        accepted = fulfilled + amended
        return {
            "summary": {
                "pending": pending,
                "inReview": in_review,
                "fulfilled": fulfilled,
                "rejected": rejected,
                "amended": amended,
                "total": pending + in_review + fulfilled + rejected + amended,
            },
            "openByPriority": {p.value: open_by_priority.get(p, 0) for p in Priority},
            "approvalRate": _percent(accepted, accepted + rejected),
            "amendmentRate": _percent(amended, accepted),
        }

    def get_rejection_feedback(self, limit: int = None) -> List[Dict[str, Any]]:
        """Most recent rejections with the feedback stored at rejection time."""
        limit = limit or config.FEEDBACK_LIMIT

        with self.db.get_session() as session:
            rows = (
                session.query(Recommendation, Athlete.weight_category)
                .join(Athlete, Recommendation.athlete_id == Athlete.id)
                .filter(Recommendation.state == RecommendationState.REJECTED)
                .order_by(Recommendation.reviewed_at.desc(), Recommendation.id.desc())
                .limit(limit)
                .all()
            )

        return [
            {
                "id": str(recommendation.id),
                "type": recommendation.type.value,
                "priority": recommendation.priority.value,
                "rejectionReason": recommendation.review_comment,
                "feedback": recommendation.analysis_data.get("feedback"),
                "athleteWeightCategory": weight_category,
                "rejectedAt": recommendation.reviewed_at.isoformat() if recommendation.reviewed_at else None,
            }
            for recommendation, weight_category in rows
        ]

    # Internals

    def _transition(self, recommendation_id, target: RecommendationState, mutate):
        """Lock, validate and mutate in one unit of work.

        Returns the committed recommendation and the state it left.
        """
        recommendation_id = _as_id(recommendation_id)
        previous = None

        try:
            with self.db.get_session() as session:
                recommendation = (
                    session.query(Recommendation)
                    .filter(Recommendation.id == recommendation_id)
                    .with_for_update()
                    .one_or_none()
                )
                if recommendation is None:
                    raise NotFoundError("Recommendation", recommendation_id)

                previous = recommendation.state
                if not can_transition(previous, target):
                    raise InvalidTransitionError(
                        recommendation_id,
                        previous,
                        target,
                        _transition_message(previous, target),
                    )

                mutate(session, recommendation)
                recommendation.state = target
                session.flush()
        except StaleDataError:
            raise ConcurrentTransitionError(
                recommendation_id,
                previous,
                target,
                f"Recommendation {recommendation_id} was modified by another reviewer",
            )

        logger.info(f"Recommendation {recommendation_id}: {previous.value} -> {target.value}")
        return recommendation, previous

    def _record_history(
        self,
        recommendation_id: int,
        previous_state: Optional[RecommendationState],
        new_state: RecommendationState,
        actor_id: Optional[int],
        action: HistoryAction,
        comment: Optional[str] = None,
        extra_data: Optional[Dict[str, Any]] = None,
    ) -> RecommendationHistory:
        entry = RecommendationHistory(
            recommendation_id=recommendation_id,
            previous_state=previous_state,
            new_state=new_state,
            actor_id=actor_id,
            action=action,
            comment=comment,
            created_at=self.clock(),
        )
        entry.extra_data = extra_data
        with self.db.get_session() as session:
            session.add(entry)
        return entry

    def _approve_sessions(self, session: Session, recommendation: Recommendation):
        if recommendation.generated_session_id:
            generated = session.get(TrainingSession, recommendation.generated_session_id)
            if generated is not None:
                generated.approved = True

        affected = recommendation.affected_session_ids
        if affected:
            session.query(TrainingSession).filter(TrainingSession.id.in_(affected)).update(
                {TrainingSession.approved: True}, synchronize_session=False
            )

    def _delete_sessions(self, session: Session, recommendation: Recommendation) -> int:
        """Delete generated and batch-affected sessions; clears both references."""
        deleted = 0

        if recommendation.generated_session_id:
            generated = session.get(TrainingSession, recommendation.generated_session_id)
            # Drop the reference first so the foreign key allows the delete
            recommendation.generated_session_id = None
            session.flush()
            if generated is not None:
                session.delete(generated)
                deleted += 1

        affected = recommendation.affected_session_ids
        if affected:
            deleted += (
                session.query(TrainingSession)
                .filter(TrainingSession.id.in_(affected))
                .delete(synchronize_session=False)
            )

        recommendation.generated_session_id = None
        recommendation.affected_session_ids = []
        return deleted

    def _apply_session_adjustments(
        self, session: Session, recommendation: Recommendation, amendments: Amendments
    ):
        if not recommendation.generated_session_id or amendments.session_adjustments is None:
            return

        generated = session.get(TrainingSession, recommendation.generated_session_id)
        if generated is None:
            raise NotFoundError("TrainingSession", recommendation.generated_session_id)

        amendments.session_adjustments.apply_to(generated)
        generated.approved = True

    @staticmethod
    def _plan_recipients(recommendation: Recommendation) -> Dict[str, Any]:
        athlete = recommendation.athlete
        return {
            "athlete_user_id": athlete.user_id,
            "trainer_user_id": athlete.trainer_user_id,
            "cycle_code": recommendation.affected_cycle.code if recommendation.affected_cycle else None,
        }

    def _notify_plan_approved(self, recipients: Dict[str, Any]):
        try:
            self.notifier.notify_plan_approved(
                recipients["athlete_user_id"],
                recipients["trainer_user_id"],
                recipients["cycle_code"],
            )
        except Exception as e:
            logger.error(f"Error creating plan approval notifications: {e}")


def _transition_message(current: RecommendationState, target: RecommendationState) -> str:
    if current.is_terminal:
        return f"Recommendation is already {current.value}; no further transitions are allowed"
    if current == RecommendationState.PENDING and target != RecommendationState.IN_REVIEW:
        return f"Cannot move a PENDING recommendation to {target.value}; start the review first"
    return f"Cannot move a recommendation from {current.value} to {target.value}"


def _as_id(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise NotFoundError("Recommendation", value)


def _percent(numerator: int, denominator: int) -> int:
    """Whole percentage, halves rounded up."""
    if denominator == 0:
        return 0
    return int(math.floor(numerator * 100 / denominator + 0.5))


def _page(items: List[Recommendation], total: int, page: int, limit: int) -> Dict[str, Any]:
    return {
        "data": items,
        "meta": {
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": math.ceil(total / limit) if limit else 0,
        },
    }
