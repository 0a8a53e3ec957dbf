"""In-app notifications raised by the recommendation workflow."""

import logging
from typing import Optional

from ..db import get_db
from ..db.database import Database
from ..db.models import Notification, Priority, User, UserRole

logger = logging.getLogger(__name__)

PLAN_APPROVED = "PLAN_APPROVED"
NEW_RECOMMENDATIONS = "NEW_RECOMMENDATIONS"


class NotificationDispatcher:
    """Writes notifications in their own unit of work.

    Callers treat every method as best effort: a failure here must never
    undo a recommendation transition that has already committed.
    """

    def __init__(self, db: Database = None):
        self.db = db or get_db()

    def notify_plan_approved(
        self,
        athlete_user_id: int,
        trainer_user_id: Optional[int],
        cycle_code: Optional[str],
    ) -> int:
        """Tell the athlete (and their trainer, if any) that a plan is ready."""
        cycle_code = cycle_code or "unknown"

        notifications = [
            Notification(
                recipient_id=athlete_user_id,
                kind=PLAN_APPROVED,
                title="New plan available",
                message=f"Your microcycle {cycle_code} has been approved and is ready to run.",
                priority=Priority.MEDIUM,
            )
        ]

        if trainer_user_id:
            notifications.append(
                Notification(
                    recipient_id=trainer_user_id,
                    kind=PLAN_APPROVED,
                    title="Plan approved",
                    message=f"Microcycle {cycle_code} has been approved for your athlete.",
                    priority=Priority.LOW,
                )
            )

        with self.db.get_session() as session:
            session.add_all(notifications)

        logger.info(f"Created {len(notifications)} plan approval notifications for cycle {cycle_code}")
        return len(notifications)

    def notify_new_recommendations(self, athlete_name: str, count: int, priority: Priority) -> int:
        """One notification per active technical committee member."""
        with self.db.get_session() as session:
            members = (
                session.query(User.id)
                .filter(User.role == UserRole.TECHNICAL_COMMITTEE, User.active.is_(True))
                .all()
            )

            plural = "s" if count != 1 else ""
            for (member_id,) in members:
                session.add(
                    Notification(
                        recipient_id=member_id,
                        kind=NEW_RECOMMENDATIONS,
                        title=f"{count} new recommendation{plural} for {athlete_name}",
                        message=(
                            f"The performance analysis generated {count} recommendation{plural} "
                            f"for {athlete_name} awaiting review."
                        ),
                        priority=priority,
                    )
                )

        return len(members)
