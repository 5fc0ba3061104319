"""
Auction Analytics

Read-only metrics derived from the audit log, offers and view records.
Nothing here writes; durations come from recorded timestamps, never
from the wall clock.
"""
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models.db_models import (
    ApplicationDB, ApplicationStatus, OfferDB, OfferStatus, ViewRecordDB,
)
from .audit_log import AuditLog
from .serialization import load_application
from .view_tracker import ViewTracker


def to_minutes(delta: Optional[timedelta]) -> Optional[float]:
    if delta is None:
        return None
    return round(delta.total_seconds() / 60, 2)


class AuctionAnalytics:
    """Processing-time and conversion metrics."""

    def __init__(self, db: Session, audit_log: Optional[AuditLog] = None, views: Optional[ViewTracker] = None):
        self.db = db
        self.audit_log = audit_log or AuditLog(db)
        self.views = views or ViewTracker(db)

    # =========================================================================
    # PER APPLICATION
    # =========================================================================

    def auction_window_duration(self, application_id: str) -> Optional[timedelta]:
        application = load_application(self.db, application_id)
        if application.submitted_at is None or application.auction_end_time is None:
            return None
        return application.auction_end_time - application.submitted_at

    def time_to_first_offer(self, application_id: str) -> Optional[timedelta]:
        application = load_application(self.db, application_id)
        first = self.db.query(func.min(OfferDB.submitted_at)).filter(
            OfferDB.application_id == application_id,
        ).scalar()
        if first is None or application.submitted_at is None:
            return None
        return first - application.submitted_at

    def time_to_completion(self, application_id: str) -> Optional[timedelta]:
        """Submission to the COMPLETED transition, or None if not completed."""
        application = load_application(self.db, application_id)
        completed = self.audit_log.last_transition_to(application_id, ApplicationStatus.COMPLETED)
        if completed is None or application.submitted_at is None:
            return None
        return completed.timestamp - application.submitted_at

    def processing_times(self, application_id: str) -> List[Dict[str, Any]]:
        """
        Time spent in each status, from consecutive status transitions.

        The current status has no end and is reported with ``minutes=None``.
        """
        load_application(self.db, application_id)
        transitions = self.audit_log.transitions(application_id).all()

        steps = []
        for current, following in zip(transitions, transitions[1:] + [None]):
            steps.append({
                "status": current.to_status.value,
                "entered_at": current.timestamp,
                "exited_at": following.timestamp if following else None,
                "minutes": to_minutes(following.timestamp - current.timestamp) if following else None,
                "actor": current.actor,
                "reason": current.reason,
            })
        return steps

    # =========================================================================
    # PER BIDDER
    # =========================================================================

    def bidder_summary(self, bidder_id: str) -> Dict[str, Any]:
        """View, offer and win counts for one bank, with time from view to offer."""
        views = self.db.query(ViewRecordDB).filter(ViewRecordDB.viewer_id == bidder_id).all()
        first_views = {v.application_id: v.first_viewed_at for v in views}

        offers = self.db.query(OfferDB).filter(OfferDB.bidder_id == bidder_id).all()
        accepted = [o for o in offers if o.status == OfferStatus.ACCEPTED]

        view_to_offer = [
            to_minutes(o.submitted_at - first_views[o.application_id])
            for o in offers
            if o.application_id in first_views
        ]

        return {
            "bidder_id": bidder_id,
            "applications_viewed": len(views),
            "offers_submitted": len(offers),
            "offers_accepted": len(accepted),
            "conversion_rate": self.views.conversion_rate(bidder_id),
            "win_rate": round(len(accepted) / len(offers), 4) if offers else 0.0,
            "avg_minutes_view_to_offer": (
                round(sum(view_to_offer) / len(view_to_offer), 2) if view_to_offer else None
            ),
        }

    # =========================================================================
    # PLATFORM
    # =========================================================================

    def status_distribution(self) -> Dict[str, int]:
        counts = dict(
            self.db.query(ApplicationDB.status, func.count(ApplicationDB.id))
            .group_by(ApplicationDB.status)
            .all()
        )
        return {status.value: counts.get(status, 0) for status in ApplicationStatus}
