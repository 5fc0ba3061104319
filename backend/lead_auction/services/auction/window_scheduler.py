"""
Auction Window Scheduler

AUTHORITY: SYSTEM
Computes and evaluates auction deadlines.

Key behaviors:
- Deadline = submitted_at + window duration (48 hours by default)
- A window without a deadline is treated as closed
- Expiry is evaluated lazily by every operation that touches a lead;
  the periodic sweep only keeps the status column fresh for leads
  nobody touches
- Admin deadline extensions are the only way auction_end_time departs
  from the computed deadline, and each one is audited
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import (
    AUCTION_WINDOW_HOURS,
    MIN_DEADLINE_EXTENSION_HOURS,
    MAX_DEADLINE_EXTENSION_HOURS,
)
from ...models.actor import Actor
from ...models.db_models import ApplicationDB, ApplicationStatus, AuditEventType
from .audit_log import AuditLog
from .clock import utcnow
from .errors import AuctionEngineError, AuthorizationError, ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# WINDOW SCHEDULER
# =============================================================================

class AuctionWindowScheduler:
    """
    Deadline arithmetic and window queries.

    Core Responsibilities:
    - Calculate the auction deadline at submission
    - Decide whether a window is open
    - Apply audited admin extensions
    - List leads about to close, or already past their deadline
    """

    def __init__(
        self,
        db: Session,
        audit_log: Optional[AuditLog] = None,
        window_duration: Optional[timedelta] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.clock = clock or utcnow
        self.audit_log = audit_log or AuditLog(db, clock=self.clock)
        self.window_duration = window_duration or timedelta(hours=AUCTION_WINDOW_HOURS)

    def compute_deadline(self, submitted_at: datetime) -> datetime:
        return submitted_at + self.window_duration

    def is_open(self, application: ApplicationDB, now: Optional[datetime] = None) -> bool:
        """Fails closed when the auction has no deadline."""
        if application.auction_end_time is None:
            return False
        return (now or self.clock()) < application.auction_end_time

    def has_elapsed(self, application: ApplicationDB, now: Optional[datetime] = None) -> bool:
        """A live auction whose window is over but whose status has not caught up."""
        return (
            application.status == ApplicationStatus.LIVE_AUCTION
            and not self.is_open(application, now)
        )

    def time_remaining(self, application: ApplicationDB, now: Optional[datetime] = None) -> timedelta:
        if application.auction_end_time is None:
            return timedelta(0)
        remaining = application.auction_end_time - (now or self.clock())
        return max(remaining, timedelta(0))

    def apply_extension(
        self,
        application: ApplicationDB,
        hours: int,
        reason: str,
        actor: Actor,
    ) -> datetime:
        """
        Push the auction deadline back.

        Caller holds the application's scope and has already confirmed the
        window is still open. Creates an audit entry for the change.
        """
        if not actor.is_admin:
            raise AuthorizationError("Only admins can extend an auction deadline")
        if not MIN_DEADLINE_EXTENSION_HOURS <= hours <= MAX_DEADLINE_EXTENSION_HOURS:
            raise ValidationError(
                f"Extension hours must be between {MIN_DEADLINE_EXTENSION_HOURS} and {MAX_DEADLINE_EXTENSION_HOURS}",
                {"extension_hours": hours},
            )
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to extend a deadline")

        old_deadline = application.auction_end_time
        new_deadline = old_deadline + timedelta(hours=hours)

        application.auction_end_time = new_deadline
        application.updated_at = self.clock()

        self.audit_log.append(
            application_id=application.id,
            event_type=AuditEventType.DEADLINE_EXTENDED,
            from_status=application.status,
            to_status=application.status,
            actor=actor,
            reason=reason,
            details={
                "old_deadline": old_deadline.isoformat(),
                "new_deadline": new_deadline.isoformat(),
                "extension_hours": hours,
            },
        )
        logger.info(f"Application {application.id} deadline extended {hours}h to {new_deadline.isoformat()}")
        return new_deadline

    def closing_soon(self, hours_ahead: int = 6) -> List[ApplicationDB]:
        """Live auctions whose deadline falls in the next N hours, soonest first."""
        now = self.clock()
        horizon = now + timedelta(hours=hours_ahead)

        return self.db.query(ApplicationDB).filter(
            ApplicationDB.status == ApplicationStatus.LIVE_AUCTION,
            ApplicationDB.auction_end_time > now,
            ApplicationDB.auction_end_time <= horizon,
        ).order_by(ApplicationDB.auction_end_time).all()

    def get_elapsed_live(self, limit: Optional[int] = None) -> List[str]:
        """Ids of live auctions already past their deadline (or missing one)."""
        now = self.clock()

        query = self.db.query(ApplicationDB.id).filter(
            ApplicationDB.status == ApplicationStatus.LIVE_AUCTION,
            (ApplicationDB.auction_end_time <= now) | (ApplicationDB.auction_end_time.is_(None)),
        ).order_by(ApplicationDB.auction_end_time)

        if limit:
            query = query.limit(limit)
        return [row.id for row in query.all()]


# =============================================================================
# EXPIRY SWEEP (SYSTEM-AUTHORITATIVE)
# =============================================================================
#
# Runs via the internal scheduler endpoint. Not needed for correctness:
# every touching operation expires a lapsed auction on its own. The sweep
# keeps the status column fresh for leads nobody touches.
#
# =============================================================================

class ExpirySweep:
    """
    Periodic expiry of lapsed auctions and stale offers.

    Each application is expired in its own scope and transaction, so one
    failure never holds up the rest of the batch.
    """

    def __init__(self, scheduler: AuctionWindowScheduler, lifecycle, arbiter):
        self.scheduler = scheduler
        self.lifecycle = lifecycle
        self.arbiter = arbiter

    def run(self, limit: Optional[int] = None) -> Dict[str, Any]:
        expired = []
        skipped = []
        errors = []

        for application_id in self.scheduler.get_elapsed_live(limit=limit):
            try:
                if self.lifecycle.expire(application_id):
                    expired.append(application_id)
                else:
                    skipped.append(application_id)
            except (AuctionEngineError, SQLAlchemyError) as e:
                logger.error(f"Expiry sweep failed for application {application_id}: {e}")
                errors.append({
                    "application_id": application_id,
                    "error": str(e),
                })

        offers_expired = self.arbiter.expire_stale_offers()

        logger.info(
            f"Expiry sweep: {len(expired)} auctions expired, {len(skipped)} skipped, "
            f"{offers_expired} offers expired, {len(errors)} errors"
        )

        return {
            "run_date": self.scheduler.clock().isoformat(),
            "auctions_expired": len(expired),
            "auctions_skipped": len(skipped),
            "offers_expired": offers_expired,
            "errors": len(errors),
            "details": {
                "expired": expired,
                "skipped": skipped,
                "errors": errors,
            },
        }
