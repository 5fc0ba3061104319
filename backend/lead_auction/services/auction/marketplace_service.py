"""
Marketplace Service

The operation surface of the auction engine. Wires the components around
one session and one lock registry, converts ORM rows into read views
before returning, and retries transient storage failures.

Every caller-facing operation takes an explicit Actor; nothing is read
from ambient request state.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from ...config import TRANSIENT_RETRY_ATTEMPTS, TRANSIENT_RETRY_BACKOFF_MS
from ...models.actor import Actor
from ...models.db_models import (
    ApplicationDB, ApplicationStatus, ActorRole, AuditEventType,
)
from ...models.projections import (
    ApplicationProjection, ApplicationView, AuditEntryView, OfferView, RejectionView,
)
from ...models.schemas import ApplicationSubmission, FileReference, OfferTerms
from .analytics import AuctionAnalytics, to_minutes
from .audit_log import AuditLog
from .authorization import require_owner_or_admin, require_role, require_self_or_admin
from .clock import utcnow
from .errors import AuthorizationError
from .lifecycle import ApplicationLifecycle
from .offer_ledger import OfferLedger
from .rejection_registry import RejectionRegistry
from .resilience import with_transient_retry
from .selection_arbiter import SelectionArbiter
from .serialization import ApplicationLocks, load_application, snapshot_read
from .view_tracker import ViewTracker
from .window_scheduler import AuctionWindowScheduler, ExpirySweep

logger = logging.getLogger(__name__)


class MarketplaceService:
    """
    Lead auction operations for businesses, banks, admins and the scheduler.

    One instance per session (per request); the lock registry is shared
    across all instances in the process.
    """

    def __init__(
        self,
        db: Session,
        locks: ApplicationLocks,
        window_duration: Optional[timedelta] = None,
        offer_validity: Optional[timedelta] = None,
        clock: Optional[Callable[[], datetime]] = None,
        retry_attempts: int = TRANSIENT_RETRY_ATTEMPTS,
        retry_backoff_ms: int = TRANSIENT_RETRY_BACKOFF_MS,
    ):
        self.db = db
        self.locks = locks
        self.clock = clock or utcnow
        self.retry_attempts = retry_attempts
        self.retry_backoff_ms = retry_backoff_ms

        self.audit_log = AuditLog(db, clock=self.clock)
        self.scheduler = AuctionWindowScheduler(
            db, audit_log=self.audit_log, window_duration=window_duration, clock=self.clock,
        )
        self.lifecycle = ApplicationLifecycle(
            db, locks, scheduler=self.scheduler, audit_log=self.audit_log, clock=self.clock,
        )
        self.rejections = RejectionRegistry(db, locks, audit_log=self.audit_log, clock=self.clock)
        self.offers = OfferLedger(
            db, locks, self.lifecycle,
            rejections=self.rejections, audit_log=self.audit_log,
            clock=self.clock, offer_validity=offer_validity,
        )
        self.arbiter = SelectionArbiter(db, locks, self.lifecycle, audit_log=self.audit_log, clock=self.clock)
        self.views = ViewTracker(db, clock=self.clock)
        self.analytics = AuctionAnalytics(db, audit_log=self.audit_log, views=self.views)
        self.sweep = ExpirySweep(self.scheduler, self.lifecycle, self.arbiter)

    # =========================================================================
    # BUSINESS OPERATIONS
    # =========================================================================

    @with_transient_retry
    def submit_application(
        self,
        payload: Union[ApplicationSubmission, Dict[str, Any]],
        actor: Actor,
    ) -> ApplicationView:
        application = self.lifecycle.submit(payload, actor)
        return ApplicationView.from_row(application)

    @with_transient_retry
    def select_offer(self, application_id: str, offer_id: str, actor: Actor) -> ApplicationView:
        application = self.arbiter.select(application_id, offer_id, actor)
        return ApplicationView.from_row(application)

    @with_transient_retry
    def decline_offer(self, application_id: str, offer_id: str, actor: Actor) -> OfferView:
        offer = self.arbiter.decline(application_id, offer_id, actor)
        return OfferView.from_row(offer)

    @with_transient_retry
    def transition(
        self,
        application_id: str,
        target_status: Union[str, ApplicationStatus],
        actor: Actor,
        reason: Optional[str] = None,
    ) -> ApplicationView:
        application = self.lifecycle.transition(application_id, target_status, actor, reason)
        return ApplicationView.from_row(application)

    # =========================================================================
    # BANK OPERATIONS
    # =========================================================================

    @with_transient_retry
    def submit_offer(
        self,
        application_id: str,
        bidder_id: str,
        terms: Union[OfferTerms, Dict[str, Any]],
        fee_accepted: bool,
        actor: Actor,
        file_ref: Optional[Union[FileReference, Dict[str, Any]]] = None,
    ) -> OfferView:
        offer = self.offers.submit(application_id, bidder_id, terms, fee_accepted, actor, file_ref=file_ref)
        return OfferView.from_row(offer)

    @with_transient_retry
    def reject_lead(
        self,
        application_id: str,
        viewer_id: str,
        reason: Optional[str],
        actor: Actor,
    ) -> RejectionView:
        record = self.rejections.reject(application_id, viewer_id, actor, reason=reason)
        return RejectionView.from_row(record)

    @with_transient_retry
    def record_view(self, application_id: str, viewer_id: str, actor: Actor) -> Dict[str, bool]:
        require_self_or_admin(actor, ActorRole.BANK, viewer_id)
        return {"first_view": self.views.record_view(application_id, viewer_id)}

    @with_transient_retry
    def bidder_offers(self, bidder_id: str, actor: Actor) -> List[OfferView]:
        require_self_or_admin(actor, ActorRole.BANK, bidder_id)
        return [OfferView.from_row(offer) for offer in self.offers.for_bidder(bidder_id)]

    # =========================================================================
    # READS
    # =========================================================================

    @with_transient_retry
    def get_application(self, application_id: str, actor: Actor) -> ApplicationProjection:
        """
        Application with its offers, audit history and rejections.

        Assembled from one consistent snapshot. A bank sees only its own
        offer and rejection, and only the status history. A lapsed live
        auction is expired before it is returned.
        """
        projection = self._read_projection(application_id, actor)
        if projection.application.status == ApplicationStatus.LIVE_AUCTION and not projection.is_open:
            self.lifecycle.expire(application_id)
            projection = self._read_projection(application_id, actor)
        return projection

    def _read_projection(self, application_id: str, actor: Actor) -> ApplicationProjection:
        with snapshot_read(self.db, self.locks, application_id) as application:
            bidder_only = self._authorize_read(application, actor)

            offers = application.offers
            rejections = application.rejections
            entries = application.audit_entries
            if bidder_only:
                offers = [o for o in offers if o.bidder_id == actor.actor_id]
                rejections = [r for r in rejections if r.viewer_id == actor.actor_id]
                entries = [e for e in entries if e.event_type == AuditEventType.STATUS_TRANSITION]

            return ApplicationProjection(
                application=ApplicationView.from_row(application),
                offers=[OfferView.from_row(o) for o in offers],
                audit_entries=[AuditEntryView.from_row(e) for e in entries],
                rejections=[RejectionView.from_row(r) for r in rejections],
                is_open=self.scheduler.is_open(application),
                distinct_viewers=self.views.count_distinct_viewers(application_id),
            )

    def _authorize_read(self, application: ApplicationDB, actor: Actor) -> bool:
        """Returns True when the actor gets the bidder's restricted view."""
        if actor.is_admin or actor.is_system:
            return False
        if actor.role == ActorRole.BANK:
            return True
        if actor.actor_id == application.owner_business_id:
            return False
        raise AuthorizationError(
            "Only the owning business, banks or admins can view this application",
            {"application_id": application.id},
        )

    # =========================================================================
    # ADMIN / SCHEDULER
    # =========================================================================

    @with_transient_retry
    def extend_deadline(self, application_id: str, hours: int, reason: str, actor: Actor) -> ApplicationView:
        application = self.lifecycle.extend_deadline(application_id, hours, reason, actor)
        return ApplicationView.from_row(application)

    @with_transient_retry
    def run_expiry_sweep(self, actor: Actor, limit: Optional[int] = None) -> Dict[str, Any]:
        require_role(actor, ActorRole.SYSTEM, ActorRole.ADMIN)
        logger.info(f"Expiry sweep requested by {actor.role.value}:{actor.actor_id}")
        return self.sweep.run(limit=limit)

    @with_transient_retry
    def closing_soon(self, actor: Actor, hours_ahead: int = 6) -> List[ApplicationView]:
        require_role(actor, ActorRole.SYSTEM, ActorRole.ADMIN, ActorRole.BANK)
        return [ApplicationView.from_row(app) for app in self.scheduler.closing_soon(hours_ahead)]

    # =========================================================================
    # ANALYTICS
    # =========================================================================

    @with_transient_retry
    def application_metrics(self, application_id: str, actor: Actor) -> Dict[str, Any]:
        require_owner_or_admin(actor, load_application(self.db, application_id))

        return {
            "application_id": application_id,
            "auction_window_minutes": to_minutes(self.analytics.auction_window_duration(application_id)),
            "minutes_to_first_offer": to_minutes(self.analytics.time_to_first_offer(application_id)),
            "minutes_to_completion": to_minutes(self.analytics.time_to_completion(application_id)),
            "deadline_extended": self.audit_log.has_deadline_override(application_id),
            "offers_count": self.offers.count(application_id),
            "distinct_viewers": self.views.count_distinct_viewers(application_id),
            "processing_times": self.analytics.processing_times(application_id),
        }

    @with_transient_retry
    def bidder_summary(self, bidder_id: str, actor: Actor) -> Dict[str, Any]:
        require_self_or_admin(actor, ActorRole.BANK, bidder_id)
        return self.analytics.bidder_summary(bidder_id)

    @with_transient_retry
    def status_distribution(self, actor: Actor) -> Dict[str, int]:
        require_role(actor, ActorRole.ADMIN)
        return self.analytics.status_distribution()
