"""
Selection Arbiter

AUTHORITY: the owning business (or an admin override).
The only component that moves an offer out of SUBMITTED.

Selecting a winner is one transaction:
- the chosen offer becomes ACCEPTED
- every other SUBMITTED offer on the application becomes REJECTED
- the application moves through APPROVED_LEADS to COMPLETED

Readers never see an accepted offer next to still-pending siblings.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ...models.actor import Actor, SYSTEM_ACTOR
from ...models.db_models import (
    ApplicationDB, ApplicationStatus, AuditEventType, OfferDB, OfferStatus,
)
from .audit_log import AuditLog
from .authorization import require_owner_or_admin
from .clock import utcnow
from .errors import AlreadyDecided, NotEligible, NotFoundError
from .lifecycle import ApplicationLifecycle
from .serialization import ApplicationLocks, application_scope

logger = logging.getLogger(__name__)


class SelectionArbiter:
    """Winner selection, offer declines and offer expiry."""

    def __init__(
        self,
        db: Session,
        locks: ApplicationLocks,
        lifecycle: ApplicationLifecycle,
        audit_log: Optional[AuditLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.locks = locks
        self.lifecycle = lifecycle
        self.clock = clock or utcnow
        self.audit_log = audit_log or AuditLog(db, clock=self.clock)

    def _load_offer(self, application: ApplicationDB, offer_id: str) -> OfferDB:
        offer = self.db.query(OfferDB).filter(
            OfferDB.id == offer_id,
            OfferDB.application_id == application.id,
        ).one_or_none()
        if offer is None:
            raise NotFoundError(
                f"Offer {offer_id} not found on application {application.id}",
                {"application_id": application.id, "offer_id": offer_id},
            )
        return offer

    # =========================================================================
    # SELECTION
    # =========================================================================

    def select(self, application_id: str, offer_id: str, actor: Actor) -> ApplicationDB:
        """
        Pick the winning offer.

        At most one offer per application is ever accepted: a second
        selection fails with AlreadyDecided.
        """
        with application_scope(self.db, self.locks, application_id) as application:
            require_owner_or_admin(actor, application)

            if application.status == ApplicationStatus.COMPLETED:
                raise AlreadyDecided(
                    "A winning offer was already selected",
                    {"application_id": application_id, "selected_offer_id": application.selected_offer_id},
                )
            if application.status not in (ApplicationStatus.LIVE_AUCTION, ApplicationStatus.APPROVED_LEADS):
                raise NotEligible(
                    f"Application cannot select an offer (status is {application.status.value})",
                    {"application_id": application_id},
                )
            self.lifecycle.ensure_open(application)

            offer = self._load_offer(application, offer_id)
            now = self.clock()
            if offer.status != OfferStatus.SUBMITTED:
                raise NotEligible(
                    f"Offer is {offer.status.value}, only submitted offers can be selected",
                    {"offer_id": offer_id},
                )
            if offer.expires_at <= now:
                raise NotEligible("Offer has expired", {"offer_id": offer_id})

            offer.status = OfferStatus.ACCEPTED
            offer.decided_at = now

            siblings = self.db.query(OfferDB).filter(
                OfferDB.application_id == application_id,
                OfferDB.id != offer_id,
                OfferDB.status == OfferStatus.SUBMITTED,
            ).all()
            for sibling in siblings:
                sibling.status = OfferStatus.REJECTED
                sibling.decided_at = now

            self.audit_log.append(
                application_id=application_id,
                event_type=AuditEventType.OFFER_ACCEPTED,
                from_status=application.status,
                to_status=application.status,
                actor=actor,
                offer_id=offer_id,
                details={"bidder_id": offer.bidder_id, "rejected_offers": [s.id for s in siblings]},
            )

            if application.status == ApplicationStatus.LIVE_AUCTION:
                self.lifecycle.apply_transition(
                    application, ApplicationStatus.APPROVED_LEADS, actor, "offer selected",
                )
            self.lifecycle.apply_transition(
                application, ApplicationStatus.COMPLETED, actor, "winning offer recorded",
                selected_offer_id=offer_id,
            )

        logger.info(
            f"Application {application_id} completed with offer {offer_id}, "
            f"{len(siblings)} other offers rejected"
        )
        return application

    # =========================================================================
    # DECLINE
    # =========================================================================

    def decline(self, application_id: str, offer_id: str, actor: Actor) -> OfferDB:
        """
        Turn down one offer without touching the application's status.

        Declining an already rejected offer returns it unchanged.
        """
        with application_scope(self.db, self.locks, application_id) as application:
            require_owner_or_admin(actor, application)
            offer = self._load_offer(application, offer_id)

            if offer.status == OfferStatus.REJECTED:
                return offer
            if offer.status != OfferStatus.SUBMITTED:
                raise NotEligible(
                    f"Offer is {offer.status.value} and cannot be declined",
                    {"offer_id": offer_id},
                )

            offer.status = OfferStatus.REJECTED
            offer.decided_at = self.clock()

            self.audit_log.append(
                application_id=application_id,
                event_type=AuditEventType.OFFER_DECLINED,
                from_status=application.status,
                to_status=application.status,
                actor=actor,
                offer_id=offer_id,
                details={"bidder_id": offer.bidder_id},
            )

        logger.info(f"Offer {offer_id} on application {application_id} declined")
        return offer

    # =========================================================================
    # OFFER EXPIRY (SYSTEM)
    # =========================================================================

    def expire_stale_offers(self, now: Optional[datetime] = None) -> int:
        """
        Mark SUBMITTED offers past their validity as EXPIRED.

        Offers are expired per application, each in its own scope.
        """
        now = now or self.clock()
        rows = self.db.query(OfferDB.application_id).filter(
            OfferDB.status == OfferStatus.SUBMITTED,
            OfferDB.expires_at <= now,
        ).distinct().all()

        expired = 0
        for row in rows:
            with application_scope(self.db, self.locks, row.application_id) as application:
                stale = self.db.query(OfferDB).filter(
                    OfferDB.application_id == application.id,
                    OfferDB.status == OfferStatus.SUBMITTED,
                    OfferDB.expires_at <= now,
                ).all()
                for offer in stale:
                    offer.status = OfferStatus.EXPIRED
                    offer.decided_at = now
                    self.audit_log.append(
                        application_id=application.id,
                        event_type=AuditEventType.OFFER_EXPIRED,
                        from_status=application.status,
                        to_status=application.status,
                        actor=SYSTEM_ACTOR,
                        offer_id=offer.id,
                        details={"bidder_id": offer.bidder_id, "expires_at": offer.expires_at.isoformat()},
                    )
                expired += len(stale)

        if expired:
            logger.info(f"Expired {expired} stale offers")
        return expired
