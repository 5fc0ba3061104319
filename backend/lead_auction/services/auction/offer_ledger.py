"""
Offer Ledger

Collects bank offers on live applications.

Submission rules, checked in order inside the application's scope:
1. The auction must be live and its window open (lapsed windows are expired first)
2. The platform commission must be accepted
3. One offer per bidder per application
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Union
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import OFFER_VALIDITY_DAYS
from ...models.actor import Actor
from ...models.db_models import (
    ActorRole, ApplicationStatus, AuditEventType, OfferDB, OfferStatus,
)
from ...models.schemas import FileReference, OfferTerms
from .audit_log import AuditLog, LazyResult
from .authorization import require_self_or_admin
from .clock import utcnow
from .errors import (
    AuctionClosed, DuplicateOffer, FeeNotAccepted, NotFoundError, ValidationError,
)
from .lifecycle import ApplicationLifecycle
from .rejection_registry import RejectionRegistry
from .serialization import ApplicationLocks, application_scope, load_application

logger = logging.getLogger(__name__)


def validate_terms(terms: Union[OfferTerms, Dict[str, Any]]) -> OfferTerms:
    if isinstance(terms, OfferTerms):
        return terms
    try:
        return OfferTerms.model_validate(terms)
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic("Malformed offer terms", exc) from exc


class OfferLedger:
    """Offer creation and offer reads."""

    def __init__(
        self,
        db: Session,
        locks: ApplicationLocks,
        lifecycle: ApplicationLifecycle,
        rejections: Optional[RejectionRegistry] = None,
        audit_log: Optional[AuditLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
        offer_validity: Optional[timedelta] = None,
    ):
        self.db = db
        self.locks = locks
        self.lifecycle = lifecycle
        self.clock = clock or utcnow
        self.audit_log = audit_log or AuditLog(db, clock=self.clock)
        self.rejections = rejections or RejectionRegistry(db, locks, audit_log=self.audit_log, clock=self.clock)
        self.offer_validity = offer_validity or timedelta(days=OFFER_VALIDITY_DAYS)

    def submit(
        self,
        application_id: str,
        bidder_id: str,
        terms: Union[OfferTerms, Dict[str, Any]],
        fee_accepted: bool,
        actor: Actor,
        file_ref: Optional[Union[FileReference, Dict[str, Any]]] = None,
    ) -> OfferDB:
        """Place a bidder's single offer on a live application."""
        require_self_or_admin(actor, ActorRole.BANK, bidder_id)
        terms = validate_terms(terms)
        if file_ref is not None and not isinstance(file_ref, FileReference):
            try:
                file_ref = FileReference.model_validate(file_ref)
            except PydanticValidationError as exc:
                raise ValidationError.from_pydantic("Malformed file reference", exc) from exc

        with application_scope(self.db, self.locks, application_id) as application:
            if application.status != ApplicationStatus.LIVE_AUCTION:
                raise AuctionClosed(
                    f"Application is not accepting offers (status is {application.status.value})",
                    {"application_id": application_id},
                )
            self.lifecycle.ensure_open(application)

            if fee_accepted is not True:
                raise FeeNotAccepted(
                    "The platform commission must be accepted before submitting an offer",
                    {"application_id": application_id},
                )

            if self._find(application_id, bidder_id) is not None:
                raise DuplicateOffer(
                    "This bidder already has an offer on the application",
                    {"application_id": application_id, "bidder_id": bidder_id},
                )

            now = self.clock()
            offer = OfferDB(
                id=str(uuid4()),
                application_id=application_id,
                bidder_id=bidder_id,
                terms=terms.model_dump(exclude_none=True),
                status=OfferStatus.SUBMITTED,
                fee_accepted=True,
                file_name=file_ref.name if file_ref else None,
                file_mimetype=file_ref.mimetype if file_ref else None,
                file_handle=file_ref.content_handle if file_ref else None,
                submitted_at=now,
                expires_at=now + self.offer_validity,
            )
            self.db.add(offer)
            try:
                self.db.flush()
            except IntegrityError as exc:
                raise DuplicateOffer(
                    "This bidder already has an offer on the application",
                    {"application_id": application_id, "bidder_id": bidder_id},
                ) from exc

            self.audit_log.append(
                application_id=application_id,
                event_type=AuditEventType.OFFER_SUBMITTED,
                from_status=application.status,
                to_status=application.status,
                actor=actor,
                offer_id=offer.id,
                details={"bidder_id": bidder_id, "approved_amount": terms.approved_amount},
            )
            self.rejections.clear_on_offer(application_id, bidder_id)

        logger.info(f"Offer {offer.id} by bidder {bidder_id} on application {application_id}")
        return offer

    def _find(self, application_id: str, bidder_id: str) -> Optional[OfferDB]:
        return self.db.query(OfferDB).filter(
            OfferDB.application_id == application_id,
            OfferDB.bidder_id == bidder_id,
        ).first()

    def get(self, offer_id: str) -> OfferDB:
        offer = self.db.query(OfferDB).filter(OfferDB.id == offer_id).one_or_none()
        if offer is None:
            raise NotFoundError(f"Offer {offer_id} not found", {"offer_id": offer_id})
        return offer

    def list(self, application_id: str) -> LazyResult:
        """Offers on an application, oldest first. Re-queried on every iteration."""
        load_application(self.db, application_id)
        return LazyResult(
            lambda: self.db.query(OfferDB)
            .filter(OfferDB.application_id == application_id)
            .order_by(OfferDB.submitted_at, OfferDB.id)
        )

    def for_bidder(self, bidder_id: str) -> LazyResult:
        return LazyResult(
            lambda: self.db.query(OfferDB)
            .filter(OfferDB.bidder_id == bidder_id)
            .order_by(OfferDB.submitted_at, OfferDB.id)
        )

    def count(self, application_id: str) -> int:
        return self.list(application_id).count()
