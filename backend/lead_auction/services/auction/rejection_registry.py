"""
Rejection Registry

Records a bidder declining a lead. A rejection never changes the
application's status: the lead stays live for everyone else. When the
same bidder later submits an offer, their rejection is cleared (kept,
marked inactive) rather than deleted.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.actor import Actor
from ...models.db_models import (
    ActorRole, ApplicationDB, AuditEventType, RejectionRecordDB,
)
from .audit_log import AuditLog
from .authorization import require_self_or_admin
from .clock import utcnow
from .serialization import ApplicationLocks, application_scope, load_application

logger = logging.getLogger(__name__)


class RejectionRegistry:
    """One rejection record per (application, bidder) pair."""

    def __init__(
        self,
        db: Session,
        locks: ApplicationLocks,
        audit_log: Optional[AuditLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.locks = locks
        self.clock = clock or utcnow
        self.audit_log = audit_log or AuditLog(db, clock=self.clock)

    def _find(self, application_id: str, viewer_id: str) -> Optional[RejectionRecordDB]:
        return self.db.query(RejectionRecordDB).filter(
            RejectionRecordDB.application_id == application_id,
            RejectionRecordDB.viewer_id == viewer_id,
        ).first()

    def reject(
        self,
        application_id: str,
        viewer_id: str,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> RejectionRecordDB:
        """
        Record that a bidder declined this lead.

        Idempotent per pair: a second call updates the reason. A rejection
        cleared by an earlier offer is reactivated.
        """
        require_self_or_admin(actor, ActorRole.BANK, viewer_id)

        with application_scope(self.db, self.locks, application_id) as application:
            now = self.clock()
            record = self._find(application_id, viewer_id)

            if record is None:
                record = RejectionRecordDB(
                    id=str(uuid4()),
                    application_id=application_id,
                    viewer_id=viewer_id,
                    reason=reason,
                    active=True,
                    created_at=now,
                )
                self.db.add(record)
                self._audit(application, actor, viewer_id, reason)
                logger.info(f"Bidder {viewer_id} rejected application {application_id}")
            elif not record.active:
                record.active = True
                record.cleared_at = None
                record.reason = reason
                record.updated_at = now
                self._audit(application, actor, viewer_id, reason)
                logger.info(f"Bidder {viewer_id} re-rejected application {application_id}")
            elif record.reason != reason:
                record.reason = reason
                record.updated_at = now

        return record

    def _audit(self, application: ApplicationDB, actor: Actor, viewer_id: str, reason: Optional[str]) -> None:
        self.audit_log.append(
            application_id=application.id,
            event_type=AuditEventType.LEAD_REJECTED,
            from_status=application.status,
            to_status=application.status,
            actor=actor,
            reason=reason,
            details={"viewer_id": viewer_id},
        )

    def clear_on_offer(self, application_id: str, viewer_id: str) -> bool:
        """
        Deactivate the bidder's rejection once they submit an offer.

        Caller holds the application's scope. Returns True if a record was cleared.
        """
        record = self._find(application_id, viewer_id)
        if record is None or not record.active:
            return False

        now = self.clock()
        record.active = False
        record.cleared_at = now
        record.updated_at = now
        logger.info(f"Cleared rejection of application {application_id} by bidder {viewer_id}")
        return True

    def is_rejected(self, application_id: str, viewer_id: str) -> bool:
        record = self._find(application_id, viewer_id)
        return bool(record and record.active)

    def list(self, application_id: str, include_cleared: bool = True) -> List[RejectionRecordDB]:
        load_application(self.db, application_id)
        query = self.db.query(RejectionRecordDB).filter(RejectionRecordDB.application_id == application_id)
        if not include_cleared:
            query = query.filter(RejectionRecordDB.active.is_(True))
        return query.order_by(RejectionRecordDB.created_at).all()

    def active_for(self, viewer_id: str) -> List[str]:
        """Applications this bidder currently has an active rejection on."""
        rows = self.db.query(RejectionRecordDB.application_id).filter(
            RejectionRecordDB.viewer_id == viewer_id,
            RejectionRecordDB.active.is_(True),
        ).all()
        return [row.application_id for row in rows]
