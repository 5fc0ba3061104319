"""
Audit Log

Append-only history of every application event. The canonical source for
"status changed from X to Y" views and for processing-time analytics.

Core Principles:
1. Write-once. Entries are never updated or deleted (enforced by ORM guards).
2. Timestamps never go backwards within an application.
3. Entries are ordered by (timestamp, sequence); sequence breaks ties.

Callers append while holding the application's serialization scope, which
is what makes the per-application sequence safe to allocate.
"""
from typing import Any, Callable, Dict, Iterator, Optional
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from ...models.actor import Actor
from ...models.db_models import (
    AuditEntryDB, AuditEventType, ApplicationStatus,
)
from .clock import utcnow


class LazyResult:
    """
    A finite, restartable sequence backed by a query.

    Nothing is fetched until iteration; every iteration issues a fresh
    query and streams rows in batches.
    """

    def __init__(self, query_factory: Callable[[], Query], batch_size: int = 100):
        self._query_factory = query_factory
        self.batch_size = batch_size

    def __iter__(self) -> Iterator[Any]:
        return iter(self._query_factory().yield_per(self.batch_size))

    def all(self):
        return list(self)

    def count(self) -> int:
        return self._query_factory().order_by(None).count()


class AuditLog:
    """Append-only per-application audit trail."""

    def __init__(self, db: Session, clock: Optional[Callable] = None):
        self.db = db
        self.clock = clock or utcnow

    def append(
        self,
        application_id: str,
        event_type: AuditEventType,
        from_status: Optional[ApplicationStatus],
        to_status: ApplicationStatus,
        actor: Actor,
        reason: Optional[str] = None,
        offer_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEntryDB:
        """
        Append one entry.

        The timestamp is the clock's reading, clamped to the previous entry's
        timestamp if the clock is behind it.
        """
        last = (
            self.db.query(AuditEntryDB.sequence, AuditEntryDB.timestamp)
            .filter(AuditEntryDB.application_id == application_id)
            .order_by(AuditEntryDB.sequence.desc())
            .first()
        )

        timestamp = self.clock()
        sequence = 1
        if last is not None:
            sequence = last.sequence + 1
            if last.timestamp > timestamp:
                timestamp = last.timestamp

        entry = AuditEntryDB(
            id=str(uuid4()),
            application_id=application_id,
            sequence=sequence,
            event_type=event_type,
            from_status=from_status,
            to_status=to_status,
            actor=actor.actor_id,
            actor_role=actor.role,
            reason=reason,
            offer_id=offer_id,
            details=details,
            timestamp=timestamp,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def read(self, application_id: str) -> LazyResult:
        """All entries for an application, oldest first."""
        return LazyResult(
            lambda: self.db.query(AuditEntryDB)
            .filter(AuditEntryDB.application_id == application_id)
            .order_by(AuditEntryDB.timestamp, AuditEntryDB.sequence)
        )

    def transitions(self, application_id: str) -> LazyResult:
        """Status transitions only."""
        return LazyResult(
            lambda: self.db.query(AuditEntryDB)
            .filter(
                AuditEntryDB.application_id == application_id,
                AuditEntryDB.event_type == AuditEventType.STATUS_TRANSITION,
            )
            .order_by(AuditEntryDB.timestamp, AuditEntryDB.sequence)
        )

    def last_transition_to(self, application_id: str, status: ApplicationStatus) -> Optional[AuditEntryDB]:
        return (
            self.db.query(AuditEntryDB)
            .filter(
                AuditEntryDB.application_id == application_id,
                AuditEntryDB.event_type == AuditEventType.STATUS_TRANSITION,
                AuditEntryDB.to_status == status,
            )
            .order_by(AuditEntryDB.sequence.desc())
            .first()
        )

    def has_deadline_override(self, application_id: str) -> bool:
        count = (
            self.db.query(func.count(AuditEntryDB.id))
            .filter(
                AuditEntryDB.application_id == application_id,
                AuditEntryDB.event_type == AuditEventType.DEADLINE_EXTENDED,
            )
            .scalar()
        )
        return bool(count)
