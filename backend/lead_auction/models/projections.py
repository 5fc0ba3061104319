"""
Lead Auction Engine - Read Projections

The canonical read model handed to callers. Assembled once by
get_application; optional fields are explicit rather than defaulted ad hoc
by each consumer.
"""
from __future__ import annotations
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from .db_models import (
    ApplicationDB, OfferDB, AuditEntryDB, RejectionRecordDB,
    ApplicationStatus, OfferStatus, PriorityLevel, AuditEventType, ActorRole,
)


@dataclass
class FileRefView:
    name: str
    mimetype: str
    content_handle: str


def _file_ref(row) -> Optional[FileRefView]:
    if not row.file_handle:
        return None
    return FileRefView(name=row.file_name, mimetype=row.file_mimetype, content_handle=row.file_handle)


@dataclass
class OfferView:
    offer_id: str
    application_id: str
    bidder_id: str
    terms: Dict[str, Any]
    status: OfferStatus
    submitted_at: datetime
    expires_at: datetime
    decided_at: Optional[datetime] = None
    file_ref: Optional[FileRefView] = None

    @classmethod
    def from_row(cls, offer: OfferDB) -> "OfferView":
        return cls(
            offer_id=offer.id,
            application_id=offer.application_id,
            bidder_id=offer.bidder_id,
            terms=dict(offer.terms or {}),
            status=offer.status,
            submitted_at=offer.submitted_at,
            expires_at=offer.expires_at,
            decided_at=offer.decided_at,
            file_ref=_file_ref(offer),
        )


@dataclass
class AuditEntryView:
    sequence: int
    event_type: AuditEventType
    from_status: Optional[ApplicationStatus]
    to_status: ApplicationStatus
    actor: str
    actor_role: ActorRole
    reason: Optional[str]
    timestamp: datetime
    offer_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    @classmethod
    def from_row(cls, entry: AuditEntryDB) -> "AuditEntryView":
        return cls(
            sequence=entry.sequence,
            event_type=entry.event_type,
            from_status=entry.from_status,
            to_status=entry.to_status,
            actor=entry.actor,
            actor_role=entry.actor_role,
            reason=entry.reason,
            timestamp=entry.timestamp,
            offer_id=entry.offer_id,
            details=entry.details,
        )


@dataclass
class RejectionView:
    application_id: str
    viewer_id: str
    reason: Optional[str]
    active: bool
    created_at: datetime
    cleared_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, record: RejectionRecordDB) -> "RejectionView":
        return cls(
            application_id=record.application_id,
            viewer_id=record.viewer_id,
            reason=record.reason,
            active=record.active,
            created_at=record.created_at,
            cleared_at=record.cleared_at,
        )


@dataclass
class ApplicationView:
    application_id: str
    owner_business_id: str
    status: ApplicationStatus
    priority_level: PriorityLevel
    financial_profile: Dict[str, Any]
    submitted_at: Optional[datetime] = None
    auction_end_time: Optional[datetime] = None
    selected_offer_id: Optional[str] = None
    file_ref: Optional[FileRefView] = None

    @classmethod
    def from_row(cls, application: ApplicationDB) -> "ApplicationView":
        return cls(
            application_id=application.id,
            owner_business_id=application.owner_business_id,
            status=application.status,
            priority_level=application.priority_level,
            financial_profile=dict(application.financial_profile or {}),
            submitted_at=application.submitted_at,
            auction_end_time=application.auction_end_time,
            selected_offer_id=application.selected_offer_id,
            file_ref=_file_ref(application),
        )


@dataclass
class ApplicationProjection:
    """Application with its offers, audit history and rejections."""
    application: ApplicationView
    offers: List[OfferView] = field(default_factory=list)
    audit_entries: List[AuditEntryView] = field(default_factory=list)
    rejections: List[RejectionView] = field(default_factory=list)
    is_open: bool = False
    distinct_viewers: int = 0

    @property
    def offers_count(self) -> int:
        return len(self.offers)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["offers_count"] = self.offers_count
        return data
