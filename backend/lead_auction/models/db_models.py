"""
Lead Auction Engine - SQLAlchemy ORM Models
Relational storage for applications, offers, views, rejections and the audit trail
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, DateTime, Text, JSON, ForeignKey, Boolean,
    UniqueConstraint, Enum as SQLEnum, event,
)
from sqlalchemy.orm import relationship
from ..database import Base


# =============================================================================
# ENUMS FOR THE AUCTION SYSTEM
# =============================================================================

class ApplicationStatus(str, Enum):
    """States in the application lifecycle state machine."""
    DRAFT = "draft"
    LIVE_AUCTION = "live_auction"
    APPROVED_LEADS = "approved_leads"
    COMPLETED = "completed"
    IGNORED = "ignored"
    EXPIRED = "expired"


class OfferStatus(str, Enum):
    """Offer states. Only the selection arbiter moves an offer out of SUBMITTED."""
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class PriorityLevel(str, Enum):
    """Admin-assigned lead priority."""
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class ActorRole(str, Enum):
    """Roles supplied by the identity collaborator, plus the engine itself."""
    BUSINESS = "business"
    BANK = "bank"
    ADMIN = "admin"
    SYSTEM = "system"


class AuditEventType(str, Enum):
    """Kinds of audit entries."""
    STATUS_TRANSITION = "status_transition"
    OFFER_SUBMITTED = "offer_submitted"
    OFFER_ACCEPTED = "offer_accepted"
    OFFER_DECLINED = "offer_declined"
    OFFER_EXPIRED = "offer_expired"
    DEADLINE_EXTENDED = "deadline_extended"
    LEAD_REJECTED = "lead_rejected"


def _enum(enum_cls, name):
    # Persist enum values ("live_auction"), not member names
    return SQLEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
    )


# =============================================================================
# APPLICATIONS
# =============================================================================

class ApplicationDB(Base):
    """
    A business financing application ("lead").
    Status is mutated only by ApplicationLifecycle.
    """
    __tablename__ = "applications"

    id = Column(String(36), primary_key=True)  # UUID
    owner_business_id = Column(String(36), nullable=False, index=True)

    # State Machine
    status = Column(_enum(ApplicationStatus, "application_status"), nullable=False, default=ApplicationStatus.DRAFT, index=True)

    # Auction Window
    submitted_at = Column(DateTime, nullable=True)
    auction_end_time = Column(DateTime, nullable=True, index=True)  # NULL until the auction starts

    # Set once, on entering COMPLETED
    selected_offer_id = Column(String(36), nullable=True)

    # Opaque financial profile supplied by the business
    financial_profile = Column(JSON, nullable=False, default=dict)
    priority_level = Column(_enum(PriorityLevel, "priority_level"), nullable=False, default=PriorityLevel.NORMAL)

    # Document reference (blob store handle, never the content)
    file_name = Column(String(255), nullable=True)
    file_mimetype = Column(String(100), nullable=True)
    file_handle = Column(String(500), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    offers = relationship("OfferDB", back_populates="application", order_by="OfferDB.submitted_at")
    audit_entries = relationship("AuditEntryDB", back_populates="application", order_by=lambda: [AuditEntryDB.timestamp, AuditEntryDB.sequence])
    views = relationship("ViewRecordDB", back_populates="application")
    rejections = relationship("RejectionRecordDB", back_populates="application")


# =============================================================================
# OFFERS
# =============================================================================

class OfferDB(Base):
    """
    A bank's offer on a live application.
    Created by OfferLedger; never deleted.
    """
    __tablename__ = "offers"
    __table_args__ = (
        UniqueConstraint("application_id", "bidder_id", name="uq_offer_application_bidder"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    application_id = Column(String(36), ForeignKey("applications.id"), nullable=False, index=True)
    bidder_id = Column(String(36), nullable=False, index=True)

    # Financial terms (approved amount, repayment period, rate, installment...)
    terms = Column(JSON, nullable=False)

    status = Column(_enum(OfferStatus, "offer_status"), nullable=False, default=OfferStatus.SUBMITTED)
    fee_accepted = Column(Boolean, nullable=False, default=False)  # Platform commission acknowledged

    # Document reference
    file_name = Column(String(255), nullable=True)
    file_mimetype = Column(String(100), nullable=True)
    file_handle = Column(String(500), nullable=True)

    # Timestamps
    submitted_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    decided_at = Column(DateTime, nullable=True)  # When accepted/rejected/expired

    # Relationships
    application = relationship("ApplicationDB", back_populates="offers")


# =============================================================================
# VIEW TRACKING
# =============================================================================

class ViewRecordDB(Base):
    """First view of an application by a bidder. One row per pair."""
    __tablename__ = "view_records"
    __table_args__ = (
        UniqueConstraint("application_id", "viewer_id", name="uq_view_application_viewer"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    application_id = Column(String(36), ForeignKey("applications.id"), nullable=False, index=True)
    viewer_id = Column(String(36), nullable=False, index=True)
    first_viewed_at = Column(DateTime, nullable=False)

    application = relationship("ApplicationDB", back_populates="views")


# =============================================================================
# REJECTIONS
# =============================================================================

class RejectionRecordDB(Base):
    """
    A bidder declining a lead.
    Independent of application status - the lead stays live for everyone else.
    """
    __tablename__ = "rejection_records"
    __table_args__ = (
        UniqueConstraint("application_id", "viewer_id", name="uq_rejection_application_viewer"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    application_id = Column(String(36), ForeignKey("applications.id"), nullable=False, index=True)
    viewer_id = Column(String(36), nullable=False, index=True)
    reason = Column(Text, nullable=True)

    active = Column(Boolean, nullable=False, default=True)
    cleared_at = Column(DateTime, nullable=True)  # Set when the bidder later submits an offer

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=True)

    application = relationship("ApplicationDB", back_populates="rejections")


# =============================================================================
# AUDIT TRAIL
# =============================================================================

class AuditEntryDB(Base):
    """
    Immutable log of application events.
    Append-only - records every status change and offer decision.
    """
    __tablename__ = "audit_entries"
    __table_args__ = (
        UniqueConstraint("application_id", "sequence", name="uq_audit_application_sequence"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    application_id = Column(String(36), ForeignKey("applications.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)  # Per-application, starts at 1

    event_type = Column(_enum(AuditEventType, "audit_event_type"), nullable=False)

    # Status Transition (equal for non-transition events)
    from_status = Column(_enum(ApplicationStatus, "audit_from_status"), nullable=True)  # NULL for creation
    to_status = Column(_enum(ApplicationStatus, "audit_to_status"), nullable=False)

    # Who/why
    actor = Column(String(36), nullable=False)
    actor_role = Column(_enum(ActorRole, "audit_actor_role"), nullable=False)
    reason = Column(Text, nullable=True)

    offer_id = Column(String(36), nullable=True)
    details = Column(JSON, nullable=True)

    # Timestamps (immutable, non-decreasing per application)
    timestamp = Column(DateTime, nullable=False, index=True)

    application = relationship("ApplicationDB", back_populates="audit_entries")


# =============================================================================
# WRITE-ONCE GUARDS
# =============================================================================

@event.listens_for(AuditEntryDB, "before_update")
def _audit_entry_is_write_once(mapper, connection, target):
    raise RuntimeError(f"Audit entry {target.id} is write-once and cannot be modified")


def _forbid_delete(mapper, connection, target):
    raise RuntimeError(f"{type(target).__name__} {target.id} cannot be deleted")


for _model in (AuditEntryDB, OfferDB, ViewRecordDB, RejectionRecordDB):
    event.listen(_model, "before_delete", _forbid_delete)
