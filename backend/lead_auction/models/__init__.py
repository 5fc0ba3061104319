"""Lead Auction Engine - Data Models"""
from .db_models import (
    # Enums
    ApplicationStatus, OfferStatus, PriorityLevel, ActorRole, AuditEventType,
    # ORM
    ApplicationDB, OfferDB, ViewRecordDB, RejectionRecordDB, AuditEntryDB,
)
from .actor import Actor, SYSTEM_ACTOR
from .schemas import FileReference, ApplicationSubmission, OfferTerms
from .projections import (
    ApplicationProjection, ApplicationView, OfferView, AuditEntryView, RejectionView,
)

__all__ = [
    "ApplicationStatus", "OfferStatus", "PriorityLevel", "ActorRole", "AuditEventType",
    "ApplicationDB", "OfferDB", "ViewRecordDB", "RejectionRecordDB", "AuditEntryDB",
    "Actor", "SYSTEM_ACTOR",
    "FileReference", "ApplicationSubmission", "OfferTerms",
    "ApplicationProjection", "ApplicationView", "OfferView", "AuditEntryView", "RejectionView",
]
