"""
Lead Auction Engine - Auction Services

The auction/offer lifecycle: state machine, bidding window, offers,
winner selection, views, rejections and the audit trail.
"""
from .errors import (
    AuctionEngineError, ValidationError, StateConflict, AuctionClosed, FeeNotAccepted,
    DuplicateOffer, AlreadyDecided, NotEligible, IllegalTransition,
    AuthorizationError, NotFoundError, TransientError,
)
from .serialization import ApplicationLocks, application_scope, snapshot_read
from .audit_log import AuditLog, LazyResult
from .window_scheduler import AuctionWindowScheduler, ExpirySweep
from .lifecycle import ApplicationLifecycle, STATUS_CONFIG, TERMINAL_STATES
from .rejection_registry import RejectionRegistry
from .view_tracker import ViewTracker
from .offer_ledger import OfferLedger
from .selection_arbiter import SelectionArbiter
from .analytics import AuctionAnalytics
from .marketplace_service import MarketplaceService

__all__ = [
    # Errors
    "AuctionEngineError", "ValidationError", "StateConflict", "AuctionClosed", "FeeNotAccepted",
    "DuplicateOffer", "AlreadyDecided", "NotEligible", "IllegalTransition",
    "AuthorizationError", "NotFoundError", "TransientError",
    # Components
    "ApplicationLocks", "application_scope", "snapshot_read",
    "AuditLog", "LazyResult",
    "AuctionWindowScheduler", "ExpirySweep",
    "ApplicationLifecycle", "STATUS_CONFIG", "TERMINAL_STATES",
    "RejectionRegistry", "ViewTracker", "OfferLedger", "SelectionArbiter",
    "AuctionAnalytics",
    # Facade
    "MarketplaceService",
]
