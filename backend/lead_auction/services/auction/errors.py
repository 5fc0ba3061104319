"""
Auction Engine Errors

Every failure the engine reports to a caller. Each carries a stable
``code`` so transports can map it without string matching.

    AuctionEngineError
    ├── ValidationError        malformed input
    ├── StateConflict          operation not valid in the current state
    │   ├── AuctionClosed
    │   ├── FeeNotAccepted
    │   ├── DuplicateOffer
    │   ├── AlreadyDecided
    │   ├── NotEligible
    │   └── IllegalTransition
    ├── AuthorizationError     wrong role or not the owner; never retried
    ├── NotFoundError          unknown id
    └── TransientError         storage unavailable after bounded retries
"""
from typing import Any, Dict, Optional


class AuctionEngineError(Exception):
    """Base error for the auction engine."""
    code = "auction_engine_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}


class ValidationError(AuctionEngineError):
    """Malformed input payload."""
    code = "validation_error"

    @classmethod
    def from_pydantic(cls, message: str, exc) -> "ValidationError":
        return cls(message, {"errors": [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]})


class StateConflict(AuctionEngineError):
    """Operation conflicts with the application's or offer's current state."""
    code = "state_conflict"


class AuctionClosed(StateConflict):
    """The auction window has elapsed or the lead is no longer live."""
    code = "auction_closed"


class FeeNotAccepted(StateConflict):
    """Platform commission terms were not acknowledged."""
    code = "fee_not_accepted"


class DuplicateOffer(StateConflict):
    """This bidder already has an offer on the application."""
    code = "duplicate_offer"


class AlreadyDecided(StateConflict):
    """A winning offer has already been selected."""
    code = "already_decided"


class NotEligible(StateConflict):
    """The application or offer cannot take part in selection."""
    code = "not_eligible"


class IllegalTransition(StateConflict):
    """The status transition is not in the transition table."""
    code = "illegal_transition"


class AuthorizationError(AuctionEngineError):
    """Actor lacks the role or ownership for the operation."""
    code = "authorization_error"


class NotFoundError(AuctionEngineError):
    """Unknown application or offer id."""
    code = "not_found"


class TransientError(AuctionEngineError):
    """Storage unavailable; safe to retry with backoff."""
    code = "transient_error"
