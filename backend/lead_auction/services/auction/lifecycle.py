"""
Application Lifecycle State Machine

Deterministic state machine for a lead's progress through the auction.
The only mutator of Application.status. Every transition is checked against
a fixed table and logged immutably.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from ...models.actor import Actor, SYSTEM_ACTOR
from ...models.db_models import (
    ApplicationDB, ApplicationStatus, ActorRole, AuditEventType,
)
from ...models.schemas import ApplicationSubmission
from .audit_log import AuditLog
from .authorization import require_owner_or_admin, require_self_or_admin
from .clock import utcnow
from .errors import (
    AlreadyDecided, AuctionClosed, AuthorizationError, IllegalTransition,
    ValidationError,
)
from .serialization import ApplicationLocks, application_scope, load_application
from .window_scheduler import AuctionWindowScheduler

logger = logging.getLogger(__name__)


# =============================================================================
# STATE CONFIGURATION
# =============================================================================
#
# AUTHORITY MODEL:
# Each allowed transition lists the roles that may trigger it:
# - BUSINESS: the owner of the application
# - ADMIN: platform administrators (audited overrides)
# - SYSTEM: the engine itself (window expiry)
#
# "entry" tells how a status is reached:
# - submit: only by submitting an application
# - selection: only through the selection arbiter
# - request: by an explicit transition request
#
# =============================================================================

STATUS_CONFIG = {
    ApplicationStatus.DRAFT: {
        "description": "Application captured, auction not started",
        "allowed_transitions": {
            ApplicationStatus.LIVE_AUCTION: [ActorRole.BUSINESS, ActorRole.ADMIN],
            ApplicationStatus.IGNORED: [ActorRole.ADMIN],
        },
        "entry": "submit",
    },
    ApplicationStatus.LIVE_AUCTION: {
        "description": "Open for offers until the auction deadline",
        "allowed_transitions": {
            ApplicationStatus.APPROVED_LEADS: [ActorRole.BUSINESS, ActorRole.ADMIN],
            ApplicationStatus.EXPIRED: [ActorRole.SYSTEM, ActorRole.ADMIN],
            ApplicationStatus.IGNORED: [ActorRole.BUSINESS, ActorRole.ADMIN],
        },
        "entry": "submit",
    },
    ApplicationStatus.APPROVED_LEADS: {
        "description": "An offer was accepted while the window was open",
        "allowed_transitions": {
            ApplicationStatus.COMPLETED: [ActorRole.BUSINESS, ActorRole.ADMIN],
            ApplicationStatus.IGNORED: [ActorRole.ADMIN],
        },
        "entry": "selection",
    },
    ApplicationStatus.COMPLETED: {
        "description": "Final settlement - winning offer recorded",
        "allowed_transitions": {},  # Terminal state
        "entry": "selection",
    },
    ApplicationStatus.IGNORED: {
        "description": "Withdrawn by the business or overridden by an admin",
        "allowed_transitions": {},  # Terminal state
        "entry": "request",
    },
    ApplicationStatus.EXPIRED: {
        "description": "Window elapsed without a selection",
        "allowed_transitions": {},  # Terminal state
        "entry": "request",
    },
}

TERMINAL_STATES = frozenset(
    status for status, config in STATUS_CONFIG.items() if not config["allowed_transitions"]
)


def _coerce_status(value: Union[str, ApplicationStatus]) -> ApplicationStatus:
    try:
        return ApplicationStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown application status: {value!r}", {"status": str(value)})


# =============================================================================
# STATE MACHINE
# =============================================================================

class ApplicationLifecycle:
    """
    Owns the application status state machine.

    Core Principles:
    - Statuses are a closed enum; caller-supplied strings are checked against it
    - Only transitions present in STATUS_CONFIG are ever applied
    - Every transition is appended to the audit log in the same transaction
    - A lapsed live auction is expired before anything else touches it
    """

    def __init__(
        self,
        db: Session,
        locks: ApplicationLocks,
        scheduler: Optional[AuctionWindowScheduler] = None,
        audit_log: Optional[AuditLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
        window_duration: Optional[timedelta] = None,
    ):
        self.db = db
        self.locks = locks
        self.clock = clock or utcnow
        self.audit_log = audit_log or AuditLog(db, clock=self.clock)
        self.scheduler = scheduler or AuctionWindowScheduler(
            db, audit_log=self.audit_log, window_duration=window_duration, clock=self.clock,
        )

    # =========================================================================
    # TABLE QUERIES
    # =========================================================================

    def get_status_config(self, status: ApplicationStatus) -> Dict[str, Any]:
        return STATUS_CONFIG.get(status, {})

    def can_transition(
        self,
        from_status: ApplicationStatus,
        to_status: ApplicationStatus,
    ) -> Tuple[bool, str]:
        """
        Check if a status transition is in the table.

        Returns (allowed, reason)
        """
        allowed = self.get_status_config(from_status).get("allowed_transitions", {})
        if to_status in allowed:
            return True, "Transition allowed"
        return False, f"Cannot transition from {from_status.value} to {to_status.value}"

    def is_terminal_state(self, status: ApplicationStatus) -> bool:
        return status in TERMINAL_STATES

    def get_next_states(self, status: ApplicationStatus) -> List[ApplicationStatus]:
        return list(self.get_status_config(status).get("allowed_transitions", {}))

    def get(self, application_id: str) -> ApplicationDB:
        return load_application(self.db, application_id)

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    def submit(self, submission: Union[ApplicationSubmission, Dict[str, Any]], actor: Actor) -> ApplicationDB:
        """
        Create an application and open its auction.

        The application is born in DRAFT and moved to LIVE_AUCTION in the
        same transaction; both steps are audited.
        """
        if not isinstance(submission, ApplicationSubmission):
            try:
                submission = ApplicationSubmission.model_validate(submission)
            except PydanticValidationError as exc:
                raise ValidationError.from_pydantic("Malformed application payload", exc) from exc

        require_self_or_admin(actor, ActorRole.BUSINESS, submission.owner_business_id)

        application_id = str(uuid4())
        with self.locks.hold(application_id):
            try:
                now = self.clock()
                file_ref = submission.file_ref
                application = ApplicationDB(
                    id=application_id,
                    owner_business_id=submission.owner_business_id,
                    status=ApplicationStatus.DRAFT,
                    financial_profile=submission.financial_profile,
                    priority_level=submission.priority_level,
                    file_name=file_ref.name if file_ref else None,
                    file_mimetype=file_ref.mimetype if file_ref else None,
                    file_handle=file_ref.content_handle if file_ref else None,
                    created_at=now,
                    updated_at=now,
                )
                self.db.add(application)
                self.db.flush()

                self.audit_log.append(
                    application_id=application_id,
                    event_type=AuditEventType.STATUS_TRANSITION,
                    from_status=None,
                    to_status=ApplicationStatus.DRAFT,
                    actor=actor,
                    reason="application created",
                )

                application.submitted_at = now
                application.auction_end_time = self.scheduler.compute_deadline(now)
                self.apply_transition(
                    application, ApplicationStatus.LIVE_AUCTION, actor, "submitted for auction",
                    details={"auction_end_time": application.auction_end_time.isoformat()},
                )
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info(f"Application {application_id} live until {application.auction_end_time.isoformat()}")
        return application

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def transition(
        self,
        application_id: str,
        target_status: Union[str, ApplicationStatus],
        actor: Actor,
        reason: Optional[str] = None,
    ) -> ApplicationDB:
        """
        Request a status change.

        EXPIRED is idempotent: on an already terminal application it is a
        no-op success. Statuses entered only by submission or selection
        cannot be requested here.
        """
        target = _coerce_status(target_status)

        with application_scope(self.db, self.locks, application_id) as application:
            self._authorize(application, actor)

            if target == ApplicationStatus.EXPIRED:
                if self.is_terminal_state(application.status):
                    return application
                if application.status != ApplicationStatus.LIVE_AUCTION:
                    self.apply_transition(application, ApplicationStatus.EXPIRED, actor, reason)
                    return application
                if not self.scheduler.has_elapsed(application):
                    raise IllegalTransition("Auction window is still open", {"application_id": application_id})
                # Lapsed windows expire as the system; the request itself is a no-op
                self.apply_transition(application, ApplicationStatus.EXPIRED, SYSTEM_ACTOR, "auction window elapsed")
                return application

            self.ensure_open(application)

            if self.get_status_config(target).get("entry") != "request":
                raise IllegalTransition(
                    f"{target.value} cannot be requested directly",
                    {"application_id": application_id, "to_status": target.value},
                )

            self.apply_transition(application, target, actor, reason)

        return application

    def apply_transition(
        self,
        application: ApplicationDB,
        to_status: ApplicationStatus,
        actor: Actor,
        reason: Optional[str] = None,
        selected_offer_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """
        Execute a transition on a locked application.

        Caller holds the application's scope. Returns the audit entry.
        """
        from_status = application.status

        allowed, message = self.can_transition(from_status, to_status)
        if not allowed:
            raise IllegalTransition(message, {
                "application_id": application.id,
                "from_status": from_status.value,
                "to_status": to_status.value,
            })

        roles = self.get_status_config(from_status)["allowed_transitions"][to_status]
        if actor.role not in roles:
            raise AuthorizationError(
                f"Role {actor.role.value} cannot move an application from {from_status.value} to {to_status.value}"
            )

        if to_status == ApplicationStatus.COMPLETED:
            if application.selected_offer_id is not None:
                raise AlreadyDecided("A winning offer was already selected", {"application_id": application.id})
            if not selected_offer_id:
                raise IllegalTransition("Completing an application requires a selected offer")
            application.selected_offer_id = selected_offer_id

        application.status = to_status
        application.updated_at = self.clock()

        entry = self.audit_log.append(
            application_id=application.id,
            event_type=AuditEventType.STATUS_TRANSITION,
            from_status=from_status,
            to_status=to_status,
            actor=actor,
            reason=reason,
            offer_id=selected_offer_id,
            details=details,
        )

        logger.info(
            f"Application {application.id}: {from_status.value} -> {to_status.value} "
            f"by {actor.role.value}:{actor.actor_id}"
        )
        return entry

    # =========================================================================
    # LAZY EXPIRY
    # =========================================================================

    def ensure_open(self, application: ApplicationDB) -> None:
        """
        Expire a lapsed live auction before anything else touches it.

        Caller holds the application's scope. The expiry is committed
        before AuctionClosed is raised, so it survives the caller's failure.
        """
        if not self.scheduler.has_elapsed(application):
            return

        application_id = application.id
        self.apply_transition(application, ApplicationStatus.EXPIRED, SYSTEM_ACTOR, "auction window elapsed")
        self.db.commit()

        logger.warning(f"Application {application_id} expired lazily on touch")
        raise AuctionClosed("Auction window has closed", {"application_id": application_id})

    def expire(self, application_id: str) -> bool:
        """
        Expire one application if its window has lapsed.

        Safe to repeat: returns False, without error, when the application
        is terminal, not live, or still open.
        """
        with application_scope(self.db, self.locks, application_id) as application:
            if not self.scheduler.has_elapsed(application):
                return False
            self.apply_transition(application, ApplicationStatus.EXPIRED, SYSTEM_ACTOR, "auction window elapsed")
        return True

    # =========================================================================
    # DEADLINE OVERRIDES
    # =========================================================================

    def extend_deadline(self, application_id: str, hours: int, reason: str, actor: Actor) -> ApplicationDB:
        """Admin extension of a live auction's window. Audited."""
        if not actor.is_admin:
            raise AuthorizationError("Only admins can extend an auction deadline")

        with application_scope(self.db, self.locks, application_id) as application:
            if application.status != ApplicationStatus.LIVE_AUCTION:
                raise AuctionClosed(
                    f"Only live auctions can be extended (status is {application.status.value})",
                    {"application_id": application_id},
                )
            self.ensure_open(application)
            self.scheduler.apply_extension(application, hours, reason, actor)

        return application

    # =========================================================================
    # AUTHORIZATION
    # =========================================================================

    def _authorize(self, application: ApplicationDB, actor: Actor) -> None:
        if actor.is_system:
            return
        require_owner_or_admin(actor, application)
