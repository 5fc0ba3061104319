"""
Application API Routes

Lead submission, status changes, winner selection and bank interactions
with a lead (views, rejections). Handlers are plain functions so they run
in the threadpool; the engine blocks on per-application locks.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..auth import get_current_actor, require_admin
from ..config import MIN_DEADLINE_EXTENSION_HOURS, MAX_DEADLINE_EXTENSION_HOURS
from ..models.actor import Actor
from ..models.db_models import ApplicationStatus, PriorityLevel
from ..models.schemas import FileReference
from ..services.auction import MarketplaceService
from .dependencies import get_marketplace, to_response


router = APIRouter(prefix="/applications", tags=["applications"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class SubmitApplicationRequest(BaseModel):
    """Request to submit a financing application for auction."""
    financial_profile: Dict[str, Any] = Field(..., description="Opaque financial profile of the business")
    priority_level: PriorityLevel = Field(default=PriorityLevel.NORMAL, description="Lead priority")
    file_ref: Optional[FileReference] = Field(None, description="Reference to the uploaded document")
    owner_business_id: Optional[str] = Field(None, description="Owning business (admins only; defaults to caller)")


class TransitionRequest(BaseModel):
    """Request to change an application's status."""
    target_status: ApplicationStatus = Field(..., description="Status to move to")
    reason: Optional[str] = Field(None, description="Why the change is made")


class SelectOfferRequest(BaseModel):
    """Request to pick the winning offer."""
    offer_id: str = Field(..., description="ID of the winning offer")


class RejectLeadRequest(BaseModel):
    """A bank declining a lead."""
    reason: Optional[str] = Field(None, description="Why the bank is not bidding")
    viewer_id: Optional[str] = Field(None, description="Bidder (admins only; defaults to caller)")


class ExtendDeadlineRequest(BaseModel):
    """Admin request to extend a live auction."""
    extension_hours: int = Field(
        ...,
        ge=MIN_DEADLINE_EXTENSION_HOURS,
        le=MAX_DEADLINE_EXTENSION_HOURS,
        description="Hours to add to the auction deadline",
    )
    reason: str = Field(..., min_length=1, description="Reason for the extension")


# =============================================================================
# BUSINESS ENDPOINTS
# =============================================================================

@router.post("", response_model=dict, status_code=201)
def submit_application(
    request: SubmitApplicationRequest,
    actor: Actor = Depends(get_current_actor),
    service: MarketplaceService = Depends(get_marketplace),
):
    """Submit an application; its auction opens immediately."""
    payload = request.model_dump(exclude_none=True)
    payload["owner_business_id"] = request.owner_business_id or actor.actor_id
    return to_response(service.submit_application(payload, actor))


@router.get("/closing-soon", response_model=List[dict])
def list_closing_soon(
    hours_ahead: int = Query(6, ge=1, le=168, description="Look-ahead window in hours"),
    actor: Actor = Depends(get_current_actor),
    service: MarketplaceService = Depends(get_marketplace),
):
    """Live auctions closing within the next hours, soonest first."""
    return to_response(service.closing_soon(actor, hours_ahead=hours_ahead))


@router.get("/{application_id}", response_model=dict)
def get_application(
    application_id: str,
    actor: Actor = Depends(get_current_actor),
    service: MarketplaceService = Depends(get_marketplace),
):
    """Application with offers, audit trail and rejections (filtered for banks)."""
    return to_response(service.get_application(application_id, actor))


@router.post("/{application_id}/transition", response_model=dict)
def transition_application(
    application_id: str,
    request: TransitionRequest,
    actor: Actor = Depends(get_current_actor),
    service: MarketplaceService = Depends(get_marketplace),
):
    """Request a status change (withdraw, admin override, expire)."""
    return to_response(service.transition(application_id, request.target_status, actor, request.reason))


@router.post("/{application_id}/select", response_model=dict)
def select_offer(
    application_id: str,
    request: SelectOfferRequest,
    actor: Actor = Depends(get_current_actor),
    service: MarketplaceService = Depends(get_marketplace),
):
    """Accept one offer; all other pending offers are rejected."""
    return to_response(service.select_offer(application_id, request.offer_id, actor))


@router.post("/{application_id}/offers/{offer_id}/decline", response_model=dict)
def decline_offer(
    application_id: str,
    offer_id: str,
    actor: Actor = Depends(get_current_actor),
    service: MarketplaceService = Depends(get_marketplace),
):
    """Turn down a single offer."""
    return to_response(service.decline_offer(application_id, offer_id, actor))


# =============================================================================
# BANK ENDPOINTS
# =============================================================================

@router.post("/{application_id}/views", response_model=dict)
def record_view(
    application_id: str,
    actor: Actor = Depends(get_current_actor),
    service: MarketplaceService = Depends(get_marketplace),
):
    """Record that the calling bank opened this lead."""
    return service.record_view(application_id, actor.actor_id, actor)


@router.post("/{application_id}/reject", response_model=dict)
def reject_lead(
    application_id: str,
    request: RejectLeadRequest,
    actor: Actor = Depends(get_current_actor),
    service: MarketplaceService = Depends(get_marketplace),
):
    """Decline the lead without affecting it for other banks."""
    viewer_id = request.viewer_id or actor.actor_id
    return to_response(service.reject_lead(application_id, viewer_id, request.reason, actor))


# =============================================================================
# ADMIN ENDPOINTS
# =============================================================================

@router.post("/{application_id}/extend-deadline", response_model=dict)
def extend_deadline(
    application_id: str,
    request: ExtendDeadlineRequest,
    actor: Actor = Depends(require_admin),
    service: MarketplaceService = Depends(get_marketplace),
):
    """Push back a live auction's deadline. Audited."""
    return to_response(
        service.extend_deadline(application_id, request.extension_hours, request.reason, actor)
    )
