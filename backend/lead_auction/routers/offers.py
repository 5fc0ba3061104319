"""
Offer API Routes

Banks placing offers on live applications.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..auth import get_current_actor
from ..models.actor import Actor
from ..models.schemas import FileReference, OfferTerms
from ..services.auction import MarketplaceService
from .dependencies import get_marketplace, to_response


router = APIRouter(prefix="/offers", tags=["offers"])


class SubmitOfferRequest(BaseModel):
    """A bank's offer on a live application."""
    application_id: str = Field(..., description="Application being bid on")
    terms: OfferTerms = Field(..., description="Proposed financing terms")
    fee_accepted: bool = Field(default=False, description="Platform commission acknowledged")
    file_ref: Optional[FileReference] = Field(None, description="Reference to the offer document")
    bidder_id: Optional[str] = Field(None, description="Bidder (admins only; defaults to caller)")


@router.post("", response_model=dict, status_code=201)
def submit_offer(
    request: SubmitOfferRequest,
    actor: Actor = Depends(get_current_actor),
    service: MarketplaceService = Depends(get_marketplace),
):
    """
    Submit an offer.

    Fails with 409 when the auction is closed, the commission is not
    accepted, or the bank already has an offer on the application.
    """
    offer = service.submit_offer(
        request.application_id,
        request.bidder_id or actor.actor_id,
        request.terms,
        request.fee_accepted,
        actor,
        file_ref=request.file_ref,
    )
    return to_response(offer)


@router.get("/mine", response_model=List[dict])
def list_my_offers(
    actor: Actor = Depends(get_current_actor),
    service: MarketplaceService = Depends(get_marketplace),
):
    """All offers placed by the calling bank, oldest first."""
    return to_response(service.bidder_offers(actor.actor_id, actor))
