"""
Analytics API Routes

Read-only processing-time and conversion metrics.
"""
from fastapi import APIRouter, Depends

from ..auth import get_current_actor, require_admin
from ..models.actor import Actor
from ..services.auction import MarketplaceService
from .dependencies import get_marketplace


router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/applications/{application_id}", response_model=dict)
def application_metrics(
    application_id: str,
    actor: Actor = Depends(get_current_actor),
    service: MarketplaceService = Depends(get_marketplace),
):
    """Window length, time to first offer, time to completion, time per status."""
    return service.application_metrics(application_id, actor)


@router.get("/bidders/{bidder_id}", response_model=dict)
def bidder_summary(
    bidder_id: str,
    actor: Actor = Depends(get_current_actor),
    service: MarketplaceService = Depends(get_marketplace),
):
    """Views, offers, wins and conversion rate for one bank."""
    return service.bidder_summary(bidder_id, actor)


@router.get("/status-distribution", response_model=dict)
def status_distribution(
    actor: Actor = Depends(require_admin),
    service: MarketplaceService = Depends(get_marketplace),
):
    """Number of applications in each status."""
    return service.status_distribution(actor)
