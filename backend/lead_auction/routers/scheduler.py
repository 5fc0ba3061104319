"""
Scheduler API Routes

Internal endpoints for system-automatic tasks.
Auction expiry sweeps and closing-soon scans.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Header, Query

from ..config import INTERNAL_API_KEY
from ..models.actor import SYSTEM_ACTOR
from ..services.auction import MarketplaceService
from .dependencies import get_marketplace, to_response


router = APIRouter(prefix="/internal", tags=["scheduler"])


# =============================================================================
# INTERNAL API KEY VALIDATION
# =============================================================================

def verify_internal_key(x_internal_key: str = Header(...)):
    """Verify internal API key for scheduler endpoints."""
    if x_internal_key != INTERNAL_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid internal API key")
    return True


# =============================================================================
# SCHEDULER ENDPOINTS (SYSTEM-ONLY)
# =============================================================================

@router.post("/expiry-sweep", response_model=dict)
def run_expiry_sweep(
    limit: Optional[int] = Query(None, ge=1, description="Max applications to expire in this run"),
    service: MarketplaceService = Depends(get_marketplace),
    _: bool = Depends(verify_internal_key),
):
    """
    Expire lapsed auctions and stale offers.

    System-automatic - no user confirmation required.
    Operations expire lapsed auctions on touch; this keeps untouched
    leads current.
    """
    return service.run_expiry_sweep(SYSTEM_ACTOR, limit=limit)


@router.get("/closing-soon", response_model=List[dict])
def get_closing_soon(
    hours_ahead: int = Query(6, ge=1, le=168),
    service: MarketplaceService = Depends(get_marketplace),
    _: bool = Depends(verify_internal_key),
):
    """Live auctions closing in the next hours (for reminder jobs)."""
    return to_response(service.closing_soon(SYSTEM_ACTOR, hours_ahead=hours_ahead))
