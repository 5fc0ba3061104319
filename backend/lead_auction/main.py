"""
Lead Auction Engine - FastAPI Application

Main entry point for the lead auction backend.

Architecture:
- Business submits Application → ApplicationLifecycle (draft → live_auction)
- Banks view / reject / bid → ViewTracker, RejectionRegistry, OfferLedger
- Business selects a winner → SelectionArbiter (approved_leads → completed)
- Deadlines → AuctionWindowScheduler (lazy expiry + internal sweep)
- Every change → AuditLog (append-only)
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .database import init_db
from .routers import applications_router, offers_router, scheduler_router, analytics_router
from .services.auction import (
    ApplicationLocks, AuctionEngineError, AuthorizationError, NotFoundError,
    StateConflict, TransientError, ValidationError,
)

logger = logging.getLogger(__name__)

# Engine error → HTTP status. Checked in order, most specific first.
ERROR_STATUS_CODES = (
    (ValidationError, 422),
    (StateConflict, 409),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (TransientError, 503),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database and the per-application lock registry on startup."""
    init_db()
    app.state.application_locks = ApplicationLocks()
    yield


# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Lead Auction Engine",
    description="""
    Lead Auction Engine - Financing Lead Marketplace

    Businesses submit financing applications ("leads"); banks compete with
    offers inside a fixed auction window; the business picks one winner.

    ## Lifecycle
    1. **draft → live_auction**: submission opens a 48 hour window
    2. **live_auction**: banks view, reject or bid (one offer per bank)
    3. **approved_leads → completed**: the business selects a winning offer
    4. **expired / ignored**: window lapsed, or withdrawn / admin override

    ## Key Principles
    - Status changes only through the transition table
    - No offer is accepted after the window closes
    - At most one winning offer per application
    - Every change is recorded in an append-only audit log
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AuctionEngineError)
async def auction_engine_error_handler(request: Request, exc: AuctionEngineError):
    """Map engine errors to status codes with a stable error code in the body."""
    status_code = 500
    for error_cls, code in ERROR_STATUS_CODES:
        if isinstance(exc, error_cls):
            status_code = code
            break

    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")

    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})


# Include routers
app.include_router(applications_router)
app.include_router(offers_router)
app.include_router(scheduler_router)
app.include_router(analytics_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Lead Auction Engine",
        "version": __version__,
        "description": "Financing lead auction and offer lifecycle",
        "docs": "/docs",
        "lifecycle": {
            "entry": "draft → live_auction",
            "selection": "live_auction → approved_leads → completed",
            "terminal": ["completed", "ignored", "expired"],
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


# For running with: python -m lead_auction.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
