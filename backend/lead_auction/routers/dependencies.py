"""
Shared router dependencies.
"""
from dataclasses import asdict, is_dataclass
from typing import Any

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.auction import MarketplaceService


def get_marketplace(request: Request, db: Session = Depends(get_db)) -> MarketplaceService:
    """One service per request, sharing the process-wide lock registry."""
    return MarketplaceService(db, request.app.state.application_locks)


def to_response(value: Any) -> Any:
    """Read views are dataclasses; routes return them as plain dicts."""
    if isinstance(value, list):
        return [to_response(item) for item in value]
    if is_dataclass(value):
        if hasattr(value, "to_dict"):
            return value.to_dict()
        return asdict(value)
    return value
