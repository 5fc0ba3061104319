"""
Lead Auction Engine - Input Payloads

Pydantic models validating what callers hand to the engine.
Malformed payloads never reach the database.
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .db_models import PriorityLevel


class FileReference(BaseModel):
    """Opaque pointer into the document store. Only the reference is kept."""
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=255)
    mimetype: str = Field(..., min_length=1, max_length=100)
    content_handle: str = Field(..., min_length=1, max_length=500)


class ApplicationSubmission(BaseModel):
    """A business submitting a financing application for auction."""
    model_config = ConfigDict(extra="forbid")

    owner_business_id: str = Field(..., min_length=1, max_length=36)
    financial_profile: Dict[str, Any] = Field(..., description="Opaque financial profile")
    priority_level: PriorityLevel = PriorityLevel.NORMAL
    file_ref: Optional[FileReference] = None

    @field_validator("financial_profile")
    @classmethod
    def profile_not_empty(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        if not value:
            raise ValueError("financial_profile must not be empty")
        return value


class OfferTerms(BaseModel):
    """Financing terms a bank proposes."""
    model_config = ConfigDict(extra="forbid")

    approved_amount: float = Field(..., gt=0)
    repayment_period_months: int = Field(..., gt=0)
    interest_rate: float = Field(..., ge=0)
    monthly_installment: float = Field(..., gt=0)
    grace_period_months: Optional[int] = Field(None, ge=0)
    relationship_manager: Optional[str] = Field(None, max_length=255)
    comment: Optional[str] = Field(None, max_length=2000)
