"""Pydantic schemas for offer endpoints."""

from datetime import datetime
from typing import Any, Dict, Optional, Union

from pydantic import Field

from ....domain.models import Offer
from .subscription_schemas import CamelModel


class CreateOfferRequest(CamelModel):
    title: str = Field(min_length=1)
    description: str = ""
    discount_type: str
    discount_value: float = Field(default=0, ge=0)
    subscription_type: str
    branch: str = "all"
    semester: Union[int, str] = "all"
    valid_from: datetime
    valid_until: datetime
    is_active: bool = True
    usage_limit: Optional[int] = None


class UpdateOfferRequest(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    discount_type: Optional[str] = None
    discount_value: Optional[float] = Field(default=None, ge=0)
    subscription_type: Optional[str] = None
    branch: Optional[str] = None
    semester: Optional[Union[int, str]] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: Optional[bool] = None
    usage_limit: Optional[int] = None

    def to_updates(self) -> Dict[str, Any]:
        """Fields the caller actually sent; ``usageLimit: null`` clears the limit."""
        updates = self.model_dump(exclude_unset=True)
        for key in [key for key, value in updates.items() if value is None and key != "usage_limit"]:
            del updates[key]
        if "semester" in updates:
            updates["semester"] = str(updates["semester"])
        return updates


class OfferStatsResponse(CamelModel):
    total: int
    active: int
    expired: int
    total_uses: int
    total_savings: int


class OfferResponse(CamelModel):
    id: str
    title: str
    description: str
    discount_type: str
    discount_value: float
    subscription_type: str
    branch: str
    semester: str
    valid_from: datetime
    valid_until: datetime
    is_active: bool
    usage_limit: Optional[int]
    usage_count: int
    created_by: Optional[str] = None

    @classmethod
    def from_domain(cls, offer: Offer) -> "OfferResponse":
        return cls(
            id=offer.id,
            title=offer.title,
            description=offer.description,
            discount_type=offer.discount_type,
            discount_value=offer.discount_value,
            subscription_type=offer.subscription_type,
            branch=str(offer.branch),
            semester=str(offer.semester),
            valid_from=offer.valid_from,
            valid_until=offer.valid_until,
            is_active=offer.is_active,
            usage_limit=offer.usage_limit,
            usage_count=offer.usage_count,
            created_by=offer.created_by,
        )
