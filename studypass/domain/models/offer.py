"""Offer domain model: a conditional, rate-limited discount rule."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

WILDCARD = "all"

DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"
DISCOUNT_FREE = "free"

DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED, DISCOUNT_FREE)


@dataclass(slots=True)
class Offer:
    id: str
    title: str
    discount_type: str
    discount_value: float
    subscription_type: str
    valid_from: datetime
    valid_until: datetime
    branch: str = WILDCARD
    semester: str = WILDCARD
    description: str = ""
    is_active: bool = True
    usage_limit: Optional[int] = None
    usage_count: int = 0
    created_by: Optional[str] = None
    created_at: Optional[datetime] = field(default=None)
    updated_at: Optional[datetime] = field(default=None)

    def has_capacity(self) -> bool:
        return self.usage_limit is None or self.usage_count < self.usage_limit


@dataclass(slots=True, frozen=True)
class PurchaseContext:
    """What is being bought, used to decide whether an offer applies."""

    branch: Optional[str]
    semester: int
    subscription_type: str


@dataclass(slots=True, frozen=True)
class OfferEvaluation:
    applies: bool
    reason: Optional[str] = None
