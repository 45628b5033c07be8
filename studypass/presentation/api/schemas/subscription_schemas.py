"""Pydantic schemas for subscription API endpoints."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ....domain.models import Subscription


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateSubscriptionRequest(CamelModel):
    """Request schema for a direct subscription purchase."""

    semester: int = Field(ge=1)
    subscription_type: str
    branch: Optional[str] = None
    offer_id: Optional[str] = None
    payment_method: str = "razorpay"


class UpdateStatusRequest(CamelModel):
    status: str


class SubscriptionResponse(CamelModel):
    """Response schema for subscription data."""

    id: str
    user_id: str
    semester: int
    branch: Optional[str]
    subscription_type: str
    status: str
    start_date: datetime
    end_date: datetime
    price: int
    original_price: int
    features: List[str]
    is_active: bool
    external_subscription_id: Optional[str] = None
    external_customer_id: Optional[str] = None
    offer_id: Optional[str] = None
    payment_id: Optional[str] = None
    payment_method: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    last_payment_date: Optional[datetime] = None
    last_payment_failed: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, subscription: Subscription) -> "SubscriptionResponse":
        return cls(
            id=subscription.id,
            user_id=subscription.user_id,
            semester=subscription.semester,
            branch=subscription.branch,
            subscription_type=subscription.subscription_type,
            status=subscription.status,
            start_date=subscription.start_date,
            end_date=subscription.end_date,
            price=subscription.price,
            original_price=subscription.original_price,
            features=subscription.features,
            is_active=subscription.is_active(),
            external_subscription_id=subscription.external_subscription_id,
            external_customer_id=subscription.external_customer_id,
            offer_id=subscription.offer_id,
            payment_id=subscription.payment_id,
            payment_method=subscription.payment_method,
            cancelled_at=subscription.cancelled_at,
            last_payment_date=subscription.last_payment_date,
            last_payment_failed=subscription.last_payment_failed,
            created_at=subscription.created_at,
            updated_at=subscription.updated_at,
        )


class CreateSubscriptionResponse(CamelModel):
    subscription: SubscriptionResponse
    payment_id: Optional[str]
    message: str


class ActiveSubscriptionResponse(CamelModel):
    has_active_subscription: bool
    subscription: Optional[SubscriptionResponse] = None


class SubscriptionListResponse(CamelModel):
    subscriptions: List[SubscriptionResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class AccessCheckResponse(CamelModel):
    feature: str
    has_access: bool


class ExpireLapsedResponse(CamelModel):
    expired: int
    subscription_ids: List[str]
