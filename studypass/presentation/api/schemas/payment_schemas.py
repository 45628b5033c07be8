"""Pydantic schemas for payment gateway endpoints."""

from typing import List, Optional

from pydantic import Field

from .subscription_schemas import CamelModel


class CreateCheckoutSessionRequest(CamelModel):
    """Request schema for creating a checkout session."""

    success_url: str
    cancel_url: str
    price_id: Optional[str] = None
    subscription_type: Optional[str] = None
    semester: Optional[int] = Field(default=None, ge=1)
    branch: Optional[str] = None
    offer_id: Optional[str] = None


class CreateCheckoutSessionResponse(CamelModel):
    session_id: str
    url: Optional[str]
    subscription_id: str


class CreatePortalSessionRequest(CamelModel):
    return_url: str


class CreatePortalSessionResponse(CamelModel):
    url: str


class CancelGatewaySubscriptionRequest(CamelModel):
    subscription_id: str


class WebhookResponse(CamelModel):
    received: bool
    event_id: str
    event_type: str
    outcome: str


class PlanResponse(CamelModel):
    subscription_type: str
    price: int
    duration_days: int
    interval: Optional[str]
    interval_count: Optional[int]
    recurring: bool
    features: List[str]


class PlansResponse(CamelModel):
    currency: str
    plans: List[PlanResponse]
