"""Payment gateway endpoints: checkout, billing portal and webhooks."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from ....core.config import Settings
from ....core.dependencies import (
    get_checkout_service,
    get_settings,
    get_subscription_service,
    get_webhook_processor,
)
from ....domain.models import AuthenticatedUser
from ....services.checkout_service import CheckoutService
from ....services.pricing import list_plans
from ....services.subscription_service import SubscriptionService
from ....services.webhook_processor import WebhookProcessor
from ..dependencies import get_current_user
from ..schemas.payment_schemas import (
    CancelGatewaySubscriptionRequest,
    CreateCheckoutSessionRequest,
    CreateCheckoutSessionResponse,
    CreatePortalSessionRequest,
    CreatePortalSessionResponse,
    PlanResponse,
    PlansResponse,
    WebhookResponse,
)
from ..schemas.subscription_schemas import SubscriptionResponse

router = APIRouter(prefix="/api/payments", tags=["Payments"])


@router.post("/webhook", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="stripe-signature"),
    webhook_processor: WebhookProcessor = Depends(get_webhook_processor),
) -> WebhookResponse:
    """Receive gateway events; the raw body is needed for signature checks."""
    payload = await request.body()
    result = webhook_processor.process(payload, stripe_signature)
    return WebhookResponse(
        received=True,
        event_id=result.event_id,
        event_type=result.event_type,
        outcome=result.outcome,
    )


@router.get("/plans", response_model=PlansResponse)
async def get_plans(settings: Settings = Depends(get_settings)) -> PlansResponse:
    """Public catalogue of the purchasable tiers."""
    return PlansResponse(
        currency=settings.stripe_currency,
        plans=[PlanResponse(**plan) for plan in list_plans()],
    )


@router.post("/create-checkout-session", response_model=CreateCheckoutSessionResponse)
async def create_checkout_session(
    payload: CreateCheckoutSessionRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> CreateCheckoutSessionResponse:
    result = checkout_service.create_checkout_session(
        user_id=user.id,
        success_url=payload.success_url,
        cancel_url=payload.cancel_url,
        price_id=payload.price_id,
        subscription_type=payload.subscription_type,
        semester=payload.semester,
        branch=payload.branch,
        offer_id=payload.offer_id,
    )
    return CreateCheckoutSessionResponse(
        session_id=result.session_id,
        url=result.url,
        subscription_id=result.subscription.id,
    )


@router.post("/create-portal-session", response_model=CreatePortalSessionResponse)
async def create_portal_session(
    payload: CreatePortalSessionRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> CreatePortalSessionResponse:
    url = checkout_service.create_portal_session(user.id, payload.return_url)
    return CreatePortalSessionResponse(url=url)


@router.post("/cancel-subscription", response_model=SubscriptionResponse)
async def cancel_gateway_subscription(
    payload: CancelGatewaySubscriptionRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionResponse:
    """Cancel by the gateway's subscription id."""
    subscription = subscription_service.cancel_by_external_id(user, payload.subscription_id)
    return SubscriptionResponse.from_domain(subscription)
