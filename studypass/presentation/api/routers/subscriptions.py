"""Subscription purchase, cancellation and access endpoints."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status

from ....core.dependencies import get_access_gate, get_subscription_service
from ....domain.models import AuthenticatedUser
from ....services.access_gate import AccessGate
from ....services.subscription_service import SubscriptionService
from ..dependencies import get_current_user, require_admin
from ..schemas.subscription_schemas import (
    AccessCheckResponse,
    ActiveSubscriptionResponse,
    CreateSubscriptionRequest,
    CreateSubscriptionResponse,
    ExpireLapsedResponse,
    SubscriptionListResponse,
    SubscriptionResponse,
    UpdateStatusRequest,
)

router = APIRouter(prefix="/api/subscriptions", tags=["Subscriptions"])


# ============ STUDENT ============

@router.post(
    "",
    response_model=CreateSubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
)
@router.post(
    "/create",
    response_model=CreateSubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
    include_in_schema=False,
)
async def create_subscription(
    payload: CreateSubscriptionRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
) -> CreateSubscriptionResponse:
    """Purchase access for a semester, optionally redeeming an offer."""
    subscription = subscription_service.create_subscription(
        user_id=user.id,
        semester=payload.semester,
        subscription_type=payload.subscription_type,
        branch=payload.branch,
        offer_id=payload.offer_id,
        payment_method=payload.payment_method,
    )
    return CreateSubscriptionResponse(
        subscription=SubscriptionResponse.from_domain(subscription),
        payment_id=subscription.payment_id,
        message="Subscription created successfully",
    )


@router.post("/{subscription_id}/cancel", response_model=SubscriptionResponse)
@router.post("/cancel/{subscription_id}", response_model=SubscriptionResponse, include_in_schema=False)
async def cancel_subscription(
    subscription_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionResponse:
    subscription = subscription_service.cancel_subscription(user, subscription_id)
    return SubscriptionResponse.from_domain(subscription)


@router.get("/active", response_model=ActiveSubscriptionResponse)
async def get_active_subscription(
    user: AuthenticatedUser = Depends(get_current_user),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
) -> ActiveSubscriptionResponse:
    """Active subscription for the caller's current semester."""
    subscription = subscription_service.get_active_subscription(user.id)
    return ActiveSubscriptionResponse(
        has_active_subscription=subscription is not None,
        subscription=SubscriptionResponse.from_domain(subscription) if subscription else None,
    )


@router.get("/my-subscriptions")
async def list_my_subscriptions(
    user: AuthenticatedUser = Depends(get_current_user),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
) -> Dict[str, Any]:
    subscriptions = subscription_service.list_user_subscriptions(user.id)
    items = [
        SubscriptionResponse.from_domain(item).model_dump(by_alias=True, mode="json")
        for item in subscriptions
    ]
    return {"items": items, "count": len(items)}


@router.get("/check-access/{feature}", response_model=AccessCheckResponse)
async def check_access(
    feature: str,
    semester: Optional[int] = Query(default=None, ge=1),
    user: AuthenticatedUser = Depends(get_current_user),
    access_gate: AccessGate = Depends(get_access_gate),
) -> AccessCheckResponse:
    return AccessCheckResponse(
        feature=feature,
        has_access=access_gate.has_access(user.id, feature, semester),
    )


# ============ ADMIN ============

@router.get("/admin/all", response_model=SubscriptionListResponse)
async def list_all_subscriptions(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    _: AuthenticatedUser = Depends(require_admin),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionListResponse:
    result = subscription_service.list_subscriptions(status=status_filter, page=page, limit=limit)
    return SubscriptionListResponse(
        subscriptions=[SubscriptionResponse.from_domain(item) for item in result["subscriptions"]],
        total=result["total"],
        page=result["page"],
        limit=result["limit"],
        total_pages=result["totalPages"],
    )


@router.get("/admin/stats")
async def subscription_stats(
    _: AuthenticatedUser = Depends(require_admin),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
) -> Dict[str, int]:
    return subscription_service.stats()


@router.put("/admin/{subscription_id}/status", response_model=SubscriptionResponse)
async def update_subscription_status(
    subscription_id: str,
    payload: UpdateStatusRequest,
    _: AuthenticatedUser = Depends(require_admin),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionResponse:
    subscription = subscription_service.update_status(subscription_id, payload.status)
    return SubscriptionResponse.from_domain(subscription)


@router.delete("/admin/{subscription_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_subscription(
    subscription_id: str,
    _: AuthenticatedUser = Depends(require_admin),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
) -> None:
    subscription_service.delete_subscription(subscription_id)


@router.post("/admin/expire", response_model=ExpireLapsedResponse)
async def expire_lapsed_subscriptions(
    _: AuthenticatedUser = Depends(require_admin),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
) -> ExpireLapsedResponse:
    expired = subscription_service.expire_lapsed()
    return ExpireLapsedResponse(
        expired=len(expired),
        subscription_ids=[item.id for item in expired],
    )
