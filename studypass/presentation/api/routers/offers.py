"""Offer listing and administration endpoints."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status

from ....core.dependencies import get_offer_service
from ....domain.models import AuthenticatedUser, Offer, PurchaseContext
from ....services.offer_service import OfferService
from ..dependencies import get_current_user, require_admin
from ..schemas.offer_schemas import (
    CreateOfferRequest,
    OfferResponse,
    OfferStatsResponse,
    UpdateOfferRequest,
)

router = APIRouter(prefix="/api/offers", tags=["Offers"])


def _listing(offers) -> Dict[str, Any]:
    items = [OfferResponse.from_domain(offer).model_dump(by_alias=True, mode="json") for offer in offers]
    return {"items": items, "count": len(items)}


@router.get("/active")
async def list_active_offers(
    branch: Optional[str] = None,
    semester: Optional[str] = None,
    subscription_type: Optional[str] = Query(default=None, alias="subscriptionType"),
    offer_service: OfferService = Depends(get_offer_service),
) -> Dict[str, Any]:
    return _listing(offer_service.list_active(branch, semester, subscription_type))


@router.get("/applicable")
async def list_applicable_offers(
    branch: str,
    semester: int = Query(ge=1),
    subscription_type: str = Query(alias="subscriptionType"),
    _: AuthenticatedUser = Depends(get_current_user),
    offer_service: OfferService = Depends(get_offer_service),
) -> Dict[str, Any]:
    """Offers that would apply to this purchase right now."""
    context = PurchaseContext(branch=branch, semester=semester, subscription_type=subscription_type)
    return _listing(offer_service.list_applicable(context))


# ============ ADMIN ============

@router.get("/admin/all")
async def list_all_offers(
    is_active: Optional[bool] = Query(default=None, alias="isActive"),
    branch: Optional[str] = None,
    semester: Optional[str] = None,
    subscription_type: Optional[str] = Query(default=None, alias="subscriptionType"),
    _: AuthenticatedUser = Depends(require_admin),
    offer_service: OfferService = Depends(get_offer_service),
) -> Dict[str, Any]:
    return _listing(offer_service.list_all(is_active, branch, semester, subscription_type))


@router.get("/admin/stats", response_model=OfferStatsResponse)
async def offer_stats(
    _: AuthenticatedUser = Depends(require_admin),
    offer_service: OfferService = Depends(get_offer_service),
) -> OfferStatsResponse:
    stats = offer_service.stats()
    return OfferStatsResponse(
        total=stats["total"],
        active=stats["active"],
        expired=stats["expired"],
        total_uses=stats["totalUses"],
        total_savings=stats["totalSavings"],
    )


@router.put("/admin/{offer_id}", response_model=OfferResponse)
async def update_offer(
    offer_id: str,
    payload: UpdateOfferRequest,
    _: AuthenticatedUser = Depends(require_admin),
    offer_service: OfferService = Depends(get_offer_service),
) -> OfferResponse:
    return OfferResponse.from_domain(offer_service.update_offer(offer_id, payload.to_updates()))


@router.post("/admin/{offer_id}/toggle", response_model=OfferResponse)
async def toggle_offer(
    offer_id: str,
    _: AuthenticatedUser = Depends(require_admin),
    offer_service: OfferService = Depends(get_offer_service),
) -> OfferResponse:
    """Flip the offer between active and inactive."""
    return OfferResponse.from_domain(offer_service.toggle_offer(offer_id))


@router.delete("/admin/{offer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_offer(
    offer_id: str,
    _: AuthenticatedUser = Depends(require_admin),
    offer_service: OfferService = Depends(get_offer_service),
) -> None:
    offer_service.delete_offer(offer_id)


@router.get("/{offer_id}", response_model=OfferResponse)
async def get_offer(
    offer_id: str,
    offer_service: OfferService = Depends(get_offer_service),
) -> OfferResponse:
    return OfferResponse.from_domain(offer_service.get_offer(offer_id))


@router.post("/admin/create", response_model=OfferResponse, status_code=status.HTTP_201_CREATED)
async def create_offer(
    payload: CreateOfferRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    offer_service: OfferService = Depends(get_offer_service),
) -> OfferResponse:
    offer = offer_service.create_offer(
        Offer(
            id="",
            title=payload.title,
            description=payload.description,
            discount_type=payload.discount_type,
            discount_value=payload.discount_value,
            subscription_type=payload.subscription_type,
            branch=payload.branch,
            semester=str(payload.semester),
            valid_from=payload.valid_from,
            valid_until=payload.valid_until,
            is_active=payload.is_active,
            usage_limit=payload.usage_limit,
            created_by=admin.id,
        )
    )
    return OfferResponse.from_domain(offer)
