"""Offer evaluation and discount calculation."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..domain.exceptions import NotFoundError, OfferUnavailableError, ValidationError
from ..domain.models import Offer, OfferEvaluation, PurchaseContext
from ..domain.models.offer import (
    DISCOUNT_FIXED,
    DISCOUNT_FREE,
    DISCOUNT_PERCENTAGE,
    DISCOUNT_TYPES,
    WILDCARD,
)
from ..domain.ports.persistence import OfferRepository
from .pricing import validate_subscription_type

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _matches(offer_value: Optional[str], context_value: Optional[object]) -> bool:
    if offer_value is None or str(offer_value) == WILDCARD:
        return True
    return context_value is not None and str(offer_value) == str(context_value)


def evaluate_offer(offer: Offer, context: PurchaseContext, now: datetime) -> OfferEvaluation:
    """
    Decide whether ``offer`` applies to ``context`` at ``now``.

    Branch and semester accept the ``all`` wildcard; the subscription type
    must match exactly. The result depends only on the arguments.
    """
    if not offer.is_active:
        return OfferEvaluation(False, "offer is inactive")
    if not _matches(offer.branch, context.branch):
        return OfferEvaluation(False, "offer does not apply to this branch")
    if not _matches(offer.semester, context.semester):
        return OfferEvaluation(False, "offer does not apply to this semester")
    if offer.subscription_type != context.subscription_type:
        return OfferEvaluation(False, "offer does not apply to this subscription type")
    if now < offer.valid_from:
        return OfferEvaluation(False, "offer is not yet valid")
    if now > offer.valid_until:
        return OfferEvaluation(False, "offer has expired")
    if not offer.has_capacity():
        return OfferEvaluation(False, "usage limit reached")
    return OfferEvaluation(True)


def discounted_price(offer: Offer, base: int) -> int:
    """Apply the offer discount to ``base``; the result stays within ``[0, base]``."""
    if offer.discount_type == DISCOUNT_PERCENTAGE:
        price = round(base * (1 - offer.discount_value / 100))
    elif offer.discount_type == DISCOUNT_FIXED:
        price = round(base - offer.discount_value)
    elif offer.discount_type == DISCOUNT_FREE:
        price = 0
    else:
        price = base
    return max(0, min(base, int(price)))


class OfferService:
    """Read-side queries over offers plus administrative management."""

    def __init__(self, offers: OfferRepository) -> None:
        self._offers = offers

    def get_offer(self, offer_id: str) -> Offer:
        offer = self._offers.get_offer(offer_id)
        if not offer:
            raise NotFoundError("Offer", offer_id)
        return offer

    def list_active(
        self,
        branch: Optional[str] = None,
        semester: Optional[str] = None,
        subscription_type: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[Offer]:
        moment = now or datetime.now(timezone.utc)
        offers = self._offers.list_offers(valid_at=moment)
        if branch:
            offers = [offer for offer in offers if _matches(offer.branch, branch)]
        if semester:
            offers = [offer for offer in offers if _matches(offer.semester, semester)]
        if subscription_type:
            offers = [offer for offer in offers if offer.subscription_type == subscription_type]
        return offers

    def list_applicable(self, context: PurchaseContext, now: Optional[datetime] = None) -> List[Offer]:
        moment = now or datetime.now(timezone.utc)
        return [
            offer
            for offer in self._offers.list_offers(valid_at=moment)
            if evaluate_offer(offer, context, moment).applies
        ]

    def resolve_for_purchase(
        self, offer_id: str, context: PurchaseContext, now: datetime
    ) -> Offer:
        """Load an offer and insist that it applies; raises a conflict otherwise."""
        offer = self.get_offer(offer_id)
        evaluation = evaluate_offer(offer, context, now)
        if not evaluation.applies:
            logger.info("Rejected offer %s: %s", offer_id, evaluation.reason)
            raise OfferUnavailableError(offer_id, evaluation.reason or "not applicable")
        return offer

    def list_all(
        self,
        is_active: Optional[bool] = None,
        branch: Optional[str] = None,
        semester: Optional[str] = None,
        subscription_type: Optional[str] = None,
    ) -> List[Offer]:
        """Every stored offer, filtered on exact field values for the admin listing."""
        offers = self._offers.list_offers()
        if is_active is not None:
            offers = [offer for offer in offers if offer.is_active == is_active]
        if branch:
            offers = [offer for offer in offers if str(offer.branch) == str(branch)]
        if semester:
            offers = [offer for offer in offers if str(offer.semester) == str(semester)]
        if subscription_type:
            offers = [offer for offer in offers if offer.subscription_type == subscription_type]
        return offers

    def create_offer(self, offer: Offer) -> Offer:
        self._validate(offer)
        created = self._offers.create_offer(offer)
        logger.info("Created offer %s (%s)", created.id, created.title)
        return created

    def update_offer(self, offer_id: str, updates: Dict[str, Any]) -> Offer:
        """
        Apply a partial update to an offer.

        Args:
            offer_id: Offer to change.
            updates: Offer field names mapped to their new values. The id,
                usage count and audit fields cannot be changed.

        Returns:
            The stored offer after the update.
        """
        frozen = {"id", "usage_count", "created_by", "created_at", "updated_at"} & set(updates)
        if frozen:
            raise ValidationError(f"Cannot update offer fields: {', '.join(sorted(frozen))}")
        current = self.get_offer(offer_id)
        try:
            candidate = replace(current, **updates)
        except TypeError as exc:
            raise ValidationError(f"Unknown offer field: {exc}") from exc
        self._validate(candidate)
        if candidate.usage_limit is not None and candidate.usage_limit < candidate.usage_count:
            raise ValidationError("usageLimit cannot be below the current usage count")
        updated = self._offers.update_offer(candidate)
        if updated is None:
            raise NotFoundError("Offer", offer_id)
        logger.info("Updated offer %s", offer_id)
        return updated

    def toggle_offer(self, offer_id: str) -> Offer:
        current = self.get_offer(offer_id)
        return self.update_offer(offer_id, {"is_active": not current.is_active})

    def delete_offer(self, offer_id: str) -> None:
        if not self._offers.delete_offer(offer_id):
            raise NotFoundError("Offer", offer_id)
        logger.info("Deleted offer %s", offer_id)

    def stats(self, now: Optional[datetime] = None) -> Dict[str, int]:
        return self._offers.offer_stats(now or datetime.now(timezone.utc))

    @staticmethod
    def _validate(offer: Offer) -> None:
        if not offer.title:
            raise ValidationError("title is required")
        if offer.discount_type not in DISCOUNT_TYPES:
            raise ValidationError(f"discountType must be one of {', '.join(DISCOUNT_TYPES)}")
        if offer.discount_value < 0:
            raise ValidationError("discountValue cannot be negative")
        if offer.discount_type == DISCOUNT_PERCENTAGE and offer.discount_value > 100:
            raise ValidationError("percentage discounts cannot exceed 100")
        validate_subscription_type(offer.subscription_type)
        offer.valid_from = _as_utc(offer.valid_from)
        offer.valid_until = _as_utc(offer.valid_until)
        if offer.valid_until <= offer.valid_from:
            raise ValidationError("validUntil must be after validFrom")
        if offer.usage_limit is not None and offer.usage_limit < 1:
            raise ValidationError("usageLimit must be positive when set")
