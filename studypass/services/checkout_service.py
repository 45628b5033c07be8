"""Hosted checkout and customer portal sessions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from ..domain.exceptions import DuplicateSubscriptionError, NotFoundError, ValidationError
from ..domain.models import PurchaseContext, Subscription, User
from ..domain.models.subscription import STATUS_PENDING
from ..domain.ports.payment_gateway import CheckoutRequest, PaymentGatewayClient
from ..domain.ports.persistence import PersistenceGateway
from .offer_service import OfferService, discounted_price
from .pricing import BILLING_INTERVALS, base_price, end_date_for, validate_subscription_type
from .subscription_service import (
    Clock,
    SubscriptionService,
    new_subscription_id,
    parse_semester,
    utcnow,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CheckoutResult:
    session_id: str
    url: Optional[str]
    subscription: Subscription


class CheckoutService:
    """Creates gateway sessions on behalf of authenticated users."""

    def __init__(
        self,
        persistence: PersistenceGateway,
        gateway: PaymentGatewayClient,
        offer_service: OfferService,
        subscription_service: SubscriptionService,
        clock: Clock = utcnow,
    ) -> None:
        self._persistence = persistence
        self._gateway = gateway
        self._offers = offer_service
        self._subscriptions = subscription_service
        self._clock = clock

    def create_checkout_session(
        self,
        user_id: str,
        success_url: str,
        cancel_url: str,
        price_id: Optional[str] = None,
        subscription_type: Optional[str] = None,
        semester: Optional[int] = None,
        branch: Optional[str] = None,
        offer_id: Optional[str] = None,
    ) -> CheckoutResult:
        """
        Open a hosted checkout and record it as a pending subscription.

        With ``price_id`` the gateway's catalogue price is charged; otherwise the
        local pricing table (and an optional offer) decides the amount.

        Raises:
            ValidationError: On missing URLs or an unusable price selection
            NotFoundError: If the user or offer does not exist
            DuplicateSubscriptionError: If the semester is already covered
            UpstreamError: If the gateway rejects a call
        """
        if not success_url or not cancel_url:
            raise ValidationError("successUrl and cancelUrl are required")
        if not price_id and not subscription_type:
            raise ValidationError("priceId or subscriptionType is required")
        if price_id and offer_id:
            raise ValidationError("offerId cannot be combined with priceId")
        if price_id and subscription_type == "lifetime":
            raise ValidationError("priceId cannot be used for a one-off lifetime purchase")

        user = self._require_user(user_id)
        semester_value = parse_semester(semester if semester is not None else user.semester)
        plan = validate_subscription_type(subscription_type or "semester")
        purchase_branch = branch or user.branch
        now = self._clock()

        if self._persistence.find_active_subscription(user.id, semester_value, now):
            raise DuplicateSubscriptionError(user.id, semester_value)

        original_price = base_price(plan)
        price = original_price
        if offer_id:
            offer = self._offers.resolve_for_purchase(
                offer_id, PurchaseContext(purchase_branch, semester_value, plan), now
            )
            price = discounted_price(offer, original_price)

        customer_id = self._ensure_customer(user)
        subscription_id = new_subscription_id()
        metadata: Dict[str, str] = {
            "user_id": user.id,
            "subscription_id": subscription_id,
            "semester": str(semester_value),
            "subscription_type": plan,
            "price": str(price),
        }
        if purchase_branch:
            metadata["branch"] = purchase_branch
        if offer_id:
            metadata["offer_id"] = offer_id

        interval = BILLING_INTERVALS[plan]
        session = self._gateway.create_checkout_session(
            CheckoutRequest(
                customer_id=customer_id,
                success_url=success_url,
                cancel_url=cancel_url,
                price_id=price_id,
                amount=None if price_id else price,
                product_name=f"{plan.title()} access - semester {semester_value}",
                interval=interval[0] if interval else None,
                interval_count=interval[1] if interval else 1,
                metadata=metadata,
            )
        )

        pending = Subscription(
            id=subscription_id,
            user_id=user.id,
            semester=semester_value,
            branch=purchase_branch,
            subscription_type=plan,
            status=STATUS_PENDING,
            start_date=now,
            end_date=end_date_for(plan, now),
            price=price,
            original_price=original_price,
            external_customer_id=customer_id,
            checkout_session_id=session.id,
            offer_id=offer_id,
            payment_id=session.id,
            payment_method="stripe",
        )
        try:
            stored = self._subscriptions.create_pending_checkout(pending)
        except Exception:
            logger.warning(
                "Checkout session %s was created but could not be recorded locally", session.id
            )
            raise

        logger.info("Checkout session %s created for user %s", session.id, user.id)
        return CheckoutResult(session_id=session.id, url=session.url, subscription=stored)

    def create_portal_session(self, user_id: str, return_url: str) -> str:
        if not return_url:
            raise ValidationError("returnUrl is required")
        user = self._require_user(user_id)
        if not user.external_customer_id:
            raise NotFoundError("Customer", user.id)
        return self._gateway.create_portal_session(user.external_customer_id, return_url)

    def _ensure_customer(self, user: User) -> str:
        if user.external_customer_id:
            return user.external_customer_id
        metadata = {"user_id": user.id}
        if user.branch:
            metadata["branch"] = user.branch
        if user.semester is not None:
            metadata["semester"] = str(user.semester)
        customer_id = self._gateway.create_customer(user.email, user.name, metadata)
        self._persistence.set_user_customer_id(user.id, customer_id)
        logger.info("Created gateway customer %s for user %s", customer_id, user.id)
        return customer_id

    def _require_user(self, user_id: str) -> User:
        user = self._persistence.get_user(user_id)
        if not user:
            raise NotFoundError("User", user_id)
        return user
