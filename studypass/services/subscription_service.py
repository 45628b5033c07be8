"""Subscription lifecycle: direct actions and gateway-driven transitions."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from ..domain.events import (
    CheckoutSessionCompleted,
    CheckoutSessionExpired,
    InvoicePaymentFailed,
    InvoicePaymentSucceeded,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionUpdated,
)
from ..domain.exceptions import (
    DuplicateSubscriptionError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from ..domain.models import AuthenticatedUser, PurchaseContext, Subscription, User
from ..domain.models.subscription import (
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_EXPIRED,
    STATUS_PAST_DUE,
    STATUS_PENDING,
    SUBSCRIPTION_STATUSES,
    can_transition,
    map_gateway_status,
)
from ..domain.ports.payment_gateway import PaymentGatewayClient
from ..domain.ports.persistence import PersistenceGateway
from .offer_service import OfferService, discounted_price
from .pricing import base_price, end_date_for, validate_subscription_type

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_subscription_id() -> str:
    return f"sub_{uuid.uuid4().hex}"


def parse_semester(value: Any) -> int:
    try:
        semester = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("semester must be an integer") from exc
    if semester < 1:
        raise ValidationError("semester must be positive")
    return semester


def _from_timestamp(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


class SubscriptionService:
    """Service for managing user subscriptions."""

    def __init__(
        self,
        persistence: PersistenceGateway,
        offer_service: OfferService,
        gateway: PaymentGatewayClient,
        clock: Clock = utcnow,
    ) -> None:
        self._persistence = persistence
        self._offers = offer_service
        self._gateway = gateway
        self._clock = clock

    # ------------------------------------------------------------------
    # Direct actions
    # ------------------------------------------------------------------
    def create_subscription(
        self,
        user_id: str,
        semester: Any,
        subscription_type: str,
        branch: Optional[str] = None,
        offer_id: Optional[str] = None,
        payment_method: str = "razorpay",
    ) -> Subscription:
        """
        Create an active subscription without going through the gateway.

        Args:
            user_id: Purchasing user
            semester: Semester to unlock
            subscription_type: semester, annual or lifetime
            branch: Branch of the purchase, defaults to the user's branch
            offer_id: Optional offer to redeem
            payment_method: Payment channel recorded on the row

        Returns:
            The stored Subscription

        Raises:
            NotFoundError: If the user or offer does not exist
            DuplicateSubscriptionError: If an active subscription exists for the semester
            OfferUnavailableError: If the offer does not apply or is exhausted
        """
        semester_value = parse_semester(semester)
        validate_subscription_type(subscription_type)
        user = self._require_user(user_id)
        now = self._clock()

        if self._persistence.find_active_subscription(user.id, semester_value, now):
            raise DuplicateSubscriptionError(user.id, semester_value)

        purchase_branch = branch or user.branch
        original_price = base_price(subscription_type)
        price = original_price
        if offer_id:
            offer = self._offers.resolve_for_purchase(
                offer_id,
                PurchaseContext(purchase_branch, semester_value, subscription_type),
                now,
            )
            price = discounted_price(offer, original_price)

        subscription = Subscription(
            id=new_subscription_id(),
            user_id=user.id,
            semester=semester_value,
            branch=purchase_branch,
            subscription_type=subscription_type,
            status=STATUS_ACTIVE,
            start_date=now,
            end_date=end_date_for(subscription_type, now),
            price=price,
            original_price=original_price,
            offer_id=offer_id,
            payment_id=f"pay_{uuid.uuid4().hex[:16]}",
            payment_method=payment_method,
        )
        created = self._persistence.create_subscription(subscription, redeem_offer_id=offer_id)
        self._persistence.refresh_user_projection(user.id)
        logger.info(
            "Created %s subscription %s for user %s (semester %s, price %s)",
            subscription_type,
            created.id,
            user.id,
            semester_value,
            price,
        )
        return created

    def create_pending_checkout(self, subscription: Subscription) -> Subscription:
        """
        Record the local row for a gateway checkout.

        The row keeps its ``offer_id`` but the offer is only redeemed when the
        row activates, so an abandoned checkout leaves the offer untouched.
        """
        created = self._persistence.create_subscription(subscription)
        logger.info(
            "Recorded pending checkout %s for user %s", created.checkout_session_id, created.user_id
        )
        return created

    def cancel_subscription(self, caller: AuthenticatedUser, subscription_id: str) -> Subscription:
        """Cancel a subscription owned by ``caller``."""
        subscription = self.get_subscription(subscription_id)
        return self._cancel(caller, subscription)

    def cancel_by_external_id(
        self, caller: AuthenticatedUser, external_subscription_id: str
    ) -> Subscription:
        subscription = self._persistence.get_subscription_by_external_id(external_subscription_id)
        if not subscription:
            raise NotFoundError("Subscription", external_subscription_id)
        return self._cancel(caller, subscription)

    def _cancel(self, caller: AuthenticatedUser, subscription: Subscription) -> Subscription:
        if subscription.user_id != caller.id:
            logger.warning(
                "User %s attempted to cancel subscription %s owned by %s",
                caller.id,
                subscription.id,
                subscription.user_id,
            )
            raise PermissionDeniedError("Unauthorized")
        if subscription.status == STATUS_CANCELLED:
            return subscription
        if not can_transition(subscription.status, STATUS_CANCELLED):
            raise InvalidTransitionError(subscription.status, STATUS_CANCELLED)

        # Gateway first: a failed upstream call leaves local state untouched.
        if subscription.external_subscription_id:
            self._gateway.cancel_subscription(subscription.external_subscription_id)

        updated = self._persistence.transition_subscription(
            subscription.id,
            STATUS_CANCELLED,
            changes={"cancelled_at": self._clock()},
        )
        if not updated:
            current = self.get_subscription(subscription.id)
            raise InvalidTransitionError(current.status, STATUS_CANCELLED)
        self._persistence.refresh_user_projection(updated.user_id)
        logger.info("Subscription %s cancelled by user %s", updated.id, caller.id)
        return updated

    def update_status(self, subscription_id: str, status: str) -> Subscription:
        """Administrative status change, still bound by the lifecycle."""
        if status not in SUBSCRIPTION_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(SUBSCRIPTION_STATUSES)}")
        subscription = self.get_subscription(subscription_id)
        if not can_transition(subscription.status, status):
            raise InvalidTransitionError(subscription.status, status)
        changes: Dict[str, Any] = {}
        if status == STATUS_CANCELLED:
            changes["cancelled_at"] = self._clock()
        updated = self._persistence.transition_subscription(subscription.id, status, changes=changes)
        if not updated:
            current = self.get_subscription(subscription.id)
            raise InvalidTransitionError(current.status, status)
        self._persistence.refresh_user_projection(updated.user_id)
        return updated

    def expire_lapsed(self) -> List[Subscription]:
        expired = self._persistence.expire_lapsed_subscriptions(self._clock())
        for user_id in {subscription.user_id for subscription in expired}:
            self._persistence.refresh_user_projection(user_id)
        if expired:
            logger.info("Expired %d lapsed subscriptions", len(expired))
        return expired

    def delete_subscription(self, subscription_id: str) -> Subscription:
        subscription = self.get_subscription(subscription_id)
        self._persistence.delete_subscription(subscription.id)
        self._persistence.refresh_user_projection(subscription.user_id)
        logger.info("Purged subscription %s", subscription.id)
        return subscription

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_subscription(self, subscription_id: str) -> Subscription:
        subscription = self._persistence.get_subscription(subscription_id)
        if not subscription:
            raise NotFoundError("Subscription", subscription_id)
        return subscription

    def get_active_subscription(self, user_id: str) -> Optional[Subscription]:
        """Active subscription for the user's current semester."""
        user = self._require_user(user_id)
        return self._persistence.find_active_subscription(user.id, user.semester, self._clock())

    def list_user_subscriptions(self, user_id: str) -> List[Subscription]:
        return self._persistence.list_subscriptions_for_user(user_id)

    def list_subscriptions(
        self, status: Optional[str] = None, page: int = 1, limit: int = 20
    ) -> Dict[str, Any]:
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        subscriptions = self._persistence.list_subscriptions(status)
        start = (page - 1) * limit
        total = len(subscriptions)
        return {
            "subscriptions": subscriptions[start : start + limit],
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": (total + limit - 1) // limit,
        }

    def stats(self) -> Dict[str, int]:
        return self._persistence.subscription_stats()

    # ------------------------------------------------------------------
    # Gateway-driven transitions. Each returns True when state changed and
    # False when the event did not apply to anything known locally.
    # ------------------------------------------------------------------
    def handle_checkout_completed(self, event: CheckoutSessionCompleted) -> bool:
        if not event.customer_id:
            logger.info("Checkout %s has no customer; ignoring", event.session_id)
            return False

        subscription = None
        if event.session_id:
            subscription = self._persistence.get_subscription_by_checkout_session(event.session_id)
        if subscription is None and event.subscription_id:
            subscription = self._persistence.get_subscription_by_external_id(event.subscription_id)

        if subscription is None:
            if not event.subscription_id:
                logger.info("Checkout %s has no subscription; ignoring", event.session_id)
                return False
            user = self._resolve_user(event.metadata, event.customer_id)
            if not user:
                logger.info("Checkout %s belongs to an unknown customer; ignoring", event.session_id)
                return False
            start = _from_timestamp(event.created) if event.created else self._clock()
            subscription = self._persistence.insert_gateway_subscription(
                self._gateway_subscription(
                    user,
                    event.metadata,
                    status=STATUS_ACTIVE,
                    external_subscription_id=event.subscription_id,
                    external_customer_id=event.customer_id,
                    start=start,
                    end=None,
                    unit_amount=None,
                    event_at=event.created,
                    checkout_session_id=event.session_id or None,
                )
            )
        else:
            changes: Dict[str, Any] = {"external_customer_id": event.customer_id}
            if event.subscription_id:
                changes["external_subscription_id"] = event.subscription_id
            updated = self._persistence.transition_subscription(
                subscription.id, STATUS_ACTIVE, event_at=event.created, changes=changes
            )
            if not updated:
                logger.info(
                    "Checkout %s did not change subscription %s (status %s)",
                    event.session_id,
                    subscription.id,
                    subscription.status,
                )
                return False
            subscription = updated

        self._link_customer(subscription.user_id, event.customer_id)
        self._persistence.refresh_user_projection(subscription.user_id)
        return True

    def handle_checkout_expired(self, event: CheckoutSessionExpired) -> bool:
        """Close the pending row of a checkout the customer never finished."""
        subscription = self._persistence.get_subscription_by_checkout_session(event.session_id)
        if subscription is None or subscription.status != STATUS_PENDING:
            logger.info("Expired checkout %s has no pending subscription; ignoring", event.session_id)
            return False
        updated = self._persistence.transition_subscription(
            subscription.id, STATUS_EXPIRED, event_at=event.created
        )
        return updated is not None

    def handle_subscription_upsert(
        self, event: Union[SubscriptionCreated, SubscriptionUpdated]
    ) -> bool:
        status = map_gateway_status(event.status)
        subscription = self._persistence.get_subscription_by_external_id(event.subscription_id)
        if subscription is None:
            local_id = event.metadata.get("subscription_id")
            if local_id:
                candidate = self._persistence.get_subscription(local_id)
                if candidate and candidate.external_subscription_id in (None, event.subscription_id):
                    subscription = candidate

        if subscription is None:
            user = self._resolve_user(event.metadata, event.customer_id)
            if not user:
                logger.info(
                    "Gateway subscription %s belongs to an unknown customer; ignoring",
                    event.subscription_id,
                )
                return False
            start = event.period_start or (
                _from_timestamp(event.created) if event.created else self._clock()
            )
            stored = self._persistence.insert_gateway_subscription(
                self._gateway_subscription(
                    user,
                    event.metadata,
                    status=status,
                    external_subscription_id=event.subscription_id,
                    external_customer_id=event.customer_id,
                    start=start,
                    end=event.period_end,
                    unit_amount=event.unit_amount,
                    event_at=event.created,
                )
            )
            if stored.last_event_at != event.created:
                # Another delivery inserted the row first; apply this event on top.
                self._apply_gateway_status(stored, status, event)
            if event.customer_id:
                self._link_customer(stored.user_id, event.customer_id)
            self._persistence.refresh_user_projection(stored.user_id)
            return True

        updated = self._apply_gateway_status(subscription, status, event)
        self._persistence.refresh_user_projection(subscription.user_id)
        return updated is not None

    def handle_subscription_deleted(self, event: SubscriptionDeleted) -> bool:
        subscription = self._persistence.get_subscription_by_external_id(event.subscription_id)
        if not subscription:
            logger.info("Deleted gateway subscription %s is unknown; ignoring", event.subscription_id)
            return False
        updated = self._persistence.transition_subscription(
            subscription.id,
            STATUS_CANCELLED,
            event_at=event.created,
            changes={"cancelled_at": self._event_time(event.created)},
        )
        self._persistence.refresh_user_projection(subscription.user_id)
        return updated is not None

    def handle_invoice_paid(self, event: InvoicePaymentSucceeded) -> bool:
        return self._apply_invoice(
            event.subscription_id,
            STATUS_ACTIVE,
            "last_payment_date",
            event.created,
        )

    def handle_invoice_failed(self, event: InvoicePaymentFailed) -> bool:
        return self._apply_invoice(
            event.subscription_id,
            STATUS_PAST_DUE,
            "last_payment_failed",
            event.created,
        )

    # Helpers ----------------------------------------------------------------
    def _apply_invoice(
        self, external_id: Optional[str], status: str, stamp_column: str, created: int
    ) -> bool:
        if not external_id:
            return False
        subscription = self._persistence.get_subscription_by_external_id(external_id)
        if not subscription:
            logger.info("Invoice for unknown gateway subscription %s; ignoring", external_id)
            return False
        updated = self._persistence.transition_subscription(
            subscription.id,
            status,
            event_at=created,
            changes={stamp_column: self._event_time(created)},
        )
        if not updated:
            logger.info(
                "Invoice event did not move subscription %s from %s to %s",
                subscription.id,
                subscription.status,
                status,
            )
        self._persistence.refresh_user_projection(subscription.user_id)
        return updated is not None

    def _apply_gateway_status(
        self,
        subscription: Subscription,
        status: str,
        event: Union[SubscriptionCreated, SubscriptionUpdated],
    ) -> Optional[Subscription]:
        changes: Dict[str, Any] = {"external_subscription_id": event.subscription_id}
        if event.customer_id:
            changes["external_customer_id"] = event.customer_id
        if event.period_start and event.period_end and event.period_end > event.period_start:
            changes["start_date"] = event.period_start
            changes["end_date"] = event.period_end
        if event.unit_amount is not None:
            price = event.unit_amount // 100
            changes["price"] = price
            changes["original_price"] = max(subscription.original_price, price)
        updated = self._persistence.transition_subscription(
            subscription.id, status, event_at=event.created, changes=changes
        )
        if not updated:
            logger.info(
                "Skipped %s for subscription %s: stale event or %s -> %s not allowed",
                event.event_type,
                subscription.id,
                subscription.status,
                status,
            )
        return updated

    def _gateway_subscription(
        self,
        user: User,
        metadata: Dict[str, str],
        *,
        status: str,
        external_subscription_id: str,
        external_customer_id: Optional[str],
        start: datetime,
        end: Optional[datetime],
        unit_amount: Optional[int],
        event_at: int,
        checkout_session_id: Optional[str] = None,
    ) -> Subscription:
        subscription_type = metadata.get("subscription_type") or "semester"
        validate_subscription_type(subscription_type)
        semester_value = metadata.get("semester") or user.semester
        if semester_value is None:
            raise ValidationError(
                f"Cannot determine semester for gateway subscription {external_subscription_id}"
            )
        semester = parse_semester(semester_value)
        original_price = base_price(subscription_type)
        if unit_amount is not None:
            price = unit_amount // 100
        elif metadata.get("price"):
            try:
                price = int(metadata["price"])
            except ValueError as exc:
                raise ValidationError(
                    f"Invalid price metadata on gateway subscription {external_subscription_id}"
                ) from exc
            if price < 0:
                raise ValidationError(
                    f"Invalid price metadata on gateway subscription {external_subscription_id}"
                )
        else:
            price = original_price
        if end is None or end <= start:
            end = end_date_for(subscription_type, start)
        return Subscription(
            id=new_subscription_id(),
            user_id=user.id,
            semester=semester,
            branch=metadata.get("branch") or user.branch,
            subscription_type=subscription_type,
            status=status,
            start_date=start,
            end_date=end,
            price=price,
            original_price=max(original_price, price),
            external_subscription_id=external_subscription_id,
            external_customer_id=external_customer_id,
            checkout_session_id=checkout_session_id,
            payment_method="stripe",
            last_event_at=event_at,
        )

    def _resolve_user(self, metadata: Dict[str, str], customer_id: Optional[str]) -> Optional[User]:
        user_id = metadata.get("user_id")
        if user_id:
            user = self._persistence.get_user(user_id)
            if user:
                return user
        if customer_id:
            return self._persistence.get_user_by_customer_id(customer_id)
        return None

    def _link_customer(self, user_id: str, customer_id: str) -> None:
        user = self._persistence.get_user(user_id)
        if user and not user.external_customer_id:
            self._persistence.set_user_customer_id(user_id, customer_id)

    def _require_user(self, user_id: str) -> User:
        user = self._persistence.get_user(user_id)
        if not user:
            raise NotFoundError("User", user_id)
        return user

    def _event_time(self, created: int) -> datetime:
        return _from_timestamp(created) if created else self._clock()
