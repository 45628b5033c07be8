from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from ..models import Offer, Subscription, User


class UserRepository(Protocol):
    """Lookups and cached subscription flags on user records."""

    def get_user(self, user_id: str) -> Optional[User]:
        ...

    def get_user_by_customer_id(self, customer_id: str) -> Optional[User]:
        ...

    def save_user(self, user: User) -> User:
        ...

    def set_user_customer_id(self, user_id: str, customer_id: str) -> None:
        ...

    def refresh_user_projection(self, user_id: str) -> Optional[User]:
        ...


class OfferRepository(Protocol):
    """Storage for discount offers."""

    def create_offer(self, offer: Offer) -> Offer:
        ...

    def get_offer(self, offer_id: str) -> Optional[Offer]:
        ...

    def list_offers(self, *, valid_at: Optional[datetime] = None) -> List[Offer]:
        ...

    def update_offer(self, offer: Offer) -> Optional[Offer]:
        ...

    def delete_offer(self, offer_id: str) -> bool:
        ...

    def offer_stats(self, now: datetime) -> Dict[str, int]:
        ...


class SubscriptionRepository(Protocol):
    """Durable subscription records addressable by local and gateway ids."""

    def create_subscription(
        self, subscription: Subscription, *, redeem_offer_id: Optional[str] = None
    ) -> Subscription:
        ...

    def insert_gateway_subscription(self, subscription: Subscription) -> Subscription:
        ...

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        ...

    def get_subscription_by_external_id(
        self, external_subscription_id: str
    ) -> Optional[Subscription]:
        ...

    def get_subscription_by_checkout_session(self, session_id: str) -> Optional[Subscription]:
        ...

    def find_active_subscription(
        self, user_id: str, semester: Optional[int], now: datetime
    ) -> Optional[Subscription]:
        ...

    def list_subscriptions_for_user(self, user_id: str) -> List[Subscription]:
        ...

    def list_subscriptions(self, status: Optional[str] = None) -> List[Subscription]:
        ...

    def transition_subscription(
        self,
        subscription_id: str,
        status: str,
        *,
        event_at: Optional[int] = None,
        changes: Optional[Dict[str, Any]] = None,
    ) -> Optional[Subscription]:
        ...

    def expire_lapsed_subscriptions(self, now: datetime) -> List[Subscription]:
        ...

    def delete_subscription(self, subscription_id: str) -> bool:
        ...

    def subscription_stats(self) -> Dict[str, int]:
        ...


class WebhookEventRepository(Protocol):
    """Ledger of gateway events that were already applied."""

    def is_event_processed(self, event_id: str) -> bool:
        ...

    def record_event(self, event_id: str, event_type: str) -> None:
        ...


class PersistenceGateway(
    UserRepository,
    OfferRepository,
    SubscriptionRepository,
    WebhookEventRepository,
    Protocol,
):
    """Composite gateway combining every persistence concern used by the app."""

    pass
