"""Subscription domain model and its lifecycle transition table."""

from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional

STATUS_PENDING = "pending"
STATUS_ACTIVE = "active"
STATUS_CANCELLED = "cancelled"
STATUS_PAST_DUE = "past_due"
STATUS_EXPIRED = "expired"

SUBSCRIPTION_STATUSES = (
    STATUS_PENDING,
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_PAST_DUE,
    STATUS_EXPIRED,
)

SUBSCRIPTION_TYPES = ("semester", "annual", "lifetime")

DEFAULT_FEATURES = ("materials", "quizzes", "notices", "progress_tracking")

# Allowed moves out of each status. Re-applying the current status is always
# permitted so that replayed events converge on the same state.
TRANSITIONS: Dict[str, FrozenSet[str]] = {
    STATUS_PENDING: frozenset({STATUS_ACTIVE, STATUS_CANCELLED, STATUS_EXPIRED}),
    STATUS_ACTIVE: frozenset({STATUS_CANCELLED, STATUS_PAST_DUE, STATUS_EXPIRED}),
    STATUS_PAST_DUE: frozenset({STATUS_ACTIVE, STATUS_CANCELLED}),
    STATUS_CANCELLED: frozenset(),
    STATUS_EXPIRED: frozenset(),
}

# Stripe reports its own vocabulary; everything is folded into the local one.
GATEWAY_STATUS_MAP: Dict[str, str] = {
    "active": STATUS_ACTIVE,
    "trialing": STATUS_ACTIVE,
    "past_due": STATUS_PAST_DUE,
    "unpaid": STATUS_PAST_DUE,
    "canceled": STATUS_CANCELLED,
    "cancelled": STATUS_CANCELLED,
    "incomplete_expired": STATUS_EXPIRED,
    "incomplete": STATUS_PENDING,
    "paused": STATUS_PAST_DUE,
}


def can_transition(current: str, target: str) -> bool:
    """Return True when ``current`` may move to ``target``."""
    if current == target:
        return True
    return target in TRANSITIONS.get(current, frozenset())


def allowed_predecessors(target: str) -> List[str]:
    """Statuses from which ``target`` is reachable, including ``target`` itself."""
    return sorted(
        status for status in SUBSCRIPTION_STATUSES if can_transition(status, target)
    )


def map_gateway_status(gateway_status: Optional[str]) -> str:
    if not gateway_status:
        return STATUS_PENDING
    return GATEWAY_STATUS_MAP.get(gateway_status.lower(), STATUS_PENDING)


class Subscription:
    """
    Subscription entity granting a user time-bounded access for one semester.

    Attributes:
        id: Store-assigned identifier
        user_id: Owning user
        semester: Semester the subscription unlocks
        branch: Academic branch of the purchase
        subscription_type: semester, annual or lifetime
        status: pending, active, cancelled, past_due or expired
        start_date: Start of the access window
        end_date: End of the access window
        price: Final price charged (after any offer)
        original_price: Base price before discounts
        features: Capability tags unlocked while active
        external_subscription_id: Payment gateway subscription id
        external_customer_id: Payment gateway customer id
        checkout_session_id: Gateway checkout session that created the row
        offer_id: Offer redeemed for this purchase
        payment_id: Payment reference returned to the client
        payment_method: Payment channel used for the purchase
        cancelled_at: When the subscription was cancelled
        last_payment_date: Last successful invoice payment
        last_payment_failed: Last failed invoice payment
        last_event_at: Timestamp of the last applied gateway event
        created_at: Row creation timestamp
        updated_at: Last update timestamp
    """

    def __init__(
        self,
        id: str,
        user_id: str,
        semester: int,
        branch: Optional[str],
        subscription_type: str,
        status: str,
        start_date: datetime,
        end_date: datetime,
        price: int,
        original_price: int,
        features: Optional[List[str]] = None,
        external_subscription_id: Optional[str] = None,
        external_customer_id: Optional[str] = None,
        checkout_session_id: Optional[str] = None,
        offer_id: Optional[str] = None,
        payment_id: Optional[str] = None,
        payment_method: Optional[str] = None,
        cancelled_at: Optional[datetime] = None,
        last_payment_date: Optional[datetime] = None,
        last_payment_failed: Optional[datetime] = None,
        last_event_at: Optional[int] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        self.id = id
        self.user_id = user_id
        self.semester = semester
        self.branch = branch
        self.subscription_type = subscription_type
        self.status = status
        self.start_date = start_date
        self.end_date = end_date
        self.price = price
        self.original_price = original_price
        self.features = list(features) if features is not None else list(DEFAULT_FEATURES)
        self.external_subscription_id = external_subscription_id
        self.external_customer_id = external_customer_id
        self.checkout_session_id = checkout_session_id
        self.offer_id = offer_id
        self.payment_id = payment_id
        self.payment_method = payment_method
        self.cancelled_at = cancelled_at
        self.last_payment_date = last_payment_date
        self.last_payment_failed = last_payment_failed
        self.last_event_at = last_event_at
        self.created_at = created_at or datetime.now(timezone.utc)
        self.updated_at = updated_at or datetime.now(timezone.utc)

    def is_active(self, now: Optional[datetime] = None) -> bool:
        """Active status and still inside the access window."""
        moment = now or datetime.now(timezone.utc)
        return self.status == STATUS_ACTIVE and self.end_date > moment

    def grants(self, feature: str, now: Optional[datetime] = None) -> bool:
        return self.is_active(now) and feature in self.features

    def __repr__(self) -> str:
        return (
            f"<Subscription id={self.id} user_id={self.user_id} "
            f"semester={self.semester} status={self.status}>"
        )
