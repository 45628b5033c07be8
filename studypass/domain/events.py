"""
Payment gateway webhook events.

Each handled gateway event type has its own dataclass; anything else is
parsed into :class:`UnknownEvent` so new gateway event types are accepted and
ignored rather than rejected.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from .exceptions import ValidationError


@dataclass(slots=True, frozen=True)
class CheckoutSessionCompleted:
    event_id: str
    created: int
    session_id: str
    customer_id: Optional[str]
    subscription_id: Optional[str]
    metadata: Dict[str, str] = field(default_factory=dict)

    event_type = "checkout.session.completed"


@dataclass(slots=True, frozen=True)
class CheckoutSessionExpired:
    event_id: str
    created: int
    session_id: str

    event_type = "checkout.session.expired"


@dataclass(slots=True, frozen=True)
class SubscriptionCreated:
    event_id: str
    created: int
    subscription_id: str
    customer_id: Optional[str]
    status: Optional[str]
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    unit_amount: Optional[int] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    event_type = "customer.subscription.created"


@dataclass(slots=True, frozen=True)
class SubscriptionUpdated:
    event_id: str
    created: int
    subscription_id: str
    customer_id: Optional[str]
    status: Optional[str]
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    unit_amount: Optional[int] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    event_type = "customer.subscription.updated"


@dataclass(slots=True, frozen=True)
class SubscriptionDeleted:
    event_id: str
    created: int
    subscription_id: str
    customer_id: Optional[str]

    event_type = "customer.subscription.deleted"


@dataclass(slots=True, frozen=True)
class InvoicePaymentSucceeded:
    event_id: str
    created: int
    subscription_id: Optional[str]

    event_type = "invoice.payment_succeeded"


@dataclass(slots=True, frozen=True)
class InvoicePaymentFailed:
    event_id: str
    created: int
    subscription_id: Optional[str]

    event_type = "invoice.payment_failed"


@dataclass(slots=True, frozen=True)
class UnknownEvent:
    event_id: str
    created: int
    type: str

    @property
    def event_type(self) -> str:
        return self.type


WebhookEvent = Union[
    CheckoutSessionCompleted,
    CheckoutSessionExpired,
    SubscriptionCreated,
    SubscriptionUpdated,
    SubscriptionDeleted,
    InvoicePaymentSucceeded,
    InvoicePaymentFailed,
    UnknownEvent,
]


def parse_event(payload: Dict[str, Any]) -> WebhookEvent:
    """Build the event variant for a decoded gateway payload."""
    if not isinstance(payload, dict):
        raise ValidationError("Webhook payload must be a JSON object")
    event_id = payload.get("id")
    event_type = payload.get("type")
    if not event_id or not event_type:
        raise ValidationError("Webhook payload is missing id or type")
    created = _coerce_int(payload.get("created")) or 0
    obj = (payload.get("data") or {}).get("object") or {}
    if not isinstance(obj, dict):
        raise ValidationError("Webhook data.object must be a JSON object")

    if event_type == "checkout.session.completed":
        return CheckoutSessionCompleted(
            event_id=event_id,
            created=created,
            session_id=obj.get("id") or "",
            customer_id=_string_id(obj.get("customer")),
            subscription_id=_string_id(obj.get("subscription")),
            metadata=_metadata(obj),
        )
    if event_type == "checkout.session.expired":
        return CheckoutSessionExpired(
            event_id=event_id,
            created=created,
            session_id=_required_id(obj, event_type),
        )
    if event_type in ("customer.subscription.created", "customer.subscription.updated"):
        variant = (
            SubscriptionCreated
            if event_type == "customer.subscription.created"
            else SubscriptionUpdated
        )
        period_start, period_end = _period_bounds(obj)
        return variant(
            event_id=event_id,
            created=created,
            subscription_id=_required_id(obj, event_type),
            customer_id=_string_id(obj.get("customer")),
            status=obj.get("status"),
            period_start=period_start,
            period_end=period_end,
            unit_amount=_unit_amount(obj),
            metadata=_metadata(obj),
        )
    if event_type == "customer.subscription.deleted":
        return SubscriptionDeleted(
            event_id=event_id,
            created=created,
            subscription_id=_required_id(obj, event_type),
            customer_id=_string_id(obj.get("customer")),
        )
    if event_type == "invoice.payment_succeeded":
        return InvoicePaymentSucceeded(
            event_id=event_id, created=created, subscription_id=_invoice_subscription(obj)
        )
    if event_type == "invoice.payment_failed":
        return InvoicePaymentFailed(
            event_id=event_id, created=created, subscription_id=_invoice_subscription(obj)
        )
    return UnknownEvent(event_id=event_id, created=created, type=event_type)


# Helpers ----------------------------------------------------------------
def _coerce_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _timestamp(value: Any) -> Optional[datetime]:
    seconds = _coerce_int(value)
    if seconds is None:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def _string_id(value: Any) -> Optional[str]:
    # Expanded objects arrive as dicts; otherwise the gateway sends the bare id.
    if isinstance(value, dict):
        value = value.get("id")
    return str(value) if value else None


def _required_id(obj: Dict[str, Any], event_type: str) -> str:
    identifier = _string_id(obj.get("id"))
    if not identifier:
        raise ValidationError(f"{event_type} payload is missing the object id")
    return identifier


def _metadata(obj: Dict[str, Any]) -> Dict[str, str]:
    metadata = obj.get("metadata") or {}
    return {str(key): str(value) for key, value in metadata.items() if value is not None}


def _first_item(obj: Dict[str, Any]) -> Dict[str, Any]:
    items = (obj.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _period_bounds(obj: Dict[str, Any]):
    # Newer gateway API versions report the billing period per item.
    item = _first_item(obj)
    start = obj.get("current_period_start", item.get("current_period_start"))
    end = obj.get("current_period_end", item.get("current_period_end"))
    return _timestamp(start), _timestamp(end)


def _unit_amount(obj: Dict[str, Any]) -> Optional[int]:
    price = _first_item(obj).get("price") or {}
    return _coerce_int(price.get("unit_amount"))


def _invoice_subscription(obj: Dict[str, Any]) -> Optional[str]:
    subscription = _string_id(obj.get("subscription"))
    if subscription:
        return subscription
    details = ((obj.get("parent") or {}).get("subscription_details")) or {}
    return _string_id(details.get("subscription"))
