from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol


@dataclass(slots=True, frozen=True)
class CheckoutRequest:
    """Everything the gateway needs to open a hosted checkout page."""

    customer_id: str
    success_url: str
    cancel_url: str
    price_id: Optional[str] = None
    amount: Optional[int] = None
    product_name: Optional[str] = None
    interval: Optional[str] = None
    interval_count: int = 1
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class CheckoutSession:
    id: str
    url: Optional[str]


class PaymentGatewayClient(Protocol):
    """Payment processor capability used by the billing core.

    Implementations raise :class:`~studypass.domain.exceptions.UpstreamError`
    when the processor call fails and
    :class:`~studypass.domain.exceptions.InvalidSignatureError` when a webhook
    signature does not verify.
    """

    def create_customer(self, email: str, name: Optional[str], metadata: Dict[str, str]) -> str:
        ...

    def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        ...

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        ...

    def cancel_subscription(self, external_subscription_id: str) -> None:
        ...

    def verify_webhook(self, payload: bytes, signature: Optional[str], secret: str) -> None:
        ...
