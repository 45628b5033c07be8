"""Stripe implementation of the payment gateway port."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import stripe

from ...domain.exceptions import InvalidSignatureError, UpstreamError
from ...domain.ports.payment_gateway import CheckoutRequest, CheckoutSession, PaymentGatewayClient

logger = logging.getLogger(__name__)


class StripeGateway(PaymentGatewayClient):
    """Talks to Stripe with an explicit API key on every call."""

    def __init__(
        self,
        secret_key: Optional[str],
        currency: str = "inr",
        webhook_tolerance: int = 300,
    ) -> None:
        self._secret_key = secret_key
        self._currency = currency
        self._webhook_tolerance = webhook_tolerance

    def _require_key(self) -> str:
        if not self._secret_key:
            raise UpstreamError("Stripe not configured. Please set STRIPE_SECRET_KEY.")
        return self._secret_key

    def create_customer(self, email: str, name: Optional[str], metadata: Dict[str, str]) -> str:
        api_key = self._require_key()
        try:
            customer = stripe.Customer.create(
                api_key=api_key,
                email=email,
                name=name,
                metadata=metadata,
            )
        except stripe.StripeError as exc:
            logger.error("Failed to create Stripe customer: %s", exc)
            raise UpstreamError(f"Failed to create customer: {exc}") from exc
        return customer.id

    def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        api_key = self._require_key()
        params: Dict[str, Any] = {
            "customer": request.customer_id,
            "success_url": request.success_url,
            "cancel_url": request.cancel_url,
            "metadata": request.metadata,
        }
        if request.price_id:
            params["mode"] = "subscription"
            params["line_items"] = [{"price": request.price_id, "quantity": 1}]
        else:
            price_data: Dict[str, Any] = {
                "currency": self._currency,
                # Local prices are whole currency units; Stripe wants minor units.
                "unit_amount": int(request.amount or 0) * 100,
                "product_data": {"name": request.product_name or "Subscription"},
            }
            if request.interval:
                price_data["recurring"] = {
                    "interval": request.interval,
                    "interval_count": request.interval_count,
                }
            params["mode"] = "subscription" if request.interval else "payment"
            params["line_items"] = [{"price_data": price_data, "quantity": 1}]
        if params["mode"] == "subscription":
            params["subscription_data"] = {"metadata": request.metadata}

        try:
            session = stripe.checkout.Session.create(api_key=api_key, **params)
        except stripe.StripeError as exc:
            logger.error("Failed to create Stripe checkout session: %s", exc)
            raise UpstreamError(f"Failed to create checkout session: {exc}") from exc
        return CheckoutSession(id=session.id, url=session.url)

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        api_key = self._require_key()
        try:
            session = stripe.billing_portal.Session.create(
                api_key=api_key,
                customer=customer_id,
                return_url=return_url,
            )
        except stripe.StripeError as exc:
            logger.error("Failed to create Stripe portal session: %s", exc)
            raise UpstreamError(f"Failed to create portal session: {exc}") from exc
        return session.url

    def cancel_subscription(self, external_subscription_id: str) -> None:
        api_key = self._require_key()
        try:
            stripe.Subscription.cancel(external_subscription_id, api_key=api_key)
        except stripe.StripeError as exc:
            logger.error(
                "Failed to cancel Stripe subscription %s: %s", external_subscription_id, exc
            )
            raise UpstreamError(f"Failed to cancel subscription: {exc}") from exc

    def verify_webhook(self, payload: bytes, signature: Optional[str], secret: str) -> None:
        if not secret:
            raise InvalidSignatureError("Webhook secret not configured")
        if not signature:
            raise InvalidSignatureError("Missing webhook signature")
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature,
                secret,
                tolerance=self._webhook_tolerance,
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as exc:
            raise InvalidSignatureError("Invalid signature") from exc
