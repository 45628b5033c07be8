"""Authenticated, idempotent ingestion of payment gateway webhooks."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Type

from ..domain.events import (
    CheckoutSessionCompleted,
    CheckoutSessionExpired,
    InvoicePaymentFailed,
    InvoicePaymentSucceeded,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionUpdated,
    WebhookEvent,
    parse_event,
)
from ..domain.exceptions import (
    PERMANENT_WEBHOOK_ERRORS,
    ValidationError,
    WebhookProcessingError,
)
from ..domain.ports.payment_gateway import PaymentGatewayClient
from ..domain.ports.persistence import WebhookEventRepository
from .subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

OUTCOME_PROCESSED = "processed"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_IGNORED = "ignored"
OUTCOME_UNHANDLED = "unhandled"


@dataclass(slots=True, frozen=True)
class WebhookResult:
    event_id: str
    event_type: str
    outcome: str


class WebhookProcessor:
    """
    Verifies, de-duplicates and dispatches gateway events.

    An event id is recorded only after its handler returns, so a delivery that
    fails with a transient error is applied again when the gateway retries.
    Handler errors that a retry cannot fix are acknowledged and logged.
    """

    def __init__(
        self,
        gateway: PaymentGatewayClient,
        events: WebhookEventRepository,
        subscription_service: SubscriptionService,
        webhook_secret: str,
    ) -> None:
        self._gateway = gateway
        self._events = events
        self._webhook_secret = webhook_secret
        self._handlers: Dict[Type, Callable[..., bool]] = {
            CheckoutSessionCompleted: subscription_service.handle_checkout_completed,
            CheckoutSessionExpired: subscription_service.handle_checkout_expired,
            SubscriptionCreated: subscription_service.handle_subscription_upsert,
            SubscriptionUpdated: subscription_service.handle_subscription_upsert,
            SubscriptionDeleted: subscription_service.handle_subscription_deleted,
            InvoicePaymentSucceeded: subscription_service.handle_invoice_paid,
            InvoicePaymentFailed: subscription_service.handle_invoice_failed,
        }

    def process(
        self, payload: bytes, signature: Optional[str], secret: Optional[str] = None
    ) -> WebhookResult:
        """
        Handle one webhook delivery.

        ``secret`` overrides the configured signing secret.

        Raises:
            InvalidSignatureError: If the payload is not authentic
            ValidationError: If the authentic payload is not a usable event
            WebhookProcessingError: If applying the event failed transiently
        """
        self._gateway.verify_webhook(
            payload, signature, secret if secret is not None else self._webhook_secret
        )
        event = self._decode(payload)

        if self._events.is_event_processed(event.event_id):
            logger.info("Webhook event %s already processed", event.event_id)
            return WebhookResult(event.event_id, event.event_type, OUTCOME_DUPLICATE)

        handler = self._handlers.get(type(event))
        if handler is None:
            logger.info("Unhandled webhook event type: %s", event.event_type)
            self._events.record_event(event.event_id, event.event_type)
            return WebhookResult(event.event_id, event.event_type, OUTCOME_UNHANDLED)

        try:
            applied = handler(event)
        except PERMANENT_WEBHOOK_ERRORS as exc:
            logger.warning(
                "Webhook event %s (%s) rejected: %s", event.event_id, event.event_type, exc
            )
            self._events.record_event(event.event_id, event.event_type)
            return WebhookResult(event.event_id, event.event_type, OUTCOME_IGNORED)
        except Exception as exc:
            logger.exception(
                "Failed to apply webhook event %s (%s)", event.event_id, event.event_type
            )
            raise WebhookProcessingError(event.event_id, event.event_type, exc) from exc

        self._events.record_event(event.event_id, event.event_type)
        outcome = OUTCOME_PROCESSED if applied else OUTCOME_IGNORED
        logger.info("Webhook event %s (%s) %s", event.event_id, event.event_type, outcome)
        return WebhookResult(event.event_id, event.event_type, outcome)

    @staticmethod
    def _decode(payload: bytes) -> WebhookEvent:
        try:
            data = json.loads(payload)
        except ValueError as exc:
            raise ValidationError("Webhook payload is not valid JSON") from exc
        return parse_event(data)
