from dataclasses import dataclass

from .config import Settings
from ..domain.ports.payment_gateway import PaymentGatewayClient
from ..domain.ports.persistence import PersistenceGateway
from ..services.access_gate import AccessGate
from ..services.checkout_service import CheckoutService
from ..services.offer_service import OfferService
from ..services.subscription_service import SubscriptionService
from ..services.webhook_processor import WebhookProcessor


@dataclass(slots=True)
class ApplicationContainer:
    """Dependency registry shared across the FastAPI application lifecycle."""

    settings: Settings
    persistence: PersistenceGateway
    payment_gateway: PaymentGatewayClient
    offer_service: OfferService
    subscription_service: SubscriptionService
    checkout_service: CheckoutService
    webhook_processor: WebhookProcessor
    access_gate: AccessGate


def build_container(
    settings: Settings,
    persistence: PersistenceGateway,
    payment_gateway: PaymentGatewayClient,
) -> ApplicationContainer:
    offer_service = OfferService(persistence)
    subscription_service = SubscriptionService(persistence, offer_service, payment_gateway)
    return ApplicationContainer(
        settings=settings,
        persistence=persistence,
        payment_gateway=payment_gateway,
        offer_service=offer_service,
        subscription_service=subscription_service,
        checkout_service=CheckoutService(
            persistence, payment_gateway, offer_service, subscription_service
        ),
        webhook_processor=WebhookProcessor(
            payment_gateway,
            persistence,
            subscription_service,
            settings.stripe_webhook_secret,
        ),
        access_gate=AccessGate(persistence),
    )
