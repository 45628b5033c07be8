import hashlib
import hmac
import json
import time
from typing import Any, Callable, Dict, List, Optional

import jwt
import pytest
from fastapi.testclient import TestClient

from studypass.core.app_factory import create_application
from studypass.core.config import Settings
from studypass.domain.models import User
from studypass.domain.ports.payment_gateway import CheckoutRequest, CheckoutSession
from studypass.infrastructure.payments.stripe_gateway import StripeGateway
from studypass.infrastructure.persistence.sqlite import SQLitePersistence
from studypass.services.access_gate import AccessGate
from studypass.services.checkout_service import CheckoutService
from studypass.services.offer_service import OfferService
from studypass.services.subscription_service import SubscriptionService
from studypass.services.webhook_processor import WebhookProcessor

WEBHOOK_SECRET = "whsec_test_secret"
AUTH_SECRET = "test-auth-secret"


class FakeGateway(StripeGateway):
    """Records outbound calls; webhook verification is the real Stripe check."""

    def __init__(self) -> None:
        super().__init__("sk_test_fake")
        self.customers: List[Dict[str, Any]] = []
        self.checkouts: List[CheckoutRequest] = []
        self.cancelled: List[str] = []
        self.fail_with: Optional[Exception] = None

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def create_customer(self, email, name, metadata) -> str:
        self._maybe_fail()
        self.customers.append({"email": email, "name": name, "metadata": metadata})
        return f"cus_test_{len(self.customers)}"

    def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        self._maybe_fail()
        self.checkouts.append(request)
        session_id = f"cs_test_{len(self.checkouts)}"
        return CheckoutSession(id=session_id, url=f"https://checkout.test/{session_id}")

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        self._maybe_fail()
        return f"https://billing.test/{customer_id}"

    def cancel_subscription(self, external_subscription_id: str) -> None:
        self._maybe_fail()
        self.cancelled.append(external_subscription_id)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def persistence(tmp_path):
    store = SQLitePersistence(tmp_path / "billing.db")
    yield store
    store.close()


@pytest.fixture
def student(persistence) -> User:
    return persistence.save_user(
        User(id="user_1", email="asha@example.com", name="Asha", branch="CSE", semester=3)
    )


@pytest.fixture
def other_student(persistence) -> User:
    return persistence.save_user(
        User(id="user_2", email="ravi@example.com", name="Ravi", branch="ECE", semester=3)
    )


@pytest.fixture
def offer_service(persistence) -> OfferService:
    return OfferService(persistence)


@pytest.fixture
def subscription_service(persistence, offer_service, gateway) -> SubscriptionService:
    return SubscriptionService(persistence, offer_service, gateway)


@pytest.fixture
def checkout_service(persistence, gateway, offer_service, subscription_service) -> CheckoutService:
    return CheckoutService(persistence, gateway, offer_service, subscription_service)


@pytest.fixture
def webhook_processor(persistence, gateway, subscription_service) -> WebhookProcessor:
    return WebhookProcessor(gateway, persistence, subscription_service, WEBHOOK_SECRET)


@pytest.fixture
def access_gate(persistence) -> AccessGate:
    return AccessGate(persistence)


def sign(body: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(
        secret.encode("utf-8"), f"{timestamp}.".encode("utf-8") + body, hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def signed_event() -> Callable[..., Dict[str, Any]]:
    """Build a gateway event; returns the raw body and its signature header."""
    counter = {"value": 0}

    def _build(
        event_type: str,
        obj: Dict[str, Any],
        event_id: Optional[str] = None,
        created: Optional[int] = None,
    ) -> Dict[str, Any]:
        counter["value"] += 1
        payload = {
            "id": event_id or f"evt_test_{counter['value']}",
            "type": event_type,
            "created": created if created is not None else 1_700_000_000 + counter["value"],
            "data": {"object": obj},
        }
        body = json.dumps(payload).encode("utf-8")
        return {"body": body, "signature": sign(body), "id": payload["id"]}

    return _build


@pytest.fixture
def settings(tmp_path, monkeypatch) -> Settings:
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "api.db"))
    monkeypatch.setenv("AUTH_TOKEN_SECRET", AUTH_SECRET)
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_fake")
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "http://localhost:3000")
    return Settings()


@pytest.fixture
def client(settings, gateway):
    app = create_application(settings, payment_gateway=gateway)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def api_store(client) -> SQLitePersistence:
    return client.app.state.container.persistence


def token_for(user_id: str, role: str = "student") -> str:
    return jwt.encode({"userId": user_id, "role": role}, AUTH_SECRET, algorithm="HS256")


@pytest.fixture
def auth_headers() -> Callable[..., Dict[str, str]]:
    def _headers(user_id: str, role: str = "student") -> Dict[str, str]:
        return {"Authorization": f"Bearer {token_for(user_id, role)}"}

    return _headers
