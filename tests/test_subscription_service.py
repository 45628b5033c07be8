from datetime import datetime, timedelta, timezone

import pytest

from studypass.domain.exceptions import (
    DuplicateSubscriptionError,
    InvalidTransitionError,
    NotFoundError,
    OfferUnavailableError,
    PermissionDeniedError,
    UpstreamError,
    ValidationError,
)
from studypass.domain.models import AuthenticatedUser, Offer
from studypass.services.subscription_service import SubscriptionService


def create_offer(offer_service, **overrides) -> Offer:
    now = datetime.now(timezone.utc)
    values = dict(
        id="",
        title="Exam season",
        discount_type="percentage",
        discount_value=20,
        subscription_type="annual",
        valid_from=now - timedelta(days=1),
        valid_until=now + timedelta(days=7),
    )
    values.update(overrides)
    return offer_service.create_offer(Offer(**values))


def test_annual_purchase_grants_access(subscription_service, access_gate, persistence, student):
    subscription = subscription_service.create_subscription("user_1", 3, "annual")

    assert subscription.status == "active"
    assert subscription.price == 2999
    assert subscription.original_price == 2999
    assert subscription.end_date - subscription.start_date == timedelta(days=365)
    assert subscription.payment_id.startswith("pay_")
    assert access_gate.has_access("user_1", "quizzes", 3)
    assert not access_gate.has_access("user_1", "quizzes", 4)
    assert not access_gate.has_access("user_1", "live_classes", 3)

    user = persistence.get_user("user_1")
    assert user.has_active_subscription
    assert user.subscription_id == subscription.id


def test_purchase_with_offer_redeems_it(subscription_service, offer_service, student):
    offer = create_offer(offer_service)

    subscription = subscription_service.create_subscription(
        "user_1", 3, "annual", offer_id=offer.id
    )

    assert subscription.price == 2399
    assert subscription.original_price == 2999
    assert subscription.offer_id == offer.id
    assert offer_service.get_offer(offer.id).usage_count == 1


def test_inapplicable_offer_creates_nothing(subscription_service, offer_service, persistence, student):
    offer = create_offer(offer_service, branch="ECE")

    with pytest.raises(OfferUnavailableError):
        subscription_service.create_subscription("user_1", 3, "annual", offer_id=offer.id)

    assert persistence.list_subscriptions_for_user("user_1") == []
    assert offer_service.get_offer(offer.id).usage_count == 0


def test_duplicate_purchase_is_a_conflict(subscription_service, student):
    subscription_service.create_subscription("user_1", 3, "semester")
    with pytest.raises(DuplicateSubscriptionError):
        subscription_service.create_subscription("user_1", 3, "annual")


def test_purchase_input_validation(subscription_service, student):
    with pytest.raises(ValidationError):
        subscription_service.create_subscription("user_1", 0, "annual")
    with pytest.raises(ValidationError):
        subscription_service.create_subscription("user_1", 3, "weekly")
    with pytest.raises(NotFoundError):
        subscription_service.create_subscription("user_404", 3, "annual")


def test_cancel_requires_owner(subscription_service, student, other_student):
    subscription = subscription_service.create_subscription("user_1", 3, "semester")
    with pytest.raises(PermissionDeniedError):
        subscription_service.cancel_subscription(AuthenticatedUser("user_2"), subscription.id)


def test_cancel_revokes_access(subscription_service, access_gate, persistence, student):
    subscription = subscription_service.create_subscription("user_1", 3, "semester")

    cancelled = subscription_service.cancel_subscription(AuthenticatedUser("user_1"), subscription.id)

    assert cancelled.status == "cancelled"
    assert cancelled.cancelled_at is not None
    assert not access_gate.has_access("user_1", "materials", 3)
    assert not persistence.get_user("user_1").has_active_subscription


def test_cancel_calls_gateway_before_local_write(
    subscription_service, persistence, gateway, student
):
    subscription = subscription_service.create_subscription("user_1", 3, "semester")
    persistence.transition_subscription(
        subscription.id, "active", changes={"external_subscription_id": "sub_ext_9"}
    )

    gateway.fail_with = UpstreamError("Failed to cancel subscription: timeout")
    with pytest.raises(UpstreamError):
        subscription_service.cancel_subscription(AuthenticatedUser("user_1"), subscription.id)
    assert persistence.get_subscription(subscription.id).status == "active"

    gateway.fail_with = None
    subscription_service.cancel_by_external_id(AuthenticatedUser("user_1"), "sub_ext_9")
    assert gateway.cancelled == ["sub_ext_9"]
    assert persistence.get_subscription(subscription.id).status == "cancelled"


def test_admin_status_update_follows_lifecycle(subscription_service, student):
    subscription = subscription_service.create_subscription("user_1", 3, "semester")

    assert subscription_service.update_status(subscription.id, "past_due").status == "past_due"
    assert subscription_service.update_status(subscription.id, "cancelled").status == "cancelled"
    with pytest.raises(InvalidTransitionError):
        subscription_service.update_status(subscription.id, "active")
    with pytest.raises(ValidationError):
        subscription_service.update_status(subscription.id, "paused")


def test_expire_lapsed_flips_access(persistence, offer_service, gateway, access_gate, student):
    long_ago = datetime.now(timezone.utc) - timedelta(days=120)
    past_service = SubscriptionService(persistence, offer_service, gateway, clock=lambda: long_ago)
    subscription = past_service.create_subscription("user_1", 3, "semester")
    assert not access_gate.has_access("user_1", "materials", 3)

    service = SubscriptionService(persistence, offer_service, gateway)
    expired = service.expire_lapsed()

    assert [item.id for item in expired] == [subscription.id]
    assert persistence.get_subscription(subscription.id).status == "expired"
    assert not persistence.get_user("user_1").has_active_subscription
    # The semester can be bought again once the old row has expired.
    assert service.create_subscription("user_1", 3, "semester").status == "active"


def test_admin_listing_paginates(subscription_service, persistence, student):
    for semester in range(1, 6):
        subscription_service.create_subscription("user_1", semester, "semester")

    page = subscription_service.list_subscriptions(page=2, limit=2)
    assert page["total"] == 5
    assert page["totalPages"] == 3
    assert len(page["subscriptions"]) == 2

    assert subscription_service.list_subscriptions(status="cancelled")["total"] == 0


def test_purge_refreshes_projection(subscription_service, persistence, student):
    subscription = subscription_service.create_subscription("user_1", 3, "semester")
    subscription_service.delete_subscription(subscription.id)

    assert persistence.get_subscription(subscription.id) is None
    assert not persistence.get_user("user_1").has_active_subscription
    with pytest.raises(NotFoundError):
        subscription_service.delete_subscription(subscription.id)


def test_checkout_records_pending_row(checkout_service, persistence, gateway, offer_service, student):
    offer = create_offer(offer_service, subscription_type="semester", discount_type="fixed", discount_value=199)

    result = checkout_service.create_checkout_session(
        "user_1",
        success_url="https://app.test/success",
        cancel_url="https://app.test/cancel",
        subscription_type="semester",
        offer_id=offer.id,
    )

    assert result.session_id == "cs_test_1"
    pending = persistence.get_subscription_by_checkout_session("cs_test_1")
    assert pending.status == "pending"
    assert pending.price == 800
    assert pending.semester == 3
    assert pending.offer_id == offer.id
    assert offer_service.get_offer(offer.id).usage_count == 0

    request = gateway.checkouts[0]
    assert request.amount == 800
    assert request.interval == "month"
    assert request.interval_count == 3
    assert request.metadata["subscription_id"] == pending.id
    assert persistence.get_user("user_1").external_customer_id == "cus_test_1"


def test_checkout_requires_a_price_selection(checkout_service, student):
    with pytest.raises(ValidationError):
        checkout_service.create_checkout_session(
            "user_1", success_url="https://app.test/s", cancel_url="https://app.test/c"
        )


def test_portal_requires_gateway_customer(checkout_service, persistence, student):
    with pytest.raises(NotFoundError):
        checkout_service.create_portal_session("user_1", "https://app.test/account")

    persistence.set_user_customer_id("user_1", "cus_existing")
    url = checkout_service.create_portal_session("user_1", "https://app.test/account")
    assert url == "https://billing.test/cus_existing"


def test_renewal_after_lapse_without_sweep(persistence, offer_service, gateway, access_gate, student):
    long_ago = datetime.now(timezone.utc) - timedelta(days=120)
    past_service = SubscriptionService(persistence, offer_service, gateway, clock=lambda: long_ago)
    lapsed = past_service.create_subscription("user_1", 3, "semester")
    assert persistence.get_subscription(lapsed.id).status == "active"

    service = SubscriptionService(persistence, offer_service, gateway)
    renewed = service.create_subscription("user_1", 3, "semester")

    assert renewed.status == "active"
    assert persistence.get_subscription(lapsed.id).status == "expired"
    assert access_gate.has_access("user_1", "materials", 3)
    assert persistence.get_user("user_1").subscription_id == renewed.id


def test_lifetime_checkout_rejects_catalogue_price(checkout_service, gateway, persistence, student):
    with pytest.raises(ValidationError):
        checkout_service.create_checkout_session(
            "user_1",
            success_url="https://app.test/success",
            cancel_url="https://app.test/cancel",
            price_id="price_recurring_123",
            subscription_type="lifetime",
        )

    assert gateway.checkouts == []
    assert persistence.list_subscriptions_for_user("user_1") == []
