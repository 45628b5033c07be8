from datetime import datetime, timedelta, timezone

import pytest

from studypass.domain.exceptions import NotFoundError, OfferUnavailableError, ValidationError
from studypass.domain.models import Offer, PurchaseContext, Subscription
from studypass.services.offer_service import discounted_price, evaluate_offer
from studypass.services.pricing import BASE_PRICES, base_price, end_date_for, list_plans

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


def make_offer(**overrides) -> Offer:
    values = dict(
        id="off_1",
        title="New year",
        discount_type="percentage",
        discount_value=20,
        subscription_type="annual",
        valid_from=NOW - timedelta(days=1),
        valid_until=NOW + timedelta(days=30),
    )
    values.update(overrides)
    return Offer(**values)


CONTEXT = PurchaseContext(branch="CSE", semester=3, subscription_type="annual")


def test_base_prices_and_durations():
    assert base_price("semester") == 999
    assert base_price("annual") == 2999
    assert base_price("lifetime") == 4999
    assert end_date_for("semester", NOW) - NOW == timedelta(days=90)
    assert end_date_for("annual", NOW) - NOW == timedelta(days=365)
    assert end_date_for("lifetime", NOW) - NOW == timedelta(days=3650)


def test_unknown_subscription_type_is_rejected():
    with pytest.raises(ValidationError):
        base_price("monthly")


def test_wildcard_offer_applies():
    assert evaluate_offer(make_offer(), CONTEXT, NOW).applies


@pytest.mark.parametrize(
    "overrides, reason",
    [
        ({"is_active": False}, "offer is inactive"),
        ({"branch": "ECE"}, "offer does not apply to this branch"),
        ({"semester": "5"}, "offer does not apply to this semester"),
        ({"subscription_type": "semester"}, "offer does not apply to this subscription type"),
        ({"valid_from": NOW + timedelta(days=1)}, "offer is not yet valid"),
        ({"valid_until": NOW - timedelta(seconds=1)}, "offer has expired"),
        ({"usage_limit": 5, "usage_count": 5}, "usage limit reached"),
    ],
)
def test_offer_rejections(overrides, reason):
    evaluation = evaluate_offer(make_offer(**overrides), CONTEXT, NOW)
    assert not evaluation.applies
    assert evaluation.reason == reason


def test_specific_branch_and_semester_match():
    offer = make_offer(branch="CSE", semester="3")
    assert evaluate_offer(offer, CONTEXT, NOW).applies


def test_evaluation_is_pure():
    offer = make_offer(usage_limit=10, usage_count=3)
    first = evaluate_offer(offer, CONTEXT, NOW)
    second = evaluate_offer(offer, CONTEXT, NOW)
    assert first == second
    assert offer.usage_count == 3


@pytest.mark.parametrize(
    "discount_type, value, expected",
    [
        ("percentage", 20, 2399),
        ("percentage", 100, 0),
        ("fixed", 500, 2499),
        ("fixed", 10_000, 0),
        ("free", 0, 0),
    ],
)
def test_discounted_price(discount_type, value, expected):
    offer = make_offer(discount_type=discount_type, discount_value=value)
    price = discounted_price(offer, BASE_PRICES["annual"])
    assert price == expected
    assert 0 <= price <= BASE_PRICES["annual"]


def test_resolve_for_purchase_raises_conflict(offer_service):
    offer = offer_service.create_offer(make_offer(id="", subscription_type="semester"))
    with pytest.raises(OfferUnavailableError) as excinfo:
        offer_service.resolve_for_purchase(offer.id, CONTEXT, NOW)
    assert "subscription type" in excinfo.value.reason


def test_missing_offer_is_not_found(offer_service):
    with pytest.raises(NotFoundError):
        offer_service.get_offer("off_missing")


def test_create_offer_validation(offer_service):
    with pytest.raises(ValidationError):
        offer_service.create_offer(make_offer(id="", discount_value=150))
    with pytest.raises(ValidationError):
        offer_service.create_offer(make_offer(id="", valid_until=NOW - timedelta(days=2)))
    with pytest.raises(ValidationError):
        offer_service.create_offer(make_offer(id="", discount_type="bogo"))


def test_list_active_and_applicable(offer_service):
    now = datetime.now(timezone.utc)
    window = dict(valid_from=now - timedelta(days=1), valid_until=now + timedelta(days=1))
    annual = offer_service.create_offer(make_offer(id="", title="Annual", **window))
    offer_service.create_offer(make_offer(id="", title="ECE only", branch="ECE", **window))
    offer_service.create_offer(
        make_offer(
            id="",
            title="Expired",
            valid_from=now - timedelta(days=10),
            valid_until=now - timedelta(days=5),
        )
    )

    active_titles = {offer.title for offer in offer_service.list_active()}
    assert active_titles == {"Annual", "ECE only"}

    applicable = offer_service.list_applicable(CONTEXT)
    assert [offer.id for offer in applicable] == [annual.id]


def test_plans_list_every_tier():
    plans = {plan["subscription_type"]: plan for plan in list_plans()}

    assert plans["semester"]["price"] == 999
    assert (plans["semester"]["interval"], plans["semester"]["interval_count"]) == ("month", 3)
    assert plans["annual"]["duration_days"] == 365
    assert plans["lifetime"]["recurring"] is False
    assert plans["lifetime"]["interval"] is None


def test_update_offer_applies_partial_changes(offer_service):
    offer = offer_service.create_offer(make_offer(id="", usage_limit=10))

    updated = offer_service.update_offer(offer.id, {"discount_value": 35, "semester": "4"})

    assert updated.discount_value == 35
    assert updated.semester == "4"
    assert updated.title == offer.title
    assert updated.usage_limit == 10


def test_update_offer_validation(offer_service):
    offer = offer_service.create_offer(make_offer(id=""))

    with pytest.raises(ValidationError):
        offer_service.update_offer(offer.id, {"discount_value": 120})
    with pytest.raises(ValidationError):
        offer_service.update_offer(offer.id, {"usage_count": 0})
    with pytest.raises(ValidationError):
        offer_service.update_offer(offer.id, {"colour": "red"})
    with pytest.raises(NotFoundError):
        offer_service.update_offer("off_missing", {"title": "Gone"})
    assert offer_service.get_offer(offer.id).discount_value == 20


def test_usage_limit_cannot_drop_below_usage(offer_service, persistence, student):
    offer = offer_service.create_offer(make_offer(id="", usage_limit=5))
    persistence.create_subscription(
        make_subscription_for_offer(offer.id), redeem_offer_id=offer.id
    )
    persistence.create_subscription(
        make_subscription_for_offer(offer.id, semester=4), redeem_offer_id=offer.id
    )

    with pytest.raises(ValidationError):
        offer_service.update_offer(offer.id, {"usage_limit": 1})
    assert offer_service.update_offer(offer.id, {"usage_limit": 2}).usage_limit == 2


def test_toggle_and_delete_offer(offer_service):
    offer = offer_service.create_offer(make_offer(id=""))

    assert offer_service.toggle_offer(offer.id).is_active is False
    assert offer_service.list_all(is_active=True) == []
    assert offer_service.toggle_offer(offer.id).is_active is True

    offer_service.delete_offer(offer.id)
    with pytest.raises(NotFoundError):
        offer_service.get_offer(offer.id)
    with pytest.raises(NotFoundError):
        offer_service.delete_offer(offer.id)


def test_list_all_filters_on_exact_values(offer_service):
    offer_service.create_offer(make_offer(id="", title="Everyone"))
    offer_service.create_offer(make_offer(id="", title="ECE", branch="ECE"))
    offer_service.create_offer(
        make_offer(id="", title="Semester", subscription_type="semester", is_active=False)
    )

    assert {offer.title for offer in offer_service.list_all()} == {"Everyone", "ECE", "Semester"}
    assert [offer.title for offer in offer_service.list_all(branch="ECE")] == ["ECE"]
    assert [offer.title for offer in offer_service.list_all(is_active=False)] == ["Semester"]
    assert [
        offer.title for offer in offer_service.list_all(subscription_type="semester")
    ] == ["Semester"]


def test_offer_stats(offer_service, persistence, student):
    live = offer_service.create_offer(make_offer(id=""))
    offer_service.create_offer(
        make_offer(id="", valid_from=NOW - timedelta(days=10), valid_until=NOW - timedelta(days=5))
    )
    offer_service.create_offer(make_offer(id="", is_active=False))
    persistence.create_subscription(
        make_subscription_for_offer(live.id, price=2399), redeem_offer_id=live.id
    )

    stats = offer_service.stats(NOW)

    assert stats == {
        "total": 3,
        "active": 1,
        "expired": 1,
        "totalUses": 1,
        "totalSavings": 600,
    }


def make_subscription_for_offer(offer_id, semester=3, price=2399) -> Subscription:
    return Subscription(
        id="",
        user_id="user_1",
        semester=semester,
        branch="CSE",
        subscription_type="annual",
        status="active",
        start_date=datetime.now(timezone.utc),
        end_date=datetime.now(timezone.utc) + timedelta(days=365),
        price=price,
        original_price=2999,
        offer_id=offer_id,
    )
