import pytest

from studypass.domain.models.subscription import (
    allowed_predecessors,
    can_transition,
    map_gateway_status,
)


@pytest.mark.parametrize(
    "current, target",
    [
        ("pending", "active"),
        ("pending", "cancelled"),
        ("pending", "expired"),
        ("active", "cancelled"),
        ("active", "past_due"),
        ("active", "expired"),
        ("past_due", "active"),
        ("past_due", "cancelled"),
        ("active", "active"),
        ("cancelled", "cancelled"),
    ],
)
def test_allowed_transitions(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize(
    "current, target",
    [
        ("cancelled", "active"),
        ("expired", "active"),
        ("expired", "past_due"),
        ("pending", "past_due"),
        ("past_due", "pending"),
        ("active", "pending"),
    ],
)
def test_rejected_transitions(current, target):
    assert not can_transition(current, target)


def test_allowed_predecessors():
    assert allowed_predecessors("active") == ["active", "past_due", "pending"]
    assert allowed_predecessors("past_due") == ["active", "past_due"]
    assert allowed_predecessors("cancelled") == ["active", "cancelled", "past_due", "pending"]


@pytest.mark.parametrize(
    "gateway_status, expected",
    [
        ("active", "active"),
        ("trialing", "active"),
        ("past_due", "past_due"),
        ("unpaid", "past_due"),
        ("canceled", "cancelled"),
        ("incomplete_expired", "expired"),
        ("incomplete", "pending"),
        (None, "pending"),
    ],
)
def test_gateway_status_mapping(gateway_status, expected):
    assert map_gateway_status(gateway_status) == expected
