"""Static pricing table for subscription tiers."""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from ..domain.exceptions import ValidationError
from ..domain.models.subscription import DEFAULT_FEATURES, SUBSCRIPTION_TYPES

BASE_PRICES: Dict[str, int] = {
    "semester": 999,
    "annual": 2999,
    "lifetime": 4999,
}

DURATION_DAYS: Dict[str, int] = {
    "semester": 90,
    "annual": 365,
    "lifetime": 3650,
}

# Gateway billing cadence per tier; lifetime is charged once.
BILLING_INTERVALS: Dict[str, Optional[Tuple[str, int]]] = {
    "semester": ("month", 3),
    "annual": ("year", 1),
    "lifetime": None,
}


def validate_subscription_type(subscription_type: str) -> str:
    if subscription_type not in SUBSCRIPTION_TYPES:
        raise ValidationError(
            f"subscriptionType must be one of {', '.join(SUBSCRIPTION_TYPES)}"
        )
    return subscription_type


def base_price(subscription_type: str) -> int:
    return BASE_PRICES[validate_subscription_type(subscription_type)]


def duration_for(subscription_type: str) -> timedelta:
    return timedelta(days=DURATION_DAYS[validate_subscription_type(subscription_type)])


def end_date_for(subscription_type: str, start_date: datetime) -> datetime:
    return start_date + duration_for(subscription_type)


def list_plans() -> List[Dict[str, Any]]:
    """The purchasable tiers with their price, duration and billing cadence."""
    plans = []
    for subscription_type in SUBSCRIPTION_TYPES:
        interval = BILLING_INTERVALS[subscription_type]
        plans.append(
            {
                "subscription_type": subscription_type,
                "price": BASE_PRICES[subscription_type],
                "duration_days": DURATION_DAYS[subscription_type],
                "interval": interval[0] if interval else None,
                "interval_count": interval[1] if interval else None,
                "recurring": interval is not None,
                "features": list(DEFAULT_FEATURES),
            }
        )
    return plans
