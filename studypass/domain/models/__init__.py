"""Domain models for the studypass billing core."""

from .offer import Offer, OfferEvaluation, PurchaseContext
from .subscription import Subscription
from .user import AuthenticatedUser, User

__all__ = [
    "AuthenticatedUser",
    "Offer",
    "OfferEvaluation",
    "PurchaseContext",
    "Subscription",
    "User",
]
