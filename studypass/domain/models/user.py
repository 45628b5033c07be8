"""User projection and authenticated caller context."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


class User:
    """
    Projection of a user record relevant to billing.

    The subscription flags are a cache derived from the subscription rows and
    are rewritten whenever a subscription for this user changes.

    Attributes:
        id: Unique identifier
        email: Contact email passed to the payment gateway
        name: Display name
        branch: Academic branch
        semester: Current semester
        role: student or admin
        external_customer_id: Payment gateway customer id
        has_active_subscription: Cached flag for fast access checks
        subscription_id: Currently active subscription, if any
        created_at: Record creation timestamp
        updated_at: Last update timestamp
    """

    def __init__(
        self,
        id: str,
        email: str,
        name: Optional[str] = None,
        branch: Optional[str] = None,
        semester: Optional[int] = None,
        role: str = "student",
        external_customer_id: Optional[str] = None,
        has_active_subscription: bool = False,
        subscription_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        self.id = id
        self.email = email
        self.name = name
        self.branch = branch
        self.semester = semester
        self.role = role
        self.external_customer_id = external_customer_id
        self.has_active_subscription = has_active_subscription
        self.subscription_id = subscription_id
        self.created_at = created_at
        self.updated_at = updated_at

    def __repr__(self) -> str:
        return (
            f"<User id={self.id} email={self.email} "
            f"active_subscription={self.has_active_subscription}>"
        )


@dataclass(slots=True, frozen=True)
class AuthenticatedUser:
    """Identity supplied by the authentication collaborator."""

    id: str
    role: str = "student"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
