"""
Domain exceptions.

Every exception carries a machine-readable ``code`` that the HTTP layer turns
into the response body; messages are safe to show to API clients.
"""


class BillingError(Exception):
    """Base exception for the billing core."""

    code = "BILLING_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BillingError):
    """Raised when a request is missing fields or carries invalid values."""

    code = "VALIDATION_ERROR"


class AuthenticationError(BillingError):
    """Raised when the caller identity cannot be established."""

    code = "AUTHENTICATION_ERROR"


class PermissionDeniedError(BillingError):
    """Raised when the caller may not act on a resource."""

    code = "FORBIDDEN"


class NotFoundError(BillingError):
    """Raised when a referenced entity does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, identifier: str):
        super().__init__(f"{entity} not found: {identifier}")
        self.entity = entity
        self.identifier = identifier


class ConflictError(BillingError):
    """Raised when a write would break a uniqueness or capacity rule."""

    code = "CONFLICT"


class DuplicateSubscriptionError(ConflictError):
    """Raised when the user already holds an active subscription for a semester."""

    def __init__(self, user_id: str, semester: int):
        super().__init__(
            f"User {user_id} already has an active subscription for semester {semester}"
        )
        self.user_id = user_id
        self.semester = semester


class OfferUnavailableError(ConflictError):
    """Raised when an offer does not apply or has run out of redemptions."""

    def __init__(self, offer_id: str, reason: str):
        super().__init__(f"Offer {offer_id} cannot be applied: {reason}")
        self.offer_id = offer_id
        self.reason = reason


class InvalidTransitionError(ConflictError):
    """Raised when a status change is not allowed by the lifecycle."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move subscription from {current} to {target}")
        self.current = current
        self.target = target


class InvalidSignatureError(BillingError):
    """Raised when a webhook payload fails signature verification."""

    code = "INVALID_SIGNATURE"


class UpstreamError(BillingError):
    """Raised when the payment gateway call fails."""

    code = "UPSTREAM_ERROR"


class WebhookProcessingError(BillingError):
    """An authentic webhook event could not be applied and should be retried."""

    code = "WEBHOOK_PROCESSING_ERROR"

    def __init__(self, event_id: str, event_type: str, cause: Exception):
        super().__init__(f"Failed to apply {event_type} event {event_id}")
        self.event_id = event_id
        self.event_type = event_type
        self.cause = cause


# Errors a webhook handler may raise that will not go away on redelivery.
PERMANENT_WEBHOOK_ERRORS = (NotFoundError, ConflictError, ValidationError)
