import logging

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ...core.config import Settings
from ...core.dependencies import get_settings
from ...domain.exceptions import AuthenticationError, PermissionDeniedError
from ...domain.models import AuthenticatedUser

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> AuthenticatedUser:
    """Decode the caller's bearer token into an :class:`AuthenticatedUser`."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationError("Missing bearer token")
    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.auth_token_secret,
            algorithms=[settings.auth_token_algorithm],
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        logger.debug("Rejected bearer token: %s", exc)
        raise AuthenticationError("Invalid token") from exc

    user_id = payload.get("userId") or payload.get("sub")
    if not user_id:
        raise AuthenticationError("Token does not identify a user")
    return AuthenticatedUser(id=str(user_id), role=str(payload.get("role") or "student"))


def require_admin(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
    if not user.is_admin:
        raise PermissionDeniedError("Admin access required")
    return user
