"""Feature access decisions for content services."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from ..domain.ports.persistence import PersistenceGateway
from .subscription_service import Clock, utcnow

logger = logging.getLogger(__name__)


class AccessGate:
    """Answers whether a user may use a feature right now."""

    def __init__(self, persistence: PersistenceGateway, clock: Clock = utcnow) -> None:
        self._persistence = persistence
        self._clock = clock

    def has_access(
        self,
        user_id: str,
        feature: str,
        semester: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        True when the user holds an active, unexpired subscription that lists
        ``feature``. Without ``semester`` the user's current semester is used.
        Unknown users have no access.
        """
        user = self._persistence.get_user(user_id)
        if not user:
            return False
        target_semester = semester if semester is not None else user.semester
        moment = now or self._clock()
        subscription = self._persistence.find_active_subscription(user.id, target_semester, moment)
        allowed = subscription is not None and subscription.grants(feature, moment)
        logger.debug(
            "Access check user=%s feature=%s semester=%s allowed=%s",
            user_id,
            feature,
            target_semester,
            allowed,
        )
        return allowed
