import json
import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ...domain.exceptions import (
    ConflictError,
    DuplicateSubscriptionError,
    OfferUnavailableError,
)
from ...domain.models import Offer, Subscription, User
from ...domain.models.subscription import (
    STATUS_ACTIVE,
    STATUS_EXPIRED,
    STATUS_PENDING,
    SUBSCRIPTION_STATUSES,
    allowed_predecessors,
)
from ...domain.ports.persistence import PersistenceGateway

logger = logging.getLogger(__name__)


class SQLitePersistence(PersistenceGateway):
    """SQLite-backed implementation of the persistence gateway."""

    # Columns a status transition may rewrite alongside the status itself.
    _TRANSITION_COLUMNS = frozenset(
        {
            "start_date",
            "end_date",
            "cancelled_at",
            "last_payment_date",
            "last_payment_failed",
            "external_subscription_id",
            "external_customer_id",
            "payment_id",
            "price",
            "original_price",
        }
    )

    def __init__(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._initialize()

    def _initialize(self) -> None:
        with self._conn:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL,
                    name TEXT,
                    branch TEXT,
                    semester INTEGER,
                    role TEXT NOT NULL DEFAULT 'student',
                    external_customer_id TEXT UNIQUE,
                    has_active_subscription INTEGER NOT NULL DEFAULT 0,
                    subscription_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS offers (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    discount_type TEXT NOT NULL,
                    discount_value REAL NOT NULL DEFAULT 0,
                    subscription_type TEXT NOT NULL,
                    branch TEXT NOT NULL DEFAULT 'all',
                    semester TEXT NOT NULL DEFAULT 'all',
                    valid_from TEXT NOT NULL,
                    valid_until TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    usage_limit INTEGER,
                    usage_count INTEGER NOT NULL DEFAULT 0,
                    created_by TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    CHECK (usage_limit IS NULL OR usage_count <= usage_limit)
                );

                CREATE TABLE IF NOT EXISTS subscriptions (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    semester INTEGER NOT NULL,
                    branch TEXT,
                    subscription_type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    start_date TEXT NOT NULL,
                    end_date TEXT NOT NULL,
                    price INTEGER NOT NULL,
                    original_price INTEGER NOT NULL,
                    features TEXT NOT NULL,
                    external_subscription_id TEXT UNIQUE,
                    external_customer_id TEXT,
                    checkout_session_id TEXT UNIQUE,
                    offer_id TEXT,
                    payment_id TEXT,
                    payment_method TEXT,
                    cancelled_at TEXT,
                    last_payment_date TEXT,
                    last_payment_failed TEXT,
                    last_event_at INTEGER,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    CHECK (price >= 0 AND price <= original_price),
                    CHECK (end_date > start_date)
                );

                CREATE UNIQUE INDEX IF NOT EXISTS uq_subscriptions_active_semester
                    ON subscriptions(user_id, semester) WHERE status = 'active';

                CREATE INDEX IF NOT EXISTS idx_subscriptions_user_id
                    ON subscriptions(user_id);

                CREATE INDEX IF NOT EXISTS idx_subscriptions_status_end_date
                    ON subscriptions(status, end_date);

                CREATE TABLE IF NOT EXISTS webhook_events (
                    event_id TEXT PRIMARY KEY,
                    event_type TEXT NOT NULL,
                    processed_at TEXT NOT NULL
                );
                """
            )

    def close(self) -> None:
        self._conn.close()

    # UserRepository API ----------------------------------------------------
    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM users WHERE id = ?", (user_id,))
            row = cur.fetchone()
        return self._row_to_user(row) if row else None

    def get_user_by_customer_id(self, customer_id: str) -> Optional[User]:
        with self._lock:
            cur = self._conn.execute(
                "SELECT * FROM users WHERE external_customer_id = ?", (customer_id,)
            )
            row = cur.fetchone()
        return self._row_to_user(row) if row else None

    def save_user(self, user: User) -> User:
        now = self._now()
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO users (
                    id, email, name, branch, semester, role, external_customer_id,
                    has_active_subscription, subscription_id, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    email = excluded.email,
                    name = excluded.name,
                    branch = excluded.branch,
                    semester = excluded.semester,
                    role = excluded.role,
                    external_customer_id = excluded.external_customer_id,
                    updated_at = excluded.updated_at
                """,
                (
                    user.id,
                    user.email,
                    user.name,
                    user.branch,
                    user.semester,
                    user.role,
                    user.external_customer_id,
                    int(user.has_active_subscription),
                    user.subscription_id,
                    now,
                    now,
                ),
            )
            cur = self._conn.execute("SELECT * FROM users WHERE id = ?", (user.id,))
            row = cur.fetchone()
        if not row:
            raise RuntimeError("Failed to persist user.")
        return self._row_to_user(row)

    def set_user_customer_id(self, user_id: str, customer_id: str) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE users SET external_customer_id = ?, updated_at = ? WHERE id = ?",
                (customer_id, self._now(), user_id),
            )

    def refresh_user_projection(self, user_id: str) -> Optional[User]:
        now = self._now()
        with self._lock, self._conn:
            cur = self._conn.execute(
                """
                SELECT id FROM subscriptions
                WHERE user_id = ? AND status = ? AND end_date > ?
                ORDER BY end_date DESC
                LIMIT 1
                """,
                (user_id, STATUS_ACTIVE, now),
            )
            active = cur.fetchone()
            self._conn.execute(
                """
                UPDATE users
                SET has_active_subscription = ?, subscription_id = ?, updated_at = ?
                WHERE id = ?
                """,
                (int(active is not None), active["id"] if active else None, now, user_id),
            )
            cur = self._conn.execute("SELECT * FROM users WHERE id = ?", (user_id,))
            row = cur.fetchone()
        return self._row_to_user(row) if row else None

    # OfferRepository API ---------------------------------------------------
    def create_offer(self, offer: Offer) -> Offer:
        offer_id = offer.id or self._new_id("off")
        now = self._now()
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO offers (
                    id, title, description, discount_type, discount_value,
                    subscription_type, branch, semester, valid_from, valid_until,
                    is_active, usage_limit, usage_count, created_by, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    offer_id,
                    offer.title,
                    offer.description,
                    offer.discount_type,
                    offer.discount_value,
                    offer.subscription_type,
                    str(offer.branch),
                    str(offer.semester),
                    self._format_datetime(offer.valid_from),
                    self._format_datetime(offer.valid_until),
                    int(offer.is_active),
                    offer.usage_limit,
                    offer.usage_count,
                    offer.created_by,
                    now,
                    now,
                ),
            )
            cur = self._conn.execute("SELECT * FROM offers WHERE id = ?", (offer_id,))
            row = cur.fetchone()
        if not row:
            raise RuntimeError("Failed to persist offer.")
        return self._row_to_offer(row)

    def get_offer(self, offer_id: str) -> Optional[Offer]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM offers WHERE id = ?", (offer_id,))
            row = cur.fetchone()
        return self._row_to_offer(row) if row else None

    def list_offers(self, *, valid_at: Optional[datetime] = None) -> List[Offer]:
        query = "SELECT * FROM offers"
        params: List[Any] = []
        if valid_at is not None:
            moment = self._format_datetime(valid_at)
            query += (
                " WHERE is_active = 1 AND valid_from <= ? AND valid_until >= ?"
                " AND (usage_limit IS NULL OR usage_count < usage_limit)"
            )
            params.extend([moment, moment])
        query += " ORDER BY created_at DESC"
        with self._lock:
            cur = self._conn.execute(query, params)
            rows = cur.fetchall()
        return [self._row_to_offer(row) for row in rows]

    def update_offer(self, offer: Offer) -> Optional[Offer]:
        with self._lock, self._conn:
            cur = self._conn.execute(
                """
                UPDATE offers
                SET title = ?, description = ?, discount_type = ?, discount_value = ?,
                    subscription_type = ?, branch = ?, semester = ?, valid_from = ?,
                    valid_until = ?, is_active = ?, usage_limit = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    offer.title,
                    offer.description,
                    offer.discount_type,
                    offer.discount_value,
                    offer.subscription_type,
                    str(offer.branch),
                    str(offer.semester),
                    self._format_datetime(offer.valid_from),
                    self._format_datetime(offer.valid_until),
                    int(offer.is_active),
                    offer.usage_limit,
                    self._now(),
                    offer.id,
                ),
            )
            if cur.rowcount == 0:
                return None
            cur = self._conn.execute("SELECT * FROM offers WHERE id = ?", (offer.id,))
            row = cur.fetchone()
        return self._row_to_offer(row) if row else None

    def delete_offer(self, offer_id: str) -> bool:
        with self._lock, self._conn:
            cur = self._conn.execute("DELETE FROM offers WHERE id = ?", (offer_id,))
            return cur.rowcount > 0

    def offer_stats(self, now: datetime) -> Dict[str, int]:
        moment = self._format_datetime(now)
        with self._lock:
            cur = self._conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(is_active = 1 AND valid_from <= ? AND valid_until >= ?), 0)
                        AS active,
                    COALESCE(SUM(valid_until < ?), 0) AS expired,
                    COALESCE(SUM(usage_count), 0) AS total_uses
                FROM offers
                """,
                (moment, moment, moment),
            )
            counts = cur.fetchone()
            cur = self._conn.execute(
                """
                SELECT COALESCE(SUM(original_price - price), 0) AS savings
                FROM subscriptions
                WHERE offer_id IS NOT NULL AND status != ?
                """,
                (STATUS_PENDING,),
            )
            savings = cur.fetchone()
        return {
            "total": counts["total"],
            "active": counts["active"],
            "expired": counts["expired"],
            "totalUses": counts["total_uses"],
            "totalSavings": savings["savings"],
        }

    # SubscriptionRepository API --------------------------------------------
    def create_subscription(
        self, subscription: Subscription, *, redeem_offer_id: Optional[str] = None
    ) -> Subscription:
        """Insert a subscription, redeeming ``redeem_offer_id`` in the same transaction."""
        subscription_id = subscription.id or self._new_id("sub")
        now = self._now()
        with self._lock:
            try:
                with self._conn:
                    if redeem_offer_id and not self._redeem_offer(redeem_offer_id, now):
                        raise OfferUnavailableError(redeem_offer_id, "usage limit reached")
                    if subscription.status == STATUS_ACTIVE:
                        self._expire_lapsed_for_semester(
                            subscription.user_id, subscription.semester, now
                        )
                    self._insert_subscription(subscription_id, subscription, now)
            except sqlite3.IntegrityError as exc:
                raise self._integrity_error(exc, subscription) from exc
            row = self._fetch_subscription_row("id", subscription_id)
        return self._row_to_subscription(row)

    def insert_gateway_subscription(self, subscription: Subscription) -> Subscription:
        """Insert a gateway-sourced row; a concurrent insert of the same gateway id wins."""
        subscription_id = subscription.id or self._new_id("sub")
        now = self._now()
        with self._lock:
            try:
                with self._conn:
                    if subscription.status == STATUS_ACTIVE:
                        self._expire_lapsed_for_semester(
                            subscription.user_id, subscription.semester, now
                        )
                    self._insert_subscription(
                        subscription_id, subscription, now, on_conflict_ignore=True
                    )
            except sqlite3.IntegrityError as exc:
                raise self._integrity_error(exc, subscription) from exc
            row = self._fetch_subscription_row(
                "external_subscription_id", subscription.external_subscription_id
            )
        if not row:
            raise RuntimeError("Failed to persist subscription.")
        return self._row_to_subscription(row)

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        with self._lock:
            row = self._fetch_subscription_row("id", subscription_id)
        return self._row_to_subscription(row) if row else None

    def get_subscription_by_external_id(
        self, external_subscription_id: str
    ) -> Optional[Subscription]:
        with self._lock:
            row = self._fetch_subscription_row(
                "external_subscription_id", external_subscription_id
            )
        return self._row_to_subscription(row) if row else None

    def get_subscription_by_checkout_session(self, session_id: str) -> Optional[Subscription]:
        with self._lock:
            row = self._fetch_subscription_row("checkout_session_id", session_id)
        return self._row_to_subscription(row) if row else None

    def find_active_subscription(
        self, user_id: str, semester: Optional[int], now: datetime
    ) -> Optional[Subscription]:
        query = "SELECT * FROM subscriptions WHERE user_id = ? AND status = ?"
        params: List[Any] = [user_id, STATUS_ACTIVE]
        if semester is not None:
            query += " AND semester = ?"
            params.append(semester)
        query += " ORDER BY end_date DESC"
        with self._lock:
            cur = self._conn.execute(query, params)
            rows = cur.fetchall()
        for row in rows:
            subscription = self._row_to_subscription(row)
            if subscription.end_date > now:
                return subscription
        return None

    def list_subscriptions_for_user(self, user_id: str) -> List[Subscription]:
        with self._lock:
            cur = self._conn.execute(
                "SELECT * FROM subscriptions WHERE user_id = ? ORDER BY created_at DESC",
                (user_id,),
            )
            rows = cur.fetchall()
        return [self._row_to_subscription(row) for row in rows]

    def list_subscriptions(self, status: Optional[str] = None) -> List[Subscription]:
        query = "SELECT * FROM subscriptions"
        params: List[Any] = []
        if status:
            query += " WHERE status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC"
        with self._lock:
            cur = self._conn.execute(query, params)
            rows = cur.fetchall()
        return [self._row_to_subscription(row) for row in rows]

    def transition_subscription(
        self,
        subscription_id: str,
        status: str,
        *,
        event_at: Optional[int] = None,
        changes: Optional[Dict[str, Any]] = None,
    ) -> Optional[Subscription]:
        """
        Move a subscription to ``status`` if the lifecycle allows it.

        The update only matches rows whose current status may reach ``status``
        and, for gateway events, whose last applied event is not newer than
        ``event_at``. Returns None when nothing matched.

        Activating a row releases any lapsed active row for the same semester,
        and a pending row carrying an offer redeems it in the same transaction.
        """
        changes = dict(changes or {})
        unknown = set(changes) - self._TRANSITION_COLUMNS
        if unknown:
            raise ValueError(f"Unsupported subscription columns: {sorted(unknown)}")

        now = self._now()
        assignments = ["status = ?", "updated_at = ?"]
        params: List[Any] = [status, now]
        for column, value in changes.items():
            assignments.append(f"{column} = ?")
            params.append(self._to_db(value))
        if event_at is not None:
            assignments.append("last_event_at = ?")
            params.append(event_at)

        predecessors = allowed_predecessors(status)
        placeholders = ", ".join("?" for _ in predecessors)
        statement = (
            f"UPDATE subscriptions SET {', '.join(assignments)} "
            f"WHERE id = ? AND status IN ({placeholders})"
        )
        params.append(subscription_id)
        params.extend(predecessors)
        if event_at is not None:
            statement += " AND (last_event_at IS NULL OR last_event_at <= ?)"
            params.append(event_at)

        with self._lock:
            try:
                with self._conn:
                    previous = self._fetch_subscription_row("id", subscription_id)
                    if previous is None:
                        return None
                    if status == STATUS_ACTIVE:
                        self._expire_lapsed_for_semester(
                            previous["user_id"], previous["semester"], now, exclude_id=subscription_id
                        )
                    cur = self._conn.execute(statement, params)
                    if (
                        cur.rowcount
                        and previous["offer_id"]
                        and previous["status"] == STATUS_PENDING
                        and status == STATUS_ACTIVE
                        and not self._redeem_offer(previous["offer_id"], now, require_active=False)
                    ):
                        logger.warning(
                            "Offer %s had no redemptions left when subscription %s activated",
                            previous["offer_id"],
                            subscription_id,
                        )
            except sqlite3.IntegrityError as exc:
                row = self._fetch_subscription_row("id", subscription_id)
                current = self._row_to_subscription(row) if row else None
                raise self._integrity_error(exc, current) from exc
            if cur.rowcount == 0:
                return None
            row = self._fetch_subscription_row("id", subscription_id)
        return self._row_to_subscription(row) if row else None

    def expire_lapsed_subscriptions(self, now: datetime) -> List[Subscription]:
        moment = self._format_datetime(now)
        with self._lock, self._conn:
            cur = self._conn.execute(
                "SELECT * FROM subscriptions WHERE status = ? AND end_date <= ?",
                (STATUS_ACTIVE, moment),
            )
            rows = cur.fetchall()
            self._conn.execute(
                """
                UPDATE subscriptions SET status = ?, updated_at = ?
                WHERE status = ? AND end_date <= ?
                """,
                (STATUS_EXPIRED, self._now(), STATUS_ACTIVE, moment),
            )
        expired = [self._row_to_subscription(row) for row in rows]
        for subscription in expired:
            subscription.status = STATUS_EXPIRED
        return expired

    def delete_subscription(self, subscription_id: str) -> bool:
        with self._lock, self._conn:
            cur = self._conn.execute("DELETE FROM subscriptions WHERE id = ?", (subscription_id,))
            return cur.rowcount > 0

    def subscription_stats(self) -> Dict[str, int]:
        with self._lock:
            cur = self._conn.execute(
                """
                SELECT status, COUNT(*) AS total, COALESCE(SUM(price), 0) AS revenue
                FROM subscriptions
                GROUP BY status
                """
            )
            rows = cur.fetchall()
        stats = {status: 0 for status in SUBSCRIPTION_STATUSES}
        stats["total"] = 0
        stats["revenue"] = 0
        for row in rows:
            stats[row["status"]] = row["total"]
            stats["total"] += row["total"]
            stats["revenue"] += row["revenue"]
        return stats

    # WebhookEventRepository API --------------------------------------------
    def is_event_processed(self, event_id: str) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "SELECT 1 FROM webhook_events WHERE event_id = ?", (event_id,)
            )
            return cur.fetchone() is not None

    def record_event(self, event_id: str, event_type: str) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT OR IGNORE INTO webhook_events (event_id, event_type, processed_at) "
                "VALUES (?, ?, ?)",
                (event_id, event_type, self._now()),
            )

    # Helpers ----------------------------------------------------------------
    def _insert_subscription(
        self,
        subscription_id: str,
        subscription: Subscription,
        now: str,
        *,
        on_conflict_ignore: bool = False,
    ) -> None:
        statement = """
            INSERT INTO subscriptions (
                id, user_id, semester, branch, subscription_type, status,
                start_date, end_date, price, original_price, features,
                external_subscription_id, external_customer_id, checkout_session_id,
                offer_id, payment_id, payment_method, cancelled_at,
                last_payment_date, last_payment_failed, last_event_at,
                created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        if on_conflict_ignore:
            statement += " ON CONFLICT(external_subscription_id) DO NOTHING"
        self._conn.execute(
            statement,
            (
                subscription_id,
                subscription.user_id,
                subscription.semester,
                subscription.branch,
                subscription.subscription_type,
                subscription.status,
                self._format_datetime(subscription.start_date),
                self._format_datetime(subscription.end_date),
                subscription.price,
                subscription.original_price,
                json.dumps(subscription.features),
                subscription.external_subscription_id,
                subscription.external_customer_id,
                subscription.checkout_session_id,
                subscription.offer_id,
                subscription.payment_id,
                subscription.payment_method,
                self._to_db(subscription.cancelled_at),
                self._to_db(subscription.last_payment_date),
                self._to_db(subscription.last_payment_failed),
                subscription.last_event_at,
                now,
                now,
            ),
        )

    def _redeem_offer(self, offer_id: str, now: str, *, require_active: bool = True) -> bool:
        statement = (
            "UPDATE offers SET usage_count = usage_count + 1, updated_at = ? "
            "WHERE id = ? AND (usage_limit IS NULL OR usage_count < usage_limit)"
        )
        if require_active:
            statement += " AND is_active = 1"
        cur = self._conn.execute(statement, (now, offer_id))
        return cur.rowcount > 0

    def _expire_lapsed_for_semester(
        self, user_id: str, semester: int, now: str, *, exclude_id: Optional[str] = None
    ) -> None:
        # A row still marked active past its end date would otherwise hold the
        # partial unique index until the next sweep.
        cur = self._conn.execute(
            """
            UPDATE subscriptions SET status = ?, updated_at = ?
            WHERE user_id = ? AND semester = ? AND status = ? AND end_date <= ? AND id != ?
            """,
            (STATUS_EXPIRED, now, user_id, semester, STATUS_ACTIVE, now, exclude_id or ""),
        )
        if cur.rowcount:
            logger.info(
                "Expired %d lapsed subscription(s) for user %s semester %s",
                cur.rowcount,
                user_id,
                semester,
            )

    def _fetch_subscription_row(self, column: str, value: Any) -> Optional[sqlite3.Row]:
        cur = self._conn.execute(f"SELECT * FROM subscriptions WHERE {column} = ?", (value,))
        return cur.fetchone()

    @staticmethod
    def _integrity_error(
        exc: sqlite3.IntegrityError, subscription: Optional[Subscription]
    ) -> ConflictError:
        message = str(exc)
        if "subscriptions.user_id, subscriptions.semester" in message and subscription:
            return DuplicateSubscriptionError(subscription.user_id, subscription.semester)
        logger.warning("Subscription write rejected by constraint: %s", message)
        return ConflictError(f"Subscription violates a storage constraint: {message}")

    @staticmethod
    def _new_id(prefix: str) -> str:
        return f"{prefix}_{uuid.uuid4().hex}"

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).replace(microsecond=0).isoformat()

    @staticmethod
    def _format_datetime(value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).replace(microsecond=0).isoformat()

    def _to_db(self, value: Any) -> Any:
        if isinstance(value, datetime):
            return self._format_datetime(value)
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, (list, tuple)):
            return json.dumps(list(value))
        return value

    @staticmethod
    def _parse_datetime(value: str) -> datetime:
        try:
            result = datetime.fromisoformat(value)
        except ValueError:
            # Fallback for legacy formats without 'T'
            result = datetime.strptime(value, "%Y-%m-%d %H:%M:%S")
        if result.tzinfo is None:
            return result.replace(tzinfo=timezone.utc)
        return result.astimezone(timezone.utc)

    def _optional_datetime(self, value: Optional[str]) -> Optional[datetime]:
        return self._parse_datetime(value) if value else None

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            email=row["email"],
            name=row["name"],
            branch=row["branch"],
            semester=row["semester"],
            role=row["role"],
            external_customer_id=row["external_customer_id"],
            has_active_subscription=bool(row["has_active_subscription"]),
            subscription_id=row["subscription_id"],
            created_at=self._parse_datetime(row["created_at"]),
            updated_at=self._parse_datetime(row["updated_at"]),
        )

    def _row_to_offer(self, row: sqlite3.Row) -> Offer:
        return Offer(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            discount_type=row["discount_type"],
            discount_value=row["discount_value"],
            subscription_type=row["subscription_type"],
            branch=row["branch"],
            semester=row["semester"],
            valid_from=self._parse_datetime(row["valid_from"]),
            valid_until=self._parse_datetime(row["valid_until"]),
            is_active=bool(row["is_active"]),
            usage_limit=row["usage_limit"],
            usage_count=row["usage_count"],
            created_by=row["created_by"],
            created_at=self._parse_datetime(row["created_at"]),
            updated_at=self._parse_datetime(row["updated_at"]),
        )

    def _row_to_subscription(self, row: sqlite3.Row) -> Subscription:
        return Subscription(
            id=row["id"],
            user_id=row["user_id"],
            semester=row["semester"],
            branch=row["branch"],
            subscription_type=row["subscription_type"],
            status=row["status"],
            start_date=self._parse_datetime(row["start_date"]),
            end_date=self._parse_datetime(row["end_date"]),
            price=row["price"],
            original_price=row["original_price"],
            features=json.loads(row["features"]),
            external_subscription_id=row["external_subscription_id"],
            external_customer_id=row["external_customer_id"],
            checkout_session_id=row["checkout_session_id"],
            offer_id=row["offer_id"],
            payment_id=row["payment_id"],
            payment_method=row["payment_method"],
            cancelled_at=self._optional_datetime(row["cancelled_at"]),
            last_payment_date=self._optional_datetime(row["last_payment_date"]),
            last_payment_failed=self._optional_datetime(row["last_payment_failed"]),
            last_event_at=row["last_event_at"],
            created_at=self._parse_datetime(row["created_at"]),
            updated_at=self._parse_datetime(row["updated_at"]),
        )
