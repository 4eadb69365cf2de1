import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence

from ...domain.errors import StoreError
from ...domain.models import Account, Gift, Plan, PurchasedGift, SubscriptionRecord
from ...domain.ports.persistence import PersistenceGateway


class SQLitePersistence(PersistenceGateway):
    """SQLite-backed implementation of the persistence gateway."""

    def __init__(self, path: Path) -> None:
        if str(path) != ":memory:":
            path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._initialize()

    def _initialize(self) -> None:
        with self._conn:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS plans (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT,
                    price TEXT NOT NULL,
                    duration TEXT NOT NULL,
                    features TEXT NOT NULL DEFAULT '[]',
                    stripe_price_id TEXT,
                    stripe_product_id TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    display_order INTEGER NOT NULL DEFAULT 0
                );

                CREATE INDEX IF NOT EXISTS idx_plans_stripe_price_id
                    ON plans(stripe_price_id);

                CREATE TABLE IF NOT EXISTS gifts (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    emoji TEXT NOT NULL DEFAULT '',
                    price TEXT NOT NULL,
                    stripe_price_id TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1
                );

                CREATE TABLE IF NOT EXISTS profiles (
                    id TEXT PRIMARY KEY,
                    email TEXT,
                    name TEXT,
                    stripe_customer_id TEXT,
                    is_admin INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_profiles_stripe_customer_id
                    ON profiles(stripe_customer_id);

                CREATE TABLE IF NOT EXISTS user_subscriptions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL UNIQUE,
                    plan_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 0,
                    stripe_customer_id TEXT,
                    stripe_subscription_id TEXT,
                    current_period_start TEXT,
                    current_period_end TEXT,
                    end_date TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    updated_by TEXT NOT NULL,
                    FOREIGN KEY(user_id) REFERENCES profiles(id)
                );

                CREATE INDEX IF NOT EXISTS idx_user_subscriptions_stripe_subscription_id
                    ON user_subscriptions(stripe_subscription_id);

                CREATE TABLE IF NOT EXISTS user_purchased_gifts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    gift_id TEXT NOT NULL,
                    quantity INTEGER NOT NULL DEFAULT 1,
                    price_paid TEXT NOT NULL,
                    purchased_at TEXT NOT NULL,
                    stripe_payment_ref TEXT UNIQUE,
                    used_in_chat_message_id TEXT,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY(user_id) REFERENCES profiles(id),
                    FOREIGN KEY(gift_id) REFERENCES gifts(id)
                );

                CREATE INDEX IF NOT EXISTS idx_user_purchased_gifts_user_id
                    ON user_purchased_gifts(user_id, purchased_at DESC);
                """
            )

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as exc:
                raise StoreError(f"Store write failed: {exc}") from exc

    def _fetchall(self, query: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                cur = self._conn.execute(query, params)
                return cur.fetchall()
            except sqlite3.Error as exc:
                raise StoreError(f"Store read failed: {exc}") from exc

    def _fetchone(self, query: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        rows = self._fetchall(query, params)
        return rows[0] if rows else None

    # CatalogRepository API --------------------------------------------------
    def list_plans(self, include_inactive: bool = False) -> List[Plan]:
        query = "SELECT * FROM plans"
        if not include_inactive:
            query += " WHERE is_active = 1"
        query += " ORDER BY display_order ASC, CAST(price AS REAL) ASC"
        return [self._row_to_plan(row) for row in self._fetchall(query)]

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        row = self._fetchone("SELECT * FROM plans WHERE id = ?", (plan_id,))
        return self._row_to_plan(row) if row else None

    def get_plan_by_price_ref(self, stripe_price_id: str) -> Optional[Plan]:
        row = self._fetchone(
            "SELECT * FROM plans WHERE stripe_price_id = ? ORDER BY is_active DESC LIMIT 1",
            (stripe_price_id,),
        )
        return self._row_to_plan(row) if row else None

    def upsert_plan(self, plan: Plan) -> None:
        with self._write() as conn:
            conn.execute(
                """
                INSERT INTO plans (
                    id, name, description, price, duration, features,
                    stripe_price_id, stripe_product_id, is_active, display_order
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    description = excluded.description,
                    price = excluded.price,
                    duration = excluded.duration,
                    features = excluded.features,
                    stripe_price_id = excluded.stripe_price_id,
                    stripe_product_id = excluded.stripe_product_id,
                    is_active = excluded.is_active,
                    display_order = excluded.display_order
                """,
                (
                    plan.id,
                    plan.name,
                    plan.description,
                    str(plan.price),
                    plan.duration,
                    json.dumps(list(plan.features), ensure_ascii=False),
                    plan.stripe_price_id,
                    plan.stripe_product_id,
                    int(plan.is_active),
                    plan.display_order,
                ),
            )

    def list_gifts(self, include_inactive: bool = False) -> List[Gift]:
        query = "SELECT * FROM gifts"
        if not include_inactive:
            query += " WHERE is_active = 1"
        query += " ORDER BY CAST(price AS REAL) ASC, name ASC"
        return [self._row_to_gift(row) for row in self._fetchall(query)]

    def get_gift(self, gift_id: str) -> Optional[Gift]:
        row = self._fetchone("SELECT * FROM gifts WHERE id = ?", (gift_id,))
        return self._row_to_gift(row) if row else None

    def upsert_gift(self, gift: Gift) -> None:
        with self._write() as conn:
            conn.execute(
                """
                INSERT INTO gifts (id, name, emoji, price, stripe_price_id, is_active)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    emoji = excluded.emoji,
                    price = excluded.price,
                    stripe_price_id = excluded.stripe_price_id,
                    is_active = excluded.is_active
                """,
                (
                    gift.id,
                    gift.name,
                    gift.emoji,
                    str(gift.price),
                    gift.stripe_price_id,
                    int(gift.is_active),
                ),
            )

    # ProfileRepository API --------------------------------------------------
    def get_profile(self, account_id: str) -> Optional[Account]:
        row = self._fetchone("SELECT * FROM profiles WHERE id = ?", (account_id,))
        return self._row_to_account(row) if row else None

    def get_profile_by_customer(self, stripe_customer_id: str) -> Optional[Account]:
        row = self._fetchone(
            "SELECT * FROM profiles WHERE stripe_customer_id = ? LIMIT 1",
            (stripe_customer_id,),
        )
        return self._row_to_account(row) if row else None

    def upsert_profile(self, account: Account) -> Account:
        # Role and creation time belong to the first insert; later upserts
        # only refresh identity fields.
        with self._write() as conn:
            conn.execute(
                """
                INSERT INTO profiles (id, email, name, stripe_customer_id, is_admin, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    email = COALESCE(excluded.email, profiles.email),
                    name = COALESCE(excluded.name, profiles.name),
                    stripe_customer_id = COALESCE(
                        profiles.stripe_customer_id, excluded.stripe_customer_id
                    )
                """,
                (
                    account.id,
                    account.email,
                    account.name,
                    account.stripe_customer_id,
                    int(account.is_admin),
                    self._format_dt(account.created_at),
                ),
            )
        stored = self.get_profile(account.id)
        if stored is None:
            raise StoreError("Failed to persist profile.")
        return stored

    def set_customer_ref(self, account_id: str, stripe_customer_id: str) -> None:
        with self._write() as conn:
            conn.execute(
                "UPDATE profiles SET stripe_customer_id = ? WHERE id = ?",
                (stripe_customer_id, account_id),
            )

    def has_admin_role(self, account_id: str) -> bool:
        row = self._fetchone("SELECT is_admin FROM profiles WHERE id = ?", (account_id,))
        return bool(row and row["is_admin"])

    # SubscriptionRepository API ---------------------------------------------
    def get_subscription(self, account_id: str) -> Optional[SubscriptionRecord]:
        row = self._fetchone("SELECT * FROM user_subscriptions WHERE user_id = ?", (account_id,))
        return self._row_to_subscription(row) if row else None

    def get_subscription_by_processor_ref(
        self, stripe_subscription_id: str
    ) -> Optional[SubscriptionRecord]:
        row = self._fetchone(
            "SELECT * FROM user_subscriptions WHERE stripe_subscription_id = ?",
            (stripe_subscription_id,),
        )
        return self._row_to_subscription(row) if row else None

    def upsert_subscription(self, record: SubscriptionRecord) -> SubscriptionRecord:
        now = self._now()
        updated_at = self._format_dt(record.updated_at) or now
        with self._write() as conn:
            conn.execute(
                """
                INSERT INTO user_subscriptions (
                    user_id, plan_id, status, is_active, stripe_customer_id,
                    stripe_subscription_id, current_period_start, current_period_end,
                    end_date, created_at, updated_at, updated_by
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    plan_id = excluded.plan_id,
                    status = excluded.status,
                    is_active = excluded.is_active,
                    stripe_customer_id = COALESCE(
                        excluded.stripe_customer_id, user_subscriptions.stripe_customer_id
                    ),
                    stripe_subscription_id = excluded.stripe_subscription_id,
                    current_period_start = excluded.current_period_start,
                    current_period_end = excluded.current_period_end,
                    end_date = excluded.end_date,
                    updated_at = excluded.updated_at,
                    updated_by = excluded.updated_by
                """,
                (
                    record.account_id,
                    record.plan_id,
                    record.status,
                    int(record.is_active),
                    record.stripe_customer_id,
                    record.stripe_subscription_id,
                    self._format_dt(record.current_period_start),
                    self._format_dt(record.current_period_end),
                    self._format_dt(record.end_date),
                    now,
                    updated_at,
                    record.updated_by,
                ),
            )
        stored = self.get_subscription(record.account_id)
        if stored is None:
            raise StoreError("Failed to persist subscription record.")
        return stored

    def update_subscription(
        self,
        stripe_subscription_id: str,
        *,
        updated_by: str,
        status: Optional[str] = None,
        is_active: Optional[bool] = None,
        current_period_start: Optional[datetime] = None,
        current_period_end: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        plan_id: Optional[str] = None,
        updated_at: Optional[datetime] = None,
    ) -> Optional[SubscriptionRecord]:
        updates = ["updated_at = ?", "updated_by = ?"]
        params: List[Any] = [self._format_dt(updated_at) or self._now(), updated_by]
        if status is not None:
            updates.append("status = ?")
            params.append(status)
        if is_active is not None:
            updates.append("is_active = ?")
            params.append(int(is_active))
        if current_period_start is not None:
            updates.append("current_period_start = ?")
            params.append(self._format_dt(current_period_start))
        if current_period_end is not None:
            updates.append("current_period_end = ?")
            params.append(self._format_dt(current_period_end))
        if end_date is not None:
            updates.append("end_date = ?")
            params.append(self._format_dt(end_date))
        if plan_id is not None:
            updates.append("plan_id = ?")
            params.append(plan_id)
        params.append(stripe_subscription_id)
        with self._write() as conn:
            conn.execute(
                f"UPDATE user_subscriptions SET {', '.join(updates)} WHERE stripe_subscription_id = ?",
                params,
            )
        return self.get_subscription_by_processor_ref(stripe_subscription_id)

    # PurchasedGiftRepository API --------------------------------------------
    def record_gift_purchase(
        self,
        account_id: str,
        gift_id: str,
        quantity: int,
        price_paid: Decimal,
        stripe_payment_ref: str,
        purchased_at: datetime,
    ) -> Optional[PurchasedGift]:
        with self._write() as conn:
            cur = conn.execute(
                """
                INSERT INTO user_purchased_gifts (
                    user_id, gift_id, quantity, price_paid, purchased_at,
                    stripe_payment_ref, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(stripe_payment_ref) DO NOTHING
                """,
                (
                    account_id,
                    gift_id,
                    quantity,
                    str(price_paid),
                    self._format_dt(purchased_at),
                    stripe_payment_ref,
                    self._now(),
                ),
            )
            inserted = cur.rowcount > 0
            purchase_id = cur.lastrowid
        if not inserted:
            return None
        return self.get_purchased_gift(purchase_id)

    def list_purchased_gifts(self, account_id: str) -> List[PurchasedGift]:
        rows = self._fetchall(
            """
            SELECT * FROM user_purchased_gifts
            WHERE user_id = ?
            ORDER BY purchased_at DESC, id DESC
            """,
            (account_id,),
        )
        return [self._row_to_purchase(row) for row in rows]

    def get_purchased_gift(self, purchase_id: int) -> Optional[PurchasedGift]:
        row = self._fetchone("SELECT * FROM user_purchased_gifts WHERE id = ?", (purchase_id,))
        return self._row_to_purchase(row) if row else None

    def mark_gift_used(self, purchase_id: int, message_id: str) -> Optional[PurchasedGift]:
        """Returns ``None`` when the gift is already linked to another message."""
        with self._write() as conn:
            cursor = conn.execute(
                """
                UPDATE user_purchased_gifts
                SET used_in_chat_message_id = ?, updated_at = ?
                WHERE id = ?
                  AND (used_in_chat_message_id IS NULL OR used_in_chat_message_id = ?)
                """,
                (message_id, self._now(), purchase_id, message_id),
            )
        if cursor.rowcount == 0:
            return None
        purchase = self.get_purchased_gift(purchase_id)
        if purchase is None:
            raise StoreError(f"Purchased gift {purchase_id} disappeared during update.")
        return purchase

    # Helpers ----------------------------------------------------------------
    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _format_dt(value: Optional[datetime]) -> Optional[str]:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()

    @staticmethod
    def _parse_dt(value: Optional[str]) -> Optional[datetime]:
        if not value:
            return None
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    def _row_to_plan(self, row: sqlite3.Row) -> Plan:
        return Plan(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            price=Decimal(row["price"]),
            duration=row["duration"],
            features=list(json.loads(row["features"] or "[]")),
            stripe_price_id=row["stripe_price_id"],
            stripe_product_id=row["stripe_product_id"],
            is_active=bool(row["is_active"]),
            display_order=row["display_order"],
        )

    def _row_to_gift(self, row: sqlite3.Row) -> Gift:
        return Gift(
            id=row["id"],
            name=row["name"],
            emoji=row["emoji"],
            price=Decimal(row["price"]),
            stripe_price_id=row["stripe_price_id"],
            is_active=bool(row["is_active"]),
        )

    def _row_to_account(self, row: sqlite3.Row) -> Account:
        return Account(
            id=row["id"],
            email=row["email"],
            name=row["name"],
            created_at=self._parse_dt(row["created_at"]),
            stripe_customer_id=row["stripe_customer_id"],
            is_admin=bool(row["is_admin"]),
        )

    def _row_to_subscription(self, row: sqlite3.Row) -> SubscriptionRecord:
        return SubscriptionRecord(
            account_id=row["user_id"],
            plan_id=row["plan_id"],
            status=row["status"],
            is_active=bool(row["is_active"]),
            stripe_customer_id=row["stripe_customer_id"],
            stripe_subscription_id=row["stripe_subscription_id"],
            current_period_start=self._parse_dt(row["current_period_start"]),
            current_period_end=self._parse_dt(row["current_period_end"]),
            end_date=self._parse_dt(row["end_date"]),
            updated_at=self._parse_dt(row["updated_at"]),
            updated_by=row["updated_by"],
        )

    def _row_to_purchase(self, row: sqlite3.Row) -> PurchasedGift:
        return PurchasedGift(
            id=row["id"],
            account_id=row["user_id"],
            gift_id=row["gift_id"],
            quantity=row["quantity"],
            price_paid=Decimal(row["price_paid"]),
            purchased_at=self._parse_dt(row["purchased_at"]),
            stripe_payment_ref=row["stripe_payment_ref"],
            used_in_chat_message_id=row["used_in_chat_message_id"],
        )
