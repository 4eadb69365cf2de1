import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import pytest
from jose import jwt

from paysync.core.config import Settings
from paysync.domain.errors import ProcessorError
from paysync.domain.models import Account, Gift, Plan
from paysync.infrastructure.cache.memory import InMemoryTTLCache
from paysync.infrastructure.persistence.sqlite import SQLitePersistence
from paysync.services.catalog_service import CatalogService
from paysync.services.checkout_service import CheckoutService
from paysync.services.privilege_service import PrivilegeResolver
from paysync.services.stripe_service import StripeService
from paysync.services.subscription_service import SubscriptionReconciler
from paysync.services.webhook_service import WebhookProcessor

WEBHOOK_SECRET = "whsec_test_secret"
JWT_SECRET = "test-jwt-secret"
START = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Controllable replacement for ``datetime.now(timezone.utc)``."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


class TickingCounter:
    """Monotonic clock for the TTL cache, moved by hand."""

    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


class FakeStripeGateway(StripeService):
    """Keeps Stripe state in memory; webhook signature checks stay real."""

    def __init__(self) -> None:
        super().__init__(secret_key="sk_test_fake", webhook_secret=WEBHOOK_SECRET)
        self.customers: Dict[str, Dict[str, Any]] = {}
        self.subscriptions: Dict[str, Dict[str, Any]] = {}
        self.payment_intents: Dict[str, Dict[str, Any]] = {}
        self.checkout_sessions: List[Dict[str, Any]] = []
        self.portal_sessions: List[Dict[str, Any]] = []
        self.fail_with: Optional[Exception] = None
        self.list_calls = 0

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def find_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        self._maybe_fail()
        for customer in self.customers.values():
            if customer.get("email") == email:
                return dict(customer)
        return None

    def create_customer(self, email, name, metadata):
        self._maybe_fail()
        customer_id = f"cus_{len(self.customers) + 1:04d}"
        self.customers[customer_id] = {"id": customer_id, "email": email, "name": name, "metadata": metadata}
        return dict(self.customers[customer_id])

    def create_checkout_session(self, **params):
        self._maybe_fail()
        session_id = f"cs_test_{len(self.checkout_sessions) + 1}"
        session = {"id": session_id, "url": f"https://checkout.stripe.test/{session_id}", **params}
        self.checkout_sessions.append(session)
        return session

    def create_billing_portal_session(self, customer_id, return_url):
        self._maybe_fail()
        session = {"id": "bps_1", "url": f"https://billing.stripe.test/{customer_id}", "return_url": return_url}
        self.portal_sessions.append(session)
        return session

    def list_active_subscriptions(self, customer_id, limit=1):
        self._maybe_fail()
        self.list_calls += 1
        found = [
            dict(sub)
            for sub in self.subscriptions.values()
            if sub.get("customer") == customer_id and sub.get("status") == "active"
        ]
        return found[:limit]

    def retrieve_subscription(self, subscription_id):
        self._maybe_fail()
        if subscription_id not in self.subscriptions:
            raise ProcessorError(f"No such subscription: {subscription_id}")
        return dict(self.subscriptions[subscription_id])

    def retrieve_payment_intent(self, payment_intent_id):
        self._maybe_fail()
        if payment_intent_id not in self.payment_intents:
            raise ProcessorError(f"No such payment_intent: {payment_intent_id}")
        return dict(self.payment_intents[payment_intent_id])

    def add_subscription(
        self,
        subscription_id: str,
        customer_id: str,
        price_id: str,
        unit_amount: int,
        status: str = "active",
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        period_start = period_start or START
        period_end = period_end or START + timedelta(days=30)
        subscription = {
            "id": subscription_id,
            "object": "subscription",
            "customer": customer_id,
            "status": status,
            "cancel_at": None,
            "metadata": metadata or {},
            "items": {
                "data": [
                    {
                        "price": {"id": price_id, "unit_amount": unit_amount},
                        "current_period_start": int(period_start.timestamp()),
                        "current_period_end": int(period_end.timestamp()),
                    }
                ]
            },
        }
        self.subscriptions[subscription_id] = subscription
        return subscription


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(START)


@pytest.fixture
def cache_clock() -> TickingCounter:
    return TickingCounter()


@pytest.fixture
def cache(cache_clock: TickingCounter) -> InMemoryTTLCache:
    return InMemoryTTLCache(clock=cache_clock)


@pytest.fixture
def persistence(tmp_path) -> SQLitePersistence:
    store = SQLitePersistence(tmp_path / "paysync.db")
    yield store
    store.close()


@pytest.fixture
def gateway() -> FakeStripeGateway:
    return FakeStripeGateway()


@pytest.fixture
def seeded_catalog(persistence: SQLitePersistence) -> SQLitePersistence:
    plans = [
        Plan("basic", "Basic", Decimal("29.90"), "monthly", ["chat"], "price_basic", display_order=1),
        Plan("intermediate", "Intermediate", Decimal("49.90"), "monthly", ["chat", "audio"], "price_intermediate", display_order=2),
        Plan("premium", "Premium", Decimal("99.00"), "monthly", ["chat", "Audio", "voice", "video"], "price_premium", display_order=3),
        Plan("legacy", "Legacy", Decimal("19.90"), "monthly", ["chat"], None, display_order=4),
        Plan("retired", "Retired", Decimal("9.90"), "monthly", [], "price_retired", is_active=False),
    ]
    for plan in plans:
        persistence.upsert_plan(plan)
    persistence.upsert_gift(Gift("rose", "Rose", Decimal("5.00"), emoji="🌹", stripe_price_id="price_rose"))
    persistence.upsert_gift(Gift("ring", "Ring", Decimal("10.00"), emoji="💍", stripe_price_id="price_ring"))
    persistence.upsert_gift(Gift("draft", "Draft", Decimal("1.00")))
    return persistence


@pytest.fixture
def catalog_service(seeded_catalog: SQLitePersistence, cache: InMemoryTTLCache) -> CatalogService:
    return CatalogService(seeded_catalog, cache, ttl_seconds=3600)


@pytest.fixture
def make_account(persistence: SQLitePersistence, clock: FrozenClock) -> Callable[..., Account]:
    def factory(
        account_id: str = "user-1",
        email: Optional[str] = "user1@example.com",
        created_at: Optional[datetime] = None,
        is_admin: bool = False,
        stripe_customer_id: Optional[str] = None,
    ) -> Account:
        return persistence.upsert_profile(
            Account(
                id=account_id,
                email=email,
                name="Test User",
                created_at=created_at or clock.now,
                stripe_customer_id=stripe_customer_id,
                is_admin=is_admin,
            )
        )

    return factory


@pytest.fixture
def privileges(persistence: SQLitePersistence) -> PrivilegeResolver:
    return PrivilegeResolver(persistence, operator_emails=["ops@example.com"])


@pytest.fixture
def reconciler(persistence, gateway, catalog_service, privileges, cache, clock) -> SubscriptionReconciler:
    return SubscriptionReconciler(
        persistence,
        gateway,
        catalog_service,
        privileges,
        cache,
        trial_days=3,
        cache_ttl_seconds=300,
        catalog_ttl_seconds=3600,
        webhook_freshness_seconds=120,
        clock=clock,
    )


@pytest.fixture
def webhook_processor(persistence, gateway, catalog_service, cache, clock) -> WebhookProcessor:
    return WebhookProcessor(persistence, gateway, catalog_service, cache, clock=clock)


@pytest.fixture
def checkout_service(persistence, gateway, catalog_service) -> CheckoutService:
    return CheckoutService(persistence, gateway, catalog_service, "https://app.example.com/")


@pytest.fixture
def signed_event() -> Callable[[Dict[str, Any]], Dict[str, Any]]:
    """Serialise a Stripe event and sign it the way Stripe does."""

    def build(event: Dict[str, Any]) -> Dict[str, Any]:
        body = json.dumps(event)
        return {"body": body.encode("utf-8"), "signature": sign_payload(body)}

    return build


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Settings:
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_fake")
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("AUTH_JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "app.db"))
    monkeypatch.setenv("FRONTEND_BASE_URL", "https://app.example.com")
    monkeypatch.setenv("ADMIN_EMAILS", "ops@example.com")
    monkeypatch.delenv("AUTH_JWT_AUDIENCE", raising=False)
    return Settings()


@pytest.fixture
def bearer() -> Callable[..., Dict[str, str]]:
    def build(account_id: str = "user-1", email: str = "user1@example.com", secret: str = JWT_SECRET) -> Dict[str, str]:
        claims = {
            "sub": account_id,
            "email": email,
            "exp": int(time.time()) + 3600,
            "user_metadata": {"full_name": "Test User"},
        }
        token = jwt.encode(claims, secret, algorithm="HS256")
        return {"Authorization": f"Bearer {token}"}

    return build
