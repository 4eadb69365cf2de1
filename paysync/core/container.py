from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from ..application.services.auth_service import AccountAuthService
from ..domain.ports.cache import Cache
from ..domain.ports.payments import PaymentGateway
from ..domain.ports.persistence import PersistenceGateway
from ..infrastructure.cache.memory import InMemoryTTLCache
from ..infrastructure.persistence.sqlite import SQLitePersistence
from ..services.catalog_service import CatalogService
from ..services.checkout_service import CheckoutService
from ..services.gift_service import GiftLedgerService
from ..services.privilege_service import PrivilegeResolver
from ..services.stripe_service import StripeService
from ..services.subscription_service import SubscriptionReconciler
from ..services.webhook_service import WebhookProcessor
from .config import Settings


@dataclass(slots=True)
class ApplicationContainer:
    """Dependency registry shared across the FastAPI application lifecycle."""

    settings: Settings
    persistence: PersistenceGateway
    cache: Cache
    gateway: PaymentGateway
    catalog_service: CatalogService
    privilege_resolver: PrivilegeResolver
    auth_service: AccountAuthService
    checkout_service: CheckoutService
    subscription_reconciler: SubscriptionReconciler
    webhook_processor: WebhookProcessor
    gift_service: GiftLedgerService


def build_container(
    settings: Settings,
    *,
    persistence: Optional[PersistenceGateway] = None,
    gateway: Optional[PaymentGateway] = None,
    cache: Optional[Cache] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> ApplicationContainer:
    """Wire every service from ``settings``; the keyword overrides replace the real adapters."""
    persistence = persistence or SQLitePersistence(settings.database_path)
    gateway = gateway or StripeService(
        secret_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        api_version=settings.stripe_api_version,
    )
    cache = cache if cache is not None else InMemoryTTLCache(retention_seconds=settings.cache_retention_seconds)
    clock = clock or (lambda: datetime.now(timezone.utc))

    catalog = CatalogService(persistence, cache, ttl_seconds=settings.catalog_cache_ttl_seconds)
    privileges = PrivilegeResolver(persistence, settings.admin_emails)
    reconciler = SubscriptionReconciler(
        persistence,
        gateway,
        catalog,
        privileges,
        cache,
        trial_days=settings.trial_days,
        cache_ttl_seconds=settings.subscription_cache_ttl_seconds,
        catalog_ttl_seconds=settings.catalog_cache_ttl_seconds,
        webhook_freshness_seconds=settings.webhook_freshness_seconds,
        clock=clock,
    )
    return ApplicationContainer(
        settings=settings,
        persistence=persistence,
        cache=cache,
        gateway=gateway,
        catalog_service=catalog,
        privilege_resolver=privileges,
        auth_service=AccountAuthService(
            persistence,
            secret_key=settings.auth_jwt_secret,
            algorithm=settings.auth_jwt_algorithm,
            audience=settings.auth_jwt_audience,
        ),
        checkout_service=CheckoutService(persistence, gateway, catalog, settings.frontend_base_url),
        subscription_reconciler=reconciler,
        webhook_processor=WebhookProcessor(persistence, gateway, catalog, cache, clock=clock),
        gift_service=GiftLedgerService(persistence),
    )
