import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from ..domain.errors import ConfigurationError


class Settings:
    """Centralised application configuration sourced from environment variables."""

    def __init__(self) -> None:
        load_dotenv()
        self.stripe_secret_key = self._get("STRIPE_SECRET_KEY")
        self.stripe_webhook_secret = self._get("STRIPE_WEBHOOK_SECRET")
        self.stripe_api_version = os.getenv("STRIPE_API_VERSION") or None
        self.auth_jwt_secret = self._get("AUTH_JWT_SECRET")
        self.auth_jwt_algorithm = os.getenv("AUTH_JWT_ALGORITHM", "HS256")
        self.auth_jwt_audience = os.getenv("AUTH_JWT_AUDIENCE") or None
        self.database_path = Path(os.getenv("DATABASE_PATH", "data/paysync.db")).resolve()
        self.frontend_base_url = os.getenv("FRONTEND_BASE_URL", "http://localhost:3000")
        self.admin_emails = self._get_list("ADMIN_EMAILS", default=[])
        self.trial_days = self._get_int("TRIAL_DAYS", default=3)
        self.subscription_cache_ttl_seconds = self._get_int("SUBSCRIPTION_CACHE_TTL_SECONDS", default=300)
        self.catalog_cache_ttl_seconds = self._get_int("CATALOG_CACHE_TTL_SECONDS", default=3600)
        self.webhook_freshness_seconds = self._get_int("WEBHOOK_FRESHNESS_SECONDS", default=120)
        self.cache_retention_seconds = self._get_int("CACHE_RETENTION_SECONDS", default=86400)
        self.cors_allow_origins = self._get_list("CORS_ALLOW_ORIGINS", default=["*"])

    @staticmethod
    def _get(key: str) -> str:
        value = os.getenv(key)
        if not value:
            raise ConfigurationError(f"Missing required environment variable: {key}")
        return value

    @staticmethod
    def _get_int(key: str, default: Optional[int] = None) -> int:
        value = os.getenv(key)
        if value is None or value == "":
            if default is None:
                raise ConfigurationError(f"Missing required environment variable: {key}")
            return default
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigurationError(f"Environment variable {key} must be an integer") from exc

    @staticmethod
    def _get_list(key: str, default: List[str]) -> List[str]:
        value = os.getenv(key)
        if not value:
            return list(default)
        return [item.strip() for item in value.split(",") if item.strip()]
