from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from ...domain.errors import AuthRequired, ConfigurationError
from ...domain.models import Account
from ...domain.ports.persistence import ProfileRepository

logger = logging.getLogger(__name__)


class AccountAuthService:
    """Verifies bearer tokens from the auth provider and mirrors the account locally."""

    def __init__(
        self,
        profiles: ProfileRepository,
        secret_key: str,
        algorithm: str = "HS256",
        audience: Optional[str] = None,
    ) -> None:
        if not secret_key:
            raise ConfigurationError("AUTH_JWT_SECRET is not configured")
        self._profiles = profiles
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._audience = audience

    def authenticate(self, token: Optional[str]) -> Account:
        if not token:
            raise AuthRequired("Authentication required")
        claims = self._decode(token)
        account_id = claims.get("sub")
        if not account_id:
            raise AuthRequired("Invalid token")

        existing = self._profiles.get_profile(str(account_id))
        email = claims.get("email")
        name = self._display_name(claims)
        if existing is not None and existing.email == email and (name is None or existing.name == name):
            return existing
        return self._profiles.upsert_profile(Account(id=str(account_id), email=email, name=name))

    def _decode(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                audience=self._audience,
                options={"verify_aud": self._audience is not None},
            )
        except JWTError as exc:
            logger.info("Rejected bearer token: %s", exc)
            raise AuthRequired("Invalid token") from exc

    @staticmethod
    def _display_name(claims: Dict[str, Any]) -> Optional[str]:
        metadata = claims.get("user_metadata") or {}
        return metadata.get("full_name") or metadata.get("name") or claims.get("name")
