"""Single source of truth for administrator entitlement."""

from __future__ import annotations

import logging
from typing import Iterable

from ..domain.errors import StoreError
from ..domain.models import Account
from ..domain.ports.persistence import ProfileRepository

logger = logging.getLogger(__name__)


class PrivilegeResolver:
    """Decides whether an account is an administrator.

    The stored profile role is checked first; the operator allow-list from
    ``ADMIN_EMAILS`` is the emergency fallback when the store cannot answer or
    the role has not been granted yet.
    """

    def __init__(self, profiles: ProfileRepository, operator_emails: Iterable[str] = ()) -> None:
        self._profiles = profiles
        self._operator_emails = frozenset(email.strip().lower() for email in operator_emails if email.strip())

    def is_admin(self, account: Account) -> bool:
        if account.is_admin:
            return True
        try:
            if self._profiles.has_admin_role(account.id):
                return True
        except StoreError as exc:
            logger.warning("Admin role lookup failed for %s: %s", account.id, exc)
        return bool(account.email) and account.email.strip().lower() in self._operator_emails
