from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ...application.services.auth_service import AccountAuthService
from ...core.dependencies import get_auth_service, get_privilege_resolver
from ...domain.errors import AuthRequired, Forbidden
from ...domain.models import Account
from ...services.privilege_service import PrivilegeResolver

_bearer_scheme = HTTPBearer(auto_error=False)


def optional_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    auth_service: AccountAuthService = Depends(get_auth_service),
) -> Optional[Account]:
    """Resolve the caller when a bearer token is present; a bad token still fails."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        return None
    return auth_service.authenticate(credentials.credentials)


def require_account(account: Optional[Account] = Depends(optional_account)) -> Account:
    if account is None:
        raise AuthRequired("Authentication required")
    return account


def require_admin(
    account: Account = Depends(require_account),
    privileges: PrivilegeResolver = Depends(get_privilege_resolver),
) -> Account:
    if not privileges.is_admin(account):
        raise Forbidden("Administrator privileges required")
    return account
