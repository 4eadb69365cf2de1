import time

import pytest
from jose import jwt

from paysync.application.services.auth_service import AccountAuthService
from paysync.core.config import Settings
from paysync.domain.errors import AuthRequired, ConfigurationError

from conftest import JWT_SECRET


def test_settings_defaults(settings):
    assert settings.trial_days == 3
    assert settings.subscription_cache_ttl_seconds == 300
    assert settings.catalog_cache_ttl_seconds == 3600
    assert settings.webhook_freshness_seconds == 120
    assert settings.auth_jwt_algorithm == "HS256"
    assert settings.admin_emails == ["ops@example.com"]
    assert settings.cors_allow_origins == ["*"]


def test_missing_required_setting_fails_fast(settings, monkeypatch):
    monkeypatch.delenv("STRIPE_WEBHOOK_SECRET")
    with pytest.raises(ConfigurationError, match="STRIPE_WEBHOOK_SECRET"):
        Settings()


def test_integer_settings_are_validated(settings, monkeypatch):
    monkeypatch.setenv("TRIAL_DAYS", "three")
    with pytest.raises(ConfigurationError):
        Settings()


def test_list_settings_are_split(settings, monkeypatch):
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://a.test, https://b.test,")
    assert Settings().cors_allow_origins == ["https://a.test", "https://b.test"]


def _token(secret=JWT_SECRET, **claims):
    payload = {"sub": "user-1", "email": "user1@example.com", "exp": int(time.time()) + 600}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def test_token_creates_local_profile(persistence):
    auth = AccountAuthService(persistence, JWT_SECRET)
    account = auth.authenticate(_token(user_metadata={"full_name": "Ada"}))
    assert account.id == "user-1"
    assert account.name == "Ada"
    assert persistence.get_profile("user-1").email == "user1@example.com"


def test_profile_creation_time_is_kept(persistence, make_account, clock):
    make_account()
    account = AccountAuthService(persistence, JWT_SECRET).authenticate(_token(email="new@example.com"))
    assert account.email == "new@example.com"
    assert account.created_at == clock.now


@pytest.mark.parametrize(
    "token",
    [
        "",
        "not-a-jwt",
        _token(secret="someone-else"),
        _token(exp=int(time.time()) - 10),
        _token(sub=None),
    ],
)
def test_bad_tokens_are_rejected(persistence, token):
    with pytest.raises(AuthRequired):
        AccountAuthService(persistence, JWT_SECRET).authenticate(token)


def test_audience_is_enforced_when_configured(persistence):
    auth = AccountAuthService(persistence, JWT_SECRET, audience="authenticated")
    assert auth.authenticate(_token(aud="authenticated")).id == "user-1"
    with pytest.raises(AuthRequired):
        auth.authenticate(_token(aud="anon"))


def test_missing_secret_is_a_configuration_error(persistence):
    with pytest.raises(ConfigurationError):
        AccountAuthService(persistence, "")
