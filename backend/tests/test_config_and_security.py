from datetime import timedelta

import pytest
from pydantic import ValidationError

from kpi_tracker.api.deps import has_role
from kpi_tracker.config import Settings
from kpi_tracker.core.security import (
    create_access_token,
    create_access_token_for_subject,
    decode_access_token,
    decode_access_token_subject,
)
from kpi_tracker.models import RoleName


def _settings(monkeypatch, **env):
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return Settings(_env_file=None)


def test_postgres_urls_are_pinned_to_psycopg3(monkeypatch):
    s = _settings(monkeypatch, DATABASE_URL="postgres://u:p@db:5432/kpi")
    assert s.database_url == "postgresql+psycopg://u:p@db:5432/kpi"


def test_relative_sqlite_path_is_anchored(monkeypatch):
    s = _settings(monkeypatch, DATABASE_URL="sqlite:///./dev.db")
    assert s.database_url.endswith("/backend/dev.db")
    assert "./" not in s.database_url


def test_cors_origins_accept_json_and_csv(monkeypatch):
    s = _settings(monkeypatch, CORS_ORIGINS='["https://a.example/", "https://b.example"]')
    assert s.cors_origins == ["https://a.example", "https://b.example"]

    s = _settings(monkeypatch, CORS_ORIGINS="https://a.example, https://c.example/")
    assert s.cors_origins == ["https://a.example", "https://c.example"]


def test_api_prefix_is_normalized(monkeypatch):
    assert _settings(monkeypatch, API_V1_STR="api").api_prefix == "/api"
    assert _settings(monkeypatch, API_V1_STR="C:/Program Files/Git/api").api_prefix == "/api"


def test_docs_default_follows_environment(monkeypatch):
    monkeypatch.delenv("ENABLE_DOCS", raising=False)
    assert _settings(monkeypatch, ENVIRONMENT="test").enable_docs is True


@pytest.mark.parametrize("secret", ["change-me", "secret"])
def test_weak_secret_key_is_rejected(monkeypatch, secret):
    with pytest.raises(ValidationError):
        _settings(monkeypatch, SECRET_KEY=secret)


def test_production_rejects_sqlite(monkeypatch):
    with pytest.raises(ValidationError):
        _settings(
            monkeypatch,
            ENVIRONMENT="production",
            DATABASE_URL="sqlite:///./prod.db",
            CORS_ORIGINS="https://kpi.example",
        )


def test_access_token_round_trip():
    token = create_access_token_for_subject("owner@acme.test")

    assert decode_access_token_subject(token) == "owner@acme.test"
    assert decode_access_token(token)["sub"] == "owner@acme.test"


def test_expired_or_tampered_tokens_are_rejected():
    expired = create_access_token({"sub": "owner@acme.test"}, expires_delta=timedelta(minutes=-5))
    assert decode_access_token(expired) is None

    token = create_access_token_for_subject("owner@acme.test")
    assert decode_access_token_subject(token[:-2] + "xx") is None
    assert decode_access_token_subject("garbage") is None


@pytest.mark.parametrize(
    "user_role,minimum,allowed",
    [
        (RoleName.owner, RoleName.manager, True),
        (RoleName.manager, RoleName.manager, True),
        (RoleName.member, RoleName.manager, False),
        (RoleName.member, RoleName.member, True),
        ("manager", RoleName.owner, False),
        ("owner", RoleName.member, True),
        ("unknown", RoleName.member, False),
        (None, RoleName.member, False),
    ],
)
def test_role_hierarchy(user_role, minimum, allowed):
    assert has_role(user_role, minimum) is allowed
