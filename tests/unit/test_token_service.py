"""Unit tests for TokenService."""

from __future__ import annotations

import pytest
from freezegun import freeze_time

from tasko_service.core.exceptions import ServiceError
from tasko_service.services.token_service import Identity, TokenService

SECRET = "unit-test-secret-0123456789abcdef"


@pytest.fixture
def tokens() -> TokenService:
    return TokenService(secret=SECRET, ttl_seconds=3600)


@pytest.mark.unit
def test_issue_and_resolve(tokens: TokenService) -> None:
    token = tokens.issue("u-1", "worker")
    assert tokens.resolve(token) == Identity(user_id="u-1", role="worker")


@pytest.mark.unit
def test_expired_token_rejected(tokens: TokenService) -> None:
    with freeze_time("2026-01-01T00:00:00Z"):
        token = tokens.issue("u-1", "client")

    with freeze_time("2026-01-01T02:00:00Z"), pytest.raises(ServiceError) as exc_info:
        tokens.resolve(token)
    assert exc_info.value.error == "UNAUTHORIZED"
    assert exc_info.value.status_code == 401


@pytest.mark.unit
def test_token_valid_until_expiry(tokens: TokenService) -> None:
    with freeze_time("2026-01-01T00:00:00Z"):
        token = tokens.issue("u-1", "client")
    with freeze_time("2026-01-01T00:59:00Z"):
        assert tokens.resolve(token).user_id == "u-1"


@pytest.mark.unit
def test_token_signed_with_other_secret_rejected(tokens: TokenService) -> None:
    forged = TokenService(secret="another-secret-0123456789abcdef", ttl_seconds=3600).issue(
        "u-1", "client"
    )
    with pytest.raises(ServiceError) as exc_info:
        tokens.resolve(forged)
    assert exc_info.value.error == "UNAUTHORIZED"


@pytest.mark.unit
@pytest.mark.parametrize("token", ["", "not-a-jwt", "a.b.c"])
def test_malformed_token_rejected(tokens: TokenService, token: str) -> None:
    with pytest.raises(ServiceError) as exc_info:
        tokens.resolve(token)
    assert exc_info.value.status_code == 401
