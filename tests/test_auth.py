"""
Tests for JWT authentication of chat sockets.
"""

import pytest

from shared.config.settings import settings
from shared.security.auth import identity_from_claims, sign_jwt, verify_jwt
from shared.utils.exceptions import AuthError
from chat_gateway.components.auth.strategies import AuthResult, JWTAuthStrategy
from chat_gateway.components.core.constants import WSCloseCode
from tests.conftest import FakeWebSocket


class TestJWTFunctions:

    def test_sign_and_verify_roundtrip_claims(self):
        token = sign_jwt({"sub": "u1", "name": "Alice", "email": "alice@example.com"})

        claims = verify_jwt(token)

        assert identity_from_claims(claims) == {
            "user_id": "u1",
            "display_name": "Alice",
            "email": "alice@example.com",
        }

    def test_display_name_falls_back_to_user_id(self):
        assert identity_from_claims({"sub": "u1"})["display_name"] == "u1"

    @pytest.mark.parametrize("token,reason", [
        ("", "missing_token"),
        ("not-a-jwt", "invalid_token"),
    ])
    def test_invalid_tokens(self, token, reason):
        with pytest.raises(AuthError) as exc_info:
            verify_jwt(token)
        assert exc_info.value.reason == reason

    def test_expired_token(self):
        token = sign_jwt({"sub": "u1"}, ttl_seconds=-10)

        with pytest.raises(AuthError) as exc_info:
            verify_jwt(token)

        assert exc_info.value.reason == "token_expired"

    def test_missing_subject(self):
        token = sign_jwt({"name": "nobody"})

        with pytest.raises(AuthError) as exc_info:
            verify_jwt(token)

        assert exc_info.value.reason == "malformed_claims"


class TestJWTAuthStrategy:

    @pytest.mark.asyncio
    async def test_valid_token(self):
        strategy = JWTAuthStrategy()
        token = sign_jwt({"sub": "u1", "name": "Alice"})

        result = await strategy.authenticate(FakeWebSocket(), token)

        assert result.success
        assert result.data["user_id"] == "u1"
        assert result.claims["sub"] == "u1"

    @pytest.mark.asyncio
    async def test_expired_token_fails_with_auth_code(self):
        strategy = JWTAuthStrategy()
        token = sign_jwt({"sub": "u1"}, ttl_seconds=-10)

        result = await strategy.authenticate(FakeWebSocket(), token)

        assert not result.success
        assert result.close_code == WSCloseCode.AUTH_FAILED
        assert result.audit_reason == "token_expired"

    @pytest.mark.asyncio
    async def test_refresh_token_rejected(self):
        strategy = JWTAuthStrategy()
        token = sign_jwt({"sub": "u1"}, token_type="refresh")

        result = await strategy.authenticate(FakeWebSocket(), token)

        assert not result.success
        assert result.audit_reason == "refresh_token_used"
        assert await strategy.revalidate(token) is False

    @pytest.mark.asyncio
    async def test_disallowed_origin_is_forbidden(self):
        strategy = JWTAuthStrategy()
        token = sign_jwt({"sub": "u1"})

        result = await strategy.authenticate(FakeWebSocket(origin="https://evil.example"), token)

        assert not result.success
        assert result.close_code == WSCloseCode.FORBIDDEN

    @pytest.mark.asyncio
    async def test_missing_origin_rejected_in_production(self, monkeypatch):
        monkeypatch.setattr(settings, "environment", "production")
        strategy = JWTAuthStrategy()

        result = await strategy.authenticate(FakeWebSocket(), sign_jwt({"sub": "u1"}))

        assert result.close_code == WSCloseCode.FORBIDDEN

    @pytest.mark.asyncio
    async def test_revalidate_valid_token(self):
        assert await JWTAuthStrategy().revalidate(sign_jwt({"sub": "u1"})) is True

    def test_auth_result_is_immutable(self):
        result = AuthResult.ok({"user_id": "u1"})
        with pytest.raises(AttributeError):
            result.success = False
