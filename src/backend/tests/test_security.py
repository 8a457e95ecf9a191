"""Tests for configuration, tokens and app wiring."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from harmony.core.config import Settings
from harmony.core.security import create_access_token, verify_token


class TestSettings:

    @pytest.mark.parametrize("key", ["short", "x" * 15, "x" * 17, "é" * 8 + "x"])
    def test_qr_key_must_be_sixteen_bytes(self, key):
        with pytest.raises(ValidationError, match="16 bytes"):
            Settings(qr_encryption_key=key)

    def test_postgres_url_normalized(self):
        settings = Settings(
            qr_encryption_key="0123456789abcdef",
            database_url="postgres://u:p@db:5432/harmony",
        )

        assert settings.database_url == "postgresql+asyncpg://u:p@db:5432/harmony"

    def test_cors_origins(self):
        settings = Settings(
            qr_encryption_key="0123456789abcdef",
            cors_origins_str="http://a.test, http://b.test",
        )

        assert settings.cors_origins == ["http://a.test", "http://b.test"]


class TestTokens:

    def test_round_trip(self):
        token = create_access_token("0123456789abcdef01234567")

        payload = verify_token(token)

        assert payload["sub"] == "0123456789abcdef01234567"

    def test_expired(self):
        token = create_access_token("abc", expires_delta=timedelta(seconds=-5))

        assert verify_token(token) is None

    def test_garbage(self):
        assert verify_token("not.a.token") is None


class TestApp:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_invalid_token(self, client):
        response = await client.get(
            "/api/v1/workspaces/0123456789abcdef01234567/activities",
            headers={"Authorization": "Bearer nope"},
        )

        assert response.status_code == 401
