"""
Tests for settings parsing and production validation.
"""
import pytest
from pydantic import ValidationError

from fulfillment.core.config import Settings


class TestSettings:

    def test_postgres_url_rewritten_for_asyncpg(self):
        settings = Settings(ENVIRONMENT="development", DATABASE_URL="postgres://u:p@db:5432/orders")

        assert settings.DATABASE_URL == "postgresql+asyncpg://u:p@db:5432/orders"

    def test_cors_origins_comma_separated(self):
        settings = Settings(
            ENVIRONMENT="development",
            DATABASE_URL="postgresql+asyncpg://u:p@db/orders",
            CORS_ORIGINS="https://vendors.example.com, https://admin.example.com",
        )

        assert settings.CORS_ORIGINS == ["https://vendors.example.com", "https://admin.example.com"]

    def test_production_rejects_insecure_config(self):
        with pytest.raises(ValidationError) as exc_info:
            Settings(
                ENVIRONMENT="production",
                DEBUG=True,
                DATABASE_URL="postgresql+asyncpg://u:p@localhost/orders",
                SHIPWAY_BASIC_AUTH_HEADER="",
            )

        message = str(exc_info.value)
        assert "DEBUG=True is forbidden" in message
        assert "Localhost DATABASE_URL" in message
        assert "SHIPWAY_BASIC_AUTH_HEADER" in message

    def test_production_accepts_complete_config(self):
        settings = Settings(
            ENVIRONMENT="production",
            DATABASE_URL="postgresql+asyncpg://u:p@db.internal/orders",
            SHIPWAY_BASIC_AUTH_HEADER="Basic abc",
            CORS_ORIGINS=["https://vendors.example.com"],
        )

        assert settings.AUTO_REVERSAL_MAX_AGE_HOURS == 24
        assert settings.LABEL_BATCH_SIZE == 5
