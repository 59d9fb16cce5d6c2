# tests/test_config.py

import pytest
from pydantic import ValidationError

from src.common.config import Settings


@pytest.fixture
def bare_env(monkeypatch):
    for name in ("JWT_ACCESS_SECRET", "JWT_REFRESH_SECRET", "ENCRYPTION_KEY", "BCRYPT_ROUNDS", "APP_ENV"):
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    def test_development_fills_ephemeral_secrets(self, bare_env):
        settings = Settings(APP_ENV="development")

        assert settings.JWT_ACCESS_SECRET
        assert settings.JWT_REFRESH_SECRET
        assert settings.JWT_ACCESS_SECRET != settings.JWT_REFRESH_SECRET
        assert len(bytes.fromhex(settings.ENCRYPTION_KEY)) == 32

    def test_production_requires_secrets(self, bare_env):
        with pytest.raises(ValidationError) as exc_info:
            Settings(APP_ENV="production", JWT_ACCESS_SECRET="a" * 40)
        assert "JWT_REFRESH_SECRET" in str(exc_info.value)
        assert "ENCRYPTION_KEY" in str(exc_info.value)

    def test_secrets_must_differ(self, bare_env):
        with pytest.raises(ValidationError):
            Settings(JWT_ACCESS_SECRET="same-secret", JWT_REFRESH_SECRET="same-secret")

    @pytest.mark.parametrize("key", ["zz" * 32, "ab" * 16])
    def test_encryption_key_must_be_32_hex_bytes(self, bare_env, key):
        with pytest.raises(ValidationError):
            Settings(ENCRYPTION_KEY=key)

    def test_bcrypt_rounds_floor(self, bare_env):
        with pytest.raises(ValidationError):
            Settings(BCRYPT_ROUNDS=8)

    def test_allowed_origins_from_comma_list(self, bare_env, monkeypatch):
        monkeypatch.setenv("ALLOWED_ORIGINS", '["https://a.test","https://b.test"]')
        assert Settings().ALLOWED_ORIGINS == ["https://a.test", "https://b.test"]
        assert Settings(ALLOWED_ORIGINS="https://a.test, https://b.test").ALLOWED_ORIGINS == [
            "https://a.test",
            "https://b.test",
        ]

    def test_smtp_endpoint(self, bare_env):
        assert Settings(EMAIL_SERVICE="outlook").smtp_endpoint == ("smtp-mail.outlook.com", 587)
        assert Settings(SMTP_HOST="mail.test", SMTP_PORT=2525).smtp_endpoint == ("mail.test", 2525)
        assert Settings(EMAIL_SENDER=None, EMAIL_USER="ops@clinic.test").email_sender == "ops@clinic.test"
