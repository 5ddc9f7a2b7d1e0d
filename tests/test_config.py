"""Tests for VaultConfig defaults, validation and environment loading."""
import pytest
from pydantic import ValidationError

from passcommit.conf import IDLE_TIMEOUT, KEY_TTL, PBKDF2_ITERATIONS
from passcommit.vault.config import VaultConfig


class TestVaultConfig:
    """Tests for VaultConfig."""

    def test_defaults(self):
        config = VaultConfig()
        assert config.kdf_iterations == PBKDF2_ITERATIONS
        assert config.key_ttl == KEY_TTL
        assert config.idle_timeout == IDLE_TIMEOUT
        assert config.auto_lock is True
        assert config.sync_enabled is False

    @pytest.mark.parametrize("field,value", [
        ("kdf_iterations", 10),
        ("idle_timeout", 0),
        ("key_ttl", -1),
        ("api_base_url", "ftp://example.com"),
    ])
    def test_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            VaultConfig(**{field: value})

    def test_api_url_trailing_slash(self):
        assert VaultConfig(api_base_url="https://api.example.com/api/").api_base_url == (
            "https://api.example.com/api"
        )

    def test_validate_password(self):
        config = VaultConfig()
        config.validate_password("long enough")
        with pytest.raises(ValueError):
            config.validate_password("")
        with pytest.raises(ValueError):
            config.validate_password("short")


class TestFromEnv:
    """Tests for VaultConfig.from_env()."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("PASSCOMMIT_KDF_ITERATIONS", "2000")
        monkeypatch.setenv("PASSCOMMIT_IDLE_TIMEOUT", "30")
        monkeypatch.setenv("PASSCOMMIT_AUTO_LOCK", "false")
        monkeypatch.setenv("PASSCOMMIT_SYNC", "yes")
        monkeypatch.setenv("PASSCOMMIT_API_URL", "https://vault.example.com/api")
        config = VaultConfig.from_env()
        assert config.kdf_iterations == 2000
        assert config.idle_timeout == 30.0
        assert config.auto_lock is False
        assert config.sync_enabled is True
        assert config.api_base_url == "https://vault.example.com/api"

    def test_from_env_defaults(self, monkeypatch):
        for name in ("PASSCOMMIT_KDF_ITERATIONS", "PASSCOMMIT_AUTO_LOCK", "PASSCOMMIT_SYNC"):
            monkeypatch.delenv(name, raising=False)
        assert VaultConfig.from_env().kdf_iterations == PBKDF2_ITERATIONS

    def test_invalid_number(self, monkeypatch):
        monkeypatch.setenv("PASSCOMMIT_KDF_ITERATIONS", "lots")
        with pytest.raises(ValueError, match="PASSCOMMIT_KDF_ITERATIONS"):
            VaultConfig.from_env()
