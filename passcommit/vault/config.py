"""
Vault Configuration — Key-derivation, session and sync settings.

Reads settings from environment variables in the format:
    PASSCOMMIT_KDF_ITERATIONS = <int, default 600000>
    PASSCOMMIT_KEY_TTL = <seconds a wrapped key stays valid>
    PASSCOMMIT_IDLE_TIMEOUT = <seconds of inactivity before auto-lock>
    PASSCOMMIT_AUTO_LOCK = <true|false>
    PASSCOMMIT_API_URL = <base URL of the sync API>
    PASSCOMMIT_SYNC = <true|false>

Security Note:
    Never log key material or master passwords. Only log setting names.
"""
import os
import logging
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ..conf import (
    PBKDF2_ITERATIONS,
    KEY_TTL,
    IDLE_TIMEOUT,
    MIN_PASSWORD_LENGTH,
    API_BASE_URL,
)

logger = logging.getLogger("passcommit.vault")

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _env_number(name: str, cast: type) -> Optional[float]:
    """Read a numeric env var.

    Raises:
        ValueError: If the value is set but not a valid number.
    """
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return None
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(
            f"{name} must be a valid {cast.__name__}, got {raw!r}"
        ) from None


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    kdf_iterations: int = Field(default=PBKDF2_ITERATIONS, ge=1000)
    key_ttl: float = Field(default=KEY_TTL, gt=0)
    idle_timeout: float = Field(default=IDLE_TIMEOUT, gt=0)
    auto_lock: bool = True
    min_password_length: int = Field(default=MIN_PASSWORD_LENGTH, ge=1)
    api_base_url: str = API_BASE_URL
    sync_enabled: bool = False
    sync_retries: int = Field(default=3, ge=0)
    sync_backoff: float = Field(default=0.5, ge=0)
    sync_timeout: float = Field(default=10.0, gt=0)

    @field_validator("api_base_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        """Validate the sync API is reached over http(s)."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Unsupported API URL scheme: {v}")
        return v.rstrip("/")

    def validate_password(self, password: str) -> None:
        """Reject master passwords that are empty or too short.

        Raises:
            ValueError: If the password is shorter than min_password_length.
        """
        if not isinstance(password, str) or not password:
            raise ValueError("Master password cannot be empty")
        if len(password) < self.min_password_length:
            raise ValueError(
                "Master password must be at least "
                f"{self.min_password_length} characters"
            )

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        values = {}
        numeric = {
            "kdf_iterations": ("PASSCOMMIT_KDF_ITERATIONS", int),
            "key_ttl": ("PASSCOMMIT_KEY_TTL", float),
            "idle_timeout": ("PASSCOMMIT_IDLE_TIMEOUT", float),
            "min_password_length": ("PASSCOMMIT_MIN_PASSWORD_LENGTH", int),
            "sync_retries": ("PASSCOMMIT_SYNC_RETRIES", int),
            "sync_backoff": ("PASSCOMMIT_SYNC_BACKOFF", float),
            "sync_timeout": ("PASSCOMMIT_SYNC_TIMEOUT", float),
        }
        for field, (env_name, cast) in numeric.items():
            value = _env_number(env_name, cast)
            if value is not None:
                values[field] = value
        values["auto_lock"] = _env_bool("PASSCOMMIT_AUTO_LOCK", True)
        values["sync_enabled"] = _env_bool("PASSCOMMIT_SYNC", False)
        api_url = os.environ.get("PASSCOMMIT_API_URL")
        if api_url:
            values["api_base_url"] = api_url
        config = cls(**values)
        logger.debug(
            "Vault config loaded from environment: %s", sorted(values.keys())
        )
        return config
