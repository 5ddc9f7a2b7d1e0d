"""
Vault Models — Persisted and exchanged shapes of the vault.

Field names are serialized with camelCase aliases so the persisted JSON
documents keep the layout used by the browser extension and the sync API.
"""
from typing import Any, Optional

import orjson
from pydantic import BaseModel, ConfigDict, Field, field_validator


class EncryptedBlob(BaseModel):
    """Base64 ciphertext (with GCM tag), IV and the salt of its key epoch."""

    ciphertext: str
    iv: str
    salt: str

    def to_json(self) -> str:
        """Return the compact JSON string form stored inside records."""
        return orjson.dumps(self.model_dump()).decode("utf-8")

    @classmethod
    def from_json(cls, data: str) -> "EncryptedBlob":
        return cls.model_validate(orjson.loads(data))


class CredentialRecord(BaseModel):
    """One credential stored in the vault.

    ``encrypted_password`` holds an :class:`EncryptedBlob` as a JSON string;
    timestamps are epoch milliseconds.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    domain: str
    username: str
    encrypted_password: str = Field(alias="encryptedPassword")
    notes: Optional[str] = None
    favicon: Optional[str] = None
    created_at: int = Field(alias="createdAt")
    updated_at: int = Field(alias="updatedAt")

    @property
    def password_blob(self) -> EncryptedBlob:
        return EncryptedBlob.from_json(self.encrypted_password)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class NewCredential(BaseModel):
    """Plaintext input of a credential about to be added."""

    model_config = ConfigDict(extra="ignore")

    domain: str = Field(min_length=1)
    username: str = Field(min_length=1)
    password: str = ""
    notes: Optional[str] = None
    favicon: Optional[str] = None


class CredentialPatch(BaseModel):
    """Partial update of a credential.

    ``id`` and ``createdAt`` are not fields, so they can never be patched.
    """

    model_config = ConfigDict(extra="ignore")

    domain: Optional[str] = Field(default=None, min_length=1)
    username: Optional[str] = Field(default=None, min_length=1)
    password: Optional[str] = None
    notes: Optional[str] = None
    favicon: Optional[str] = None

    @field_validator("domain", "username")
    @classmethod
    def reject_null(cls, v: Optional[str]) -> str:
        """domain and username can be changed but never cleared."""
        if v is None:
            raise ValueError("must not be null")
        return v

    def changes(self) -> dict[str, Any]:
        """Fields explicitly set on the patch, plaintext password excluded."""
        return self.model_dump(exclude_unset=True, exclude={"password"})


class WrappedKey(BaseModel):
    """Exported session key persisted for rehydration after a restart."""

    key: dict[str, Any]
    timestamp: int


class User(BaseModel):
    id: str
    email: str
    name: str
    picture: Optional[str] = None


class AuthState(BaseModel):
    """Login state of the sync account."""

    model_config = ConfigDict(populate_by_name=True)

    is_authenticated: bool = Field(default=False, alias="isAuthenticated")
    user: Optional[User] = None
    token: Optional[str] = None
    has_master_password: bool = Field(default=False, alias="hasMasterPassword")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
