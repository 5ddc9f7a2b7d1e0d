"""Vault — End-to-end encrypted credential storage bound to a master password.

Security Note (Threat Model):
    The session key lives in process memory while the vault is unlocked and,
    for ``key_ttl`` seconds, as a wrapped key in the persistent store so a
    restarted process can ``hydrate()`` without the master password.
    Anyone able to read that store during the TTL can decrypt the vault.
    This is an accepted trade-off; ``lock()`` removes the wrapped key.
    The master password itself is never persisted, hashed or logged.
"""

from .config import VaultConfig
from .crypto import derive_key, encrypt, decrypt, generate_salt
from .models import (
    AuthState,
    CredentialPatch,
    CredentialRecord,
    EncryptedBlob,
    NewCredential,
    User,
    WrappedKey,
)
from .salt_store import SaltStore
from .session import SessionState, VaultSession
from .store import VaultStore
from .rotation import rotate_master_password

__all__ = [
    "VaultConfig",
    "derive_key",
    "encrypt",
    "decrypt",
    "generate_salt",
    "AuthState",
    "CredentialPatch",
    "CredentialRecord",
    "EncryptedBlob",
    "NewCredential",
    "User",
    "WrappedKey",
    "SaltStore",
    "SessionState",
    "VaultSession",
    "VaultStore",
    "rotate_master_password",
]
