"""PassCommit.

End-to-end encrypted credential vault: the remote sync service only ever
sees ciphertext.
"""
from .version import (
    __title__,
    __description__,
    __version__,
    __author__,
    __author_email__,
    __license__,
)
from .exceptions import (
    VaultError,
    DecryptionFailed,
    InvalidMasterPassword,
    VaultLocked,
    VaultNotInitialized,
    VaultAlreadyInitialized,
    RecordNotFound,
    RotationAborted,
    SyncError,
)
from .storage import AbstractStorage, MemoryStorage, FileStorage
from .manager import PasswordManager

__all__ = (
    "PasswordManager",
    "AbstractStorage",
    "MemoryStorage",
    "FileStorage",
    "VaultError",
    "DecryptionFailed",
    "InvalidMasterPassword",
    "VaultLocked",
    "VaultNotInitialized",
    "VaultAlreadyInitialized",
    "RecordNotFound",
    "RotationAborted",
    "SyncError",
)
