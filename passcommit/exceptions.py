"""PassCommit exceptions."""


class VaultError(Exception):
    """Base class for every vault error."""


class DecryptionFailed(VaultError):
    """AEAD authentication failed: wrong key or tampered/malformed blob."""


class InvalidMasterPassword(VaultError):
    """The master password does not open the persisted vault."""

    def __init__(self, message: str = "Invalid master password"):
        super().__init__(message)


class VaultLocked(VaultError):
    """An operation needed the session key but the vault is locked."""

    def __init__(self, message: str = "Vault is locked"):
        super().__init__(message)


class VaultNotInitialized(VaultError):
    """No master password has been set up for this vault."""

    def __init__(self, message: str = "Vault has not been initialized"):
        super().__init__(message)


class VaultAlreadyInitialized(VaultError):
    """A vault already exists in this storage."""

    def __init__(self, message: str = "Vault is already initialized"):
        super().__init__(message)


class RecordNotFound(VaultError, KeyError):
    """No credential record with the given id."""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Credential not found: {record_id}")

    def __str__(self) -> str:
        return self.args[0]


class RotationAborted(VaultError):
    """Master password change failed; the previous vault is untouched."""


class SyncError(VaultError):
    """A remote sync request failed."""

    def __init__(self, message: str, status: int = None):
        self.status = status
        super().__init__(message)
