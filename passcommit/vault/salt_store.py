"""Salt Store — the one salt anchoring a vault's key derivation."""
import logging
from typing import Optional

from ..conf import MASTER_SALT, SALT_LENGTH
from ..storage import AbstractStorage
from .crypto import b64encode, b64decode

logger = logging.getLogger("passcommit.vault")


class SaltStore:
    """Persists the vault salt (base64) under ``masterSalt``."""

    def __init__(self, storage: AbstractStorage):
        self._storage = storage

    async def load(self) -> Optional[bytes]:
        """Return the persisted salt, or None when no vault exists.

        Raises:
            ValueError: If the persisted value is not a 16-byte base64 salt.
        """
        encoded = await self._storage.get(MASTER_SALT)
        if not encoded:
            return None
        salt = b64decode(encoded)
        if len(salt) != SALT_LENGTH:
            raise ValueError(
                f"Persisted salt must be {SALT_LENGTH} bytes, got {len(salt)}"
            )
        return salt

    async def save(self, salt: bytes) -> None:
        if len(salt) != SALT_LENGTH:
            raise ValueError(
                f"salt must be exactly {SALT_LENGTH} bytes, got {len(salt)}"
            )
        await self._storage.set(MASTER_SALT, self.encode(salt))
        logger.debug("Vault salt persisted")

    async def exists(self) -> bool:
        return bool(await self._storage.get(MASTER_SALT))

    @staticmethod
    def encode(salt: bytes) -> str:
        return b64encode(salt)
