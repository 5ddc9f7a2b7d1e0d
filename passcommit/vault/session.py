"""
VaultSession — Owner of the in-memory session key of one vault.

State machine:
- ``NO_VAULT`` → ``UNLOCKED`` via ``initialize(password)``
- ``LOCKED`` → ``UNLOCKED`` via ``unlock(password)`` (vault decryption is the
  proof of a correct password)
- ``LOCKED`` → ``UNLOCKED`` via ``hydrate()`` (persisted wrapped key, no
  password, valid for ``key_ttl`` seconds)
- ``UNLOCKED`` → ``LOCKED`` via ``lock()`` or the inactivity timer

The session also owns ``mutation_lock``, the single-writer lock every
read-modify-write of the vault blob goes through.

Security Note:
    The master password is only held for the duration of a key derivation.
    ``hydrate()`` trades password recency for convenience: whoever can read
    the storage within the TTL can open the vault. Never log keys.
"""
import time
import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from ..conf import MASTER_SALT, VAULT, PERSISTED_KEY
from ..exceptions import (
    DecryptionFailed,
    InvalidMasterPassword,
    VaultAlreadyInitialized,
    VaultLocked,
    VaultNotInitialized,
)
from ..storage import AbstractStorage
from .config import VaultConfig
from .crypto import (
    decrypt,
    derive_key_async,
    encrypt,
    export_key,
    generate_salt,
    import_key,
    serialize_records,
)
from .models import EncryptedBlob, WrappedKey
from .salt_store import SaltStore

logger = logging.getLogger("passcommit.vault")


class SessionState(str, Enum):
    NO_VAULT = "no_vault"
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class VaultSession:
    """In-memory key holder with lock/unlock/auto-lock lifecycle."""

    def __init__(
        self,
        storage: AbstractStorage,
        config: Optional[VaultConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._storage = storage
        self.config = config or VaultConfig()
        self.clock = clock
        self.salts = SaltStore(storage)
        self.mutation_lock = asyncio.Lock()
        self._key: Optional[bytes] = None
        self._salt: Optional[bytes] = None
        self._unlocked_at: Optional[float] = None
        self._idle_handle: Optional[asyncio.TimerHandle] = None
        self._autolock_task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        state = "unlocked" if self.is_unlocked else "locked"
        return f'<VaultSession [{state}] storage={self._storage!r}>'

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def storage(self) -> AbstractStorage:
        return self._storage

    @property
    def is_unlocked(self) -> bool:
        return self._key is not None

    @property
    def salt(self) -> Optional[bytes]:
        return self._salt

    @property
    def unlocked_at(self) -> Optional[float]:
        return self._unlocked_at

    def require_key(self) -> tuple[bytes, bytes]:
        """Return the active (key, salt) pair.

        Raises:
            VaultLocked: If no session key is held.
        """
        if self._key is None or self._salt is None:
            raise VaultLocked()
        return self._key, self._salt

    async def state(self) -> SessionState:
        if self._key is not None:
            return SessionState.UNLOCKED
        if await self.salts.exists():
            return SessionState.LOCKED
        return SessionState.NO_VAULT

    def now_ms(self) -> int:
        return int(self.clock() * 1000)

    # ------------------------------------------------------------------
    # Key material helpers
    # ------------------------------------------------------------------

    def wrap_key(self, key: bytes) -> WrappedKey:
        """Export a key together with its creation time."""
        return WrappedKey(key=export_key(key), timestamp=self.now_ms())

    def activate(self, key: bytes, salt: bytes) -> None:
        """Make (key, salt) the session key material, replacing any old one."""
        self._key = key
        self._salt = salt
        self._unlocked_at = self.clock()
        self.touch()

    async def _load_vault_blob(self) -> Optional[EncryptedBlob]:
        data = await self._storage.get(VAULT)
        if data is None:
            return None
        return EncryptedBlob.model_validate(data)

    async def _derive(self, password: str, salt: bytes) -> bytes:
        return await derive_key_async(
            password, salt, self.config.kdf_iterations
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def initialize(self, password: str, salt: Optional[bytes] = None) -> None:
        """Create a new vault protected by ``password``.

        Uses the given salt, else one already persisted (adopted from the
        account backend), else a fresh one. Derives the key, then persists
        the salt, an encrypted empty vault and the wrapped key.

        Args:
            password: New master password.
            salt: Salt to adopt (e.g. synced from the account backend).

        Raises:
            ValueError: If the password is too short or the salt invalid.
            VaultAlreadyInitialized: If a vault blob already exists.
        """
        self.config.validate_password(password)
        async with self.mutation_lock:
            if await self._storage.get(VAULT) is not None:
                raise VaultAlreadyInitialized()
            salt = salt or await self.salts.load() or generate_salt()
            key = await self._derive(password, salt)
            empty = encrypt(serialize_records([]), key, salt)
            await self._storage.set_many({
                MASTER_SALT: SaltStore.encode(salt),
                VAULT: empty.model_dump(),
                PERSISTED_KEY: self.wrap_key(key).model_dump(),
            })
            self.activate(key, salt)
        logger.info("Vault initialized")

    async def unlock(self, password: str) -> None:
        """Unlock the vault with the master password.

        Raises:
            VaultNotInitialized: If no salt is persisted.
            InvalidMasterPassword: If the derived key cannot decrypt the vault.
        """
        if not password:
            raise InvalidMasterPassword()
        async with self.mutation_lock:
            salt = await self.salts.load()
            if salt is None:
                raise VaultNotInitialized()
            key = await self._derive(password, salt)
            blob = await self._load_vault_blob()
            if blob is None:
                logger.warning(
                    "No vault blob found on unlock; sealing an empty vault"
                )
                empty = encrypt(serialize_records([]), key, salt)
                await self._storage.set(VAULT, empty.model_dump())
            else:
                try:
                    decrypt(blob, key)
                except DecryptionFailed:
                    logger.warning("Vault unlock failed: invalid master password")
                    raise InvalidMasterPassword() from None
            await self._storage.set(
                PERSISTED_KEY, self.wrap_key(key).model_dump()
            )
            self.activate(key, salt)
        logger.info("Vault unlocked")

    async def hydrate(self) -> bool:
        """Restore the session key from the persisted wrapped key.

        Returns:
            True if the session is unlocked afterwards.
        """
        if self._key is not None:
            return True
        async with self.mutation_lock:
            if self._key is not None:
                return True
            persisted = await self._storage.get(PERSISTED_KEY)
            if not persisted:
                return False
            salt = await self.salts.load()
            if salt is None:
                return False
            try:
                wrapped = WrappedKey.model_validate(persisted)
                age = self.clock() - wrapped.timestamp / 1000
                if age > self.config.key_ttl:
                    logger.info(
                        "Wrapped vault key expired (age %.0fs), removing it", age
                    )
                    await self._storage.remove(PERSISTED_KEY)
                    return False
                key = import_key(wrapped.key)
            except ValueError as err:
                logger.error("Failed to hydrate vault session: %s", err)
                await self._storage.remove(PERSISTED_KEY)
                return False
            self.activate(key, salt)
        logger.info("Vault session hydrated from wrapped key")
        return True

    async def lock(self) -> None:
        """Drop the session key and the persisted wrapped key. Idempotent.

        Waits for an in-flight vault mutation to finish first.
        """
        async with self.mutation_lock:
            await self._lock()

    async def _lock(self) -> None:
        self._cancel_idle()
        was_unlocked = self._key is not None
        self._key = None
        self._salt = None
        self._unlocked_at = None
        await self._storage.remove(PERSISTED_KEY)
        if was_unlocked:
            logger.info("Vault locked")

    # ------------------------------------------------------------------
    # Auto-lock
    # ------------------------------------------------------------------

    def touch(self) -> None:
        """Reset the inactivity timer. No-op while locked."""
        if self._key is None or not self.config.auto_lock:
            return
        loop = asyncio.get_running_loop()
        self._cancel_idle()
        self._idle_handle = loop.call_later(
            self.config.idle_timeout, self._on_idle
        )

    def _cancel_idle(self) -> None:
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None

    def _on_idle(self) -> None:
        self._idle_handle = None
        if self._key is None:
            return
        self._autolock_task = asyncio.ensure_future(self._auto_lock())

    async def _auto_lock(self) -> None:
        async with self.mutation_lock:
            # activity re-armed the timer while a mutation held the lock
            if self._idle_handle is not None or self._key is None:
                return
            logger.info(
                "Vault auto-locked after %ss of inactivity",
                self.config.idle_timeout,
            )
            await self._lock()

    async def close(self) -> None:
        """Cancel timers and any pending auto-lock."""
        self._cancel_idle()
        task, self._autolock_task = self._autolock_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
