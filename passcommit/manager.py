"""
PasswordManager — Operations exposed to the UI and background glue.

Wires one vault together: storage, :class:`VaultSession`, :class:`VaultStore`,
key rotation and (optionally) :class:`RemoteSync`. Remote calls made from
here are best-effort: failures are logged and the local operation stands.
"""
import time
import asyncio
import logging
from typing import Any, Callable, Optional, Union
from collections.abc import Iterable, Mapping

import aiohttp

from .conf import AUTH_STATE, VAULT
from .exceptions import SyncError
from .storage import AbstractStorage, MemoryStorage
from .sync import RemoteSync, SyncEvent, SyncOp, record_payload
from .vault.config import VaultConfig
from .vault.crypto import b64decode
from .vault.models import (
    AuthState,
    CredentialPatch,
    CredentialRecord,
    NewCredential,
)
from .vault.rotation import rotate_master_password
from .vault.salt_store import SaltStore
from .vault.session import SessionState, VaultSession
from .vault.store import VaultStore

logger = logging.getLogger("passcommit.vault")

_REMOTE_ERRORS = (SyncError, aiohttp.ClientError, asyncio.TimeoutError)


class PasswordManager:
    """Facade over one end-to-end encrypted vault."""

    def __init__(
        self,
        storage: Optional[AbstractStorage] = None,
        config: Optional[VaultConfig] = None,
        sync: Optional[RemoteSync] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or VaultConfig()
        self.storage = storage if storage is not None else MemoryStorage()
        self.session = VaultSession(self.storage, self.config, clock=clock)
        self.vault = VaultStore(self.session)
        if sync is None and self.config.sync_enabled:
            sync = RemoteSync(self.storage, self.config)
        self.sync = sync

    def __repr__(self) -> str:
        return f'<PasswordManager session={self.session!r}>'

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _ensure_session(self) -> None:
        """Pick up a still-valid wrapped key after a process restart."""
        if not self.session.is_unlocked:
            await self.session.hydrate()

    def _publish(self, op: SyncOp, record_id: str, record: CredentialRecord = None) -> None:
        if self.sync is None:
            return
        payload = record_payload(record) if record is not None else None
        self.sync.publish(SyncEvent(op, record_id, payload))

    async def _set_has_master_password(self) -> None:
        state = await self.get_auth_state()
        if state is not None:
            state.has_master_password = True
            await self.save_auth_state(state)

    async def _push_salt(self) -> None:
        if self.sync is None or self.session.salt is None:
            return
        try:
            await self.sync.push_salt(SaltStore.encode(self.session.salt))
        except _REMOTE_ERRORS as err:
            logger.error("Failed to sync salt to backend: %s", err)

    async def _pull_remote(self) -> None:
        if self.sync is None:
            return
        try:
            remote = await self.sync.fetch_vault(now=self.session.now_ms())
            known_remote = set((await self.sync.remote_ids()).values())
        except _REMOTE_ERRORS as err:
            logger.warning("Failed to sync vault from backend: %s", err)
            return
        fresh = [r for r in remote if r.id not in known_remote]
        if fresh:
            await self.vault.merge_records(fresh)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize_vault(self, master_password: str, salt: Optional[str] = None) -> None:
        """Set up the vault with a new master password.

        Args:
            master_password: The new master password.
            salt: Base64 salt to adopt, e.g. one synced from the backend.
        """
        raw_salt = b64decode(salt) if salt else None
        await self.session.initialize(master_password, raw_salt)
        await self._push_salt()
        await self._set_has_master_password()

    async def adopt_remote_salt(self) -> bool:
        """Take over the account salt from the backend after login.

        Only done while no local vault exists, so the master password set up
        on another device derives the same key here. Best-effort.

        Returns:
            True if a remote salt was persisted locally.
        """
        if self.sync is None or await self.storage.get(VAULT) is not None:
            return False
        try:
            encoded = await self.sync.fetch_salt()
        except _REMOTE_ERRORS as err:
            logger.warning("Failed to fetch salt from backend: %s", err)
            return False
        if not encoded:
            return False
        try:
            await self.session.salts.save(b64decode(encoded))
        except ValueError as err:
            logger.error("Ignoring invalid salt from backend: %s", err)
            return False
        logger.info("Adopted account salt from backend")
        return True

    async def unlock_vault(self, master_password: str) -> None:
        """Unlock with the master password, then pull remote entries.

        Raises:
            InvalidMasterPassword: If the password does not open the vault.
        """
        await self.session.unlock(master_password)
        await self._pull_remote()

    async def hydrate(self) -> bool:
        return await self.session.hydrate()

    async def lock_vault(self) -> None:
        await self.session.lock()

    def is_unlocked(self) -> bool:
        return self.session.is_unlocked

    async def state(self) -> SessionState:
        return await self.session.state()

    async def has_master_password(self) -> bool:
        return await self.session.salts.exists()

    async def change_master_password(self, current_password: str, new_password: str) -> dict:
        """Rotate the vault to a key derived from ``new_password``.

        Raises:
            InvalidMasterPassword: If ``current_password`` is wrong.
            RotationAborted: If re-encryption fails; the vault is unchanged.
        """
        stats = await rotate_master_password(
            self.session, current_password, new_password
        )
        await self._push_salt()
        if self.sync is not None:
            for record in await self.vault.get_all():
                self._publish(SyncOp.UPDATE, record.id, record)
        await self._set_has_master_password()
        return stats

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def get_credentials(self) -> list[CredentialRecord]:
        await self._ensure_session()
        return await self.vault.get_all()

    async def find_credentials_for_domain(self, domain: str) -> list[CredentialRecord]:
        await self._ensure_session()
        return await self.vault.find_by_domain(domain)

    async def add_credential(
        self, data: Union[NewCredential, Mapping[str, Any]]
    ) -> CredentialRecord:
        await self._ensure_session()
        record = await self.vault.add(data)
        self._publish(SyncOp.CREATE, record.id, record)
        return record

    async def update_credential(
        self,
        record_id: str,
        patch: Union[CredentialPatch, Mapping[str, Any]],
    ) -> CredentialRecord:
        await self._ensure_session()
        record = await self.vault.update(record_id, patch)
        self._publish(SyncOp.UPDATE, record.id, record)
        return record

    async def delete_credential(self, record_id: str) -> bool:
        await self._ensure_session()
        deleted = await self.vault.delete(record_id)
        if deleted:
            self._publish(SyncOp.DELETE, record_id)
        return deleted

    async def get_decrypted_password(self, record_id: str) -> str:
        await self._ensure_session()
        return await self.vault.decrypt_password(record_id)

    async def export_credentials(self) -> list[dict[str, Any]]:
        """Every credential with its plaintext ``password``, for export."""
        await self._ensure_session()
        return await self.vault.export_records()

    async def import_credentials(
        self, entries: Iterable[Union[NewCredential, Mapping[str, Any]]]
    ) -> list[CredentialRecord]:
        """Bulk import already-parsed plaintext entries."""
        await self._ensure_session()
        records = await self.vault.import_records(entries)
        for record in records:
            self._publish(SyncOp.CREATE, record.id, record)
        return records

    # ------------------------------------------------------------------
    # Auth state
    # ------------------------------------------------------------------

    async def save_auth_state(self, state: Union[AuthState, Mapping[str, Any]]) -> None:
        if not isinstance(state, AuthState):
            state = AuthState.model_validate(state)
        await self.storage.set(AUTH_STATE, state.to_dict())

    async def get_auth_state(self) -> Optional[AuthState]:
        data = await self.storage.get(AUTH_STATE)
        if not data:
            return None
        return AuthState.model_validate(data)

    async def clear_auth_state(self) -> None:
        await self.storage.remove(AUTH_STATE)

    async def logout(self) -> None:
        await self.session.lock()
        await self.clear_auth_state()
        logger.info("Logged out")

    async def clear_all_storage(self) -> None:
        """Forget everything, including the encrypted vault and its salt."""
        await self.session.lock()
        await self.storage.clear()
        logger.warning("All vault storage cleared")

    async def close(self) -> None:
        await self.session.close()
        if self.sync is not None:
            await self.sync.close()
