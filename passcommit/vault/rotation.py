"""
Vault Key Rotation — Re-encryption of the whole vault on a master password change.

Runs as stage → commit → discard under the vault's mutation lock:
1. verify the old password by decrypting the persisted vault with it;
2. decrypt every record password with the old key;
3. derive a new salt and key from the new password and re-encrypt every
   record password and the vault blob;
4. commit the new salt, vault blob and wrapped key in one storage write;
5. swap the session over to the new key, dropping the old one.

Any failure before the commit leaves storage untouched. A failing commit
restores the previous values before ``RotationAborted`` is raised.

Security Note:
    Plaintext passwords exist in memory only while they are re-encrypted.
    Never log plaintext or ciphertext values.
"""
import logging
from typing import Any

from ..conf import MASTER_SALT, VAULT, PERSISTED_KEY
from ..exceptions import (
    DecryptionFailed,
    InvalidMasterPassword,
    RotationAborted,
    VaultNotInitialized,
)
from .crypto import decrypt_text, derive_key_async, encrypt_text, generate_salt
from .salt_store import SaltStore
from .session import VaultSession
from .store import VaultStore

logger = logging.getLogger("passcommit.vault")

_ROTATED_KEYS = (MASTER_SALT, VAULT, PERSISTED_KEY)


async def rotate_master_password(
    session: VaultSession,
    old_password: str,
    new_password: str,
) -> dict[str, Any]:
    """Re-encrypt the vault under a key derived from ``new_password``.

    Args:
        session: Session of the vault to rotate; unlocked under the new key
            on success.
        old_password: Current master password.
        new_password: Replacement master password.

    Returns:
        Stats dict with keys: total, rotated.

    Raises:
        ValueError: If ``new_password`` is too short.
        VaultNotInitialized: If the vault has no salt.
        InvalidMasterPassword: If ``old_password`` does not open the vault.
        RotationAborted: If re-encryption or the commit fails.
    """
    session.config.validate_password(new_password)
    storage = session.storage
    store = VaultStore(session)
    iterations = session.config.kdf_iterations
    stats = {"total": 0, "rotated": 0}

    async with session.mutation_lock:
        old_salt = await session.salts.load()
        if old_salt is None:
            raise VaultNotInitialized()
        old_key = await derive_key_async(old_password or "", old_salt, iterations)
        try:
            records = await store.read_records(old_key)
        except DecryptionFailed:
            logger.warning("Key rotation refused: invalid master password")
            raise InvalidMasterPassword() from None
        stats["total"] = len(records)

        logger.info("Starting key rotation (%d record(s))", len(records))

        # Stage: nothing below touches storage until the commit.
        try:
            plaintexts = [
                decrypt_text(record.encrypted_password, old_key)
                for record in records
            ]
            new_salt = generate_salt()
            new_key = await derive_key_async(new_password, new_salt, iterations)
            now = session.now_ms()
            rotated = []
            for record, password in zip(records, plaintexts):
                rotated.append(record.model_copy(update={
                    "encrypted_password": encrypt_text(password, new_key, new_salt),
                    "updated_at": now,
                }))
                stats["rotated"] += 1
            staged = {
                MASTER_SALT: SaltStore.encode(new_salt),
                VAULT: store.seal_records(rotated, new_key, new_salt).model_dump(),
                PERSISTED_KEY: session.wrap_key(new_key).model_dump(),
            }
        except Exception as err:
            logger.error("Key rotation aborted while re-encrypting: %s", err)
            raise RotationAborted(
                f"Re-encryption failed, vault left unchanged: {err}"
            ) from err

        # Commit
        previous = {key: await storage.get(key) for key in _ROTATED_KEYS}
        try:
            await storage.set_many(staged)
        except Exception as err:
            logger.error("Key rotation commit failed, restoring: %s", err)
            await _restore(storage, previous)
            raise RotationAborted(
                f"Commit failed, previous vault restored: {err}"
            ) from err

        # Discard the old key material
        session.activate(new_key, new_salt)

    logger.info("Key rotation complete: %s", stats)
    return stats


async def _restore(storage, previous: dict[str, Any]) -> None:
    for key, value in previous.items():
        if value is None:
            await storage.remove(key)
        else:
            await storage.set(key, value)
