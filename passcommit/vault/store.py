"""
VaultStore — The encrypted credential collection of one vault.

The whole record list is serialized as one JSON document and encrypted as a
single EncryptedBlob under the session key. Every operation is a
read-modify-write of that blob, run under the session's ``mutation_lock`` so
concurrent requests never interleave (no lost updates).

Public API:
- ``get_all()`` / ``get(id)`` / ``find_by_domain(domain)``
- ``add(data)`` / ``update(id, patch)`` / ``delete(id)``
- ``replace_all(records)`` / ``import_records(entries)``
- ``decrypt_password(id)`` / ``export_records()``

Security Note:
    Plaintext passwords only exist while a record is being encrypted or
    returned by ``decrypt_password`` or ``export_records``. Never log them.
"""
import uuid
import logging
from contextlib import asynccontextmanager
from typing import Any, Union
from collections.abc import AsyncIterator, Iterable, Mapping

from pydantic import ValidationError

from ..conf import VAULT
from ..exceptions import RecordNotFound
from .crypto import (
    decrypt,
    decrypt_text,
    deserialize_records,
    encrypt,
    encrypt_text,
    serialize_records,
)
from .models import CredentialPatch, CredentialRecord, EncryptedBlob, NewCredential
from .session import VaultSession

logger = logging.getLogger("passcommit.vault")

RecordInput = Union[CredentialRecord, Mapping[str, Any]]


def normalize_domain(domain: str) -> str:
    domain = domain.strip().lower()
    if domain.startswith("www."):
        domain = domain[4:]
    return domain


def domain_matches(candidate: str, domain: str) -> bool:
    """True when both domains are equal or one is a subdomain of the other."""
    a = normalize_domain(candidate)
    b = normalize_domain(domain)
    return a == b or a.endswith("." + b) or b.endswith("." + a)


class VaultStore:
    """Serialized CRUD over the single encrypted vault blob."""

    def __init__(self, session: VaultSession):
        self._session = session
        self._storage = session.storage

    # ------------------------------------------------------------------
    # Blob I/O (callers hold the mutation lock)
    # ------------------------------------------------------------------

    async def read_records(self, key: bytes) -> list[CredentialRecord]:
        """Decrypt and parse the persisted vault; no blob means no records.

        Raises:
            DecryptionFailed: If ``key`` does not open the vault.
        """
        data = await self._storage.get(VAULT)
        if data is None:
            return []
        plaintext = decrypt(EncryptedBlob.model_validate(data), key)
        return [
            CredentialRecord.model_validate(item)
            for item in deserialize_records(plaintext)
        ]

    @staticmethod
    def seal_records(
        records: Iterable[CredentialRecord], key: bytes, salt: bytes
    ) -> EncryptedBlob:
        """Encrypt the entire record set as one blob."""
        payload = serialize_records([r.to_dict() for r in records])
        return encrypt(payload, key, salt)

    async def _write(
        self, records: list[CredentialRecord], key: bytes, salt: bytes
    ) -> None:
        blob = self.seal_records(records, key, salt)
        await self._storage.set(VAULT, blob.model_dump())

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[tuple[bytes, bytes]]:
        """Hold the mutation lock and yield the session (key, salt).

        Raises:
            VaultLocked: If the session is locked once the lock is acquired.
        """
        self._session.touch()
        async with self._session.mutation_lock:
            yield self._session.require_key()

    @staticmethod
    def _index(records: list[CredentialRecord], record_id: str) -> int:
        for idx, record in enumerate(records):
            if record.id == record_id:
                return idx
        raise RecordNotFound(record_id)

    def _build(
        self, entry: NewCredential, key: bytes, salt: bytes
    ) -> CredentialRecord:
        now = self._session.now_ms()
        return CredentialRecord(
            id=str(uuid.uuid4()),
            domain=entry.domain,
            username=entry.username,
            encrypted_password=encrypt_text(entry.password, key, salt),
            notes=entry.notes,
            favicon=entry.favicon,
            created_at=now,
            updated_at=now,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_all(self) -> list[CredentialRecord]:
        async with self._transaction() as (key, _):
            return await self.read_records(key)

    async def get(self, record_id: str) -> CredentialRecord:
        async with self._transaction() as (key, _):
            records = await self.read_records(key)
            return records[self._index(records, record_id)]

    async def find_by_domain(self, domain: str) -> list[CredentialRecord]:
        records = await self.get_all()
        return [r for r in records if domain_matches(r.domain, domain)]

    async def decrypt_password(self, record_id: str) -> str:
        """Return the plaintext password of one record.

        Raises:
            RecordNotFound: If no record has ``record_id``.
            DecryptionFailed: If the record's password blob does not decrypt.
        """
        async with self._transaction() as (key, _):
            records = await self.read_records(key)
            record = records[self._index(records, record_id)]
            return decrypt_text(record.encrypted_password, key)

    async def export_records(self) -> list[dict[str, Any]]:
        """Every record as a dict with its plaintext ``password`` added.

        Raises:
            DecryptionFailed: If any record's password does not decrypt;
                nothing is returned in that case.
        """
        async with self._transaction() as (key, _):
            records = await self.read_records(key)
            exported = [
                {**record.to_dict(), "password": decrypt_text(record.encrypted_password, key)}
                for record in records
            ]
        logger.info("Vault export: %d record(s)", len(exported))
        return exported

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add(
        self, data: Union[NewCredential, Mapping[str, Any]]
    ) -> CredentialRecord:
        """Encrypt the password of a new credential and append it.

        Args:
            data: domain, username, password and optional notes/favicon.

        Returns:
            The stored record.
        """
        entry = data if isinstance(data, NewCredential) else NewCredential.model_validate(data)
        async with self._transaction() as (key, salt):
            records = await self.read_records(key)
            record = self._build(entry, key, salt)
            records.append(record)
            await self._write(records, key, salt)
        logger.debug("Vault add: id=%s domain=%s", record.id, record.domain)
        return record

    async def update(
        self,
        record_id: str,
        patch: Union[CredentialPatch, Mapping[str, Any]],
    ) -> CredentialRecord:
        """Merge ``patch`` into a record and bump its ``updatedAt``.

        A ``password`` in the patch is encrypted before it is stored.

        Raises:
            RecordNotFound: If no record has ``record_id``.
            ValidationError: If the patch would clear ``domain`` or
                ``username``; nothing is written.
        """
        if not isinstance(patch, CredentialPatch):
            patch = CredentialPatch.model_validate(patch)
        async with self._transaction() as (key, salt):
            records = await self.read_records(key)
            idx = self._index(records, record_id)
            changes = patch.changes()
            if patch.password is not None:
                changes["encrypted_password"] = encrypt_text(
                    patch.password, key, salt
                )
            changes["updated_at"] = self._session.now_ms()
            updated = CredentialRecord.model_validate(
                {**records[idx].model_dump(), **changes}
            )
            records[idx] = updated
            await self._write(records, key, salt)
        logger.debug("Vault update: id=%s fields=%s", record_id, sorted(changes))
        return updated

    async def delete(self, record_id: str) -> bool:
        """Remove a record. Returns False (and writes nothing) if absent."""
        async with self._transaction() as (key, salt):
            records = await self.read_records(key)
            try:
                idx = self._index(records, record_id)
            except RecordNotFound:
                return False
            del records[idx]
            await self._write(records, key, salt)
        logger.debug("Vault delete: id=%s", record_id)
        return True

    async def replace_all(self, records: Iterable[RecordInput]) -> int:
        """Overwrite the whole record set in one encrypt+persist cycle.

        Returns:
            Number of records now in the vault.
        """
        validated = [
            r if isinstance(r, CredentialRecord) else CredentialRecord.model_validate(r)
            for r in records
        ]
        async with self._transaction() as (key, salt):
            await self._write(validated, key, salt)
        logger.info("Vault replaced: %d record(s)", len(validated))
        return len(validated)

    async def merge_records(self, records: Iterable[RecordInput]) -> int:
        """Add records whose ids are not in the vault yet; local ones win.

        Returns:
            Number of records added.
        """
        incoming = [
            r if isinstance(r, CredentialRecord) else CredentialRecord.model_validate(r)
            for r in records
        ]
        async with self._transaction() as (key, salt):
            current = await self.read_records(key)
            known = {r.id for r in current}
            added = [r for r in incoming if r.id not in known]
            if added:
                current.extend(added)
                await self._write(current, key, salt)
        logger.info("Vault merge: %d record(s) added", len(added))
        return len(added)

    async def import_records(
        self, entries: Iterable[Union[NewCredential, Mapping[str, Any]]]
    ) -> list[CredentialRecord]:
        """Append many plaintext entries in a single encrypt+persist cycle.

        Entries lacking a domain, username or password are skipped.
        """
        valid: list[NewCredential] = []
        skipped = 0
        for entry in entries:
            try:
                item = entry if isinstance(entry, NewCredential) else NewCredential.model_validate(entry)
            except ValidationError:
                skipped += 1
                continue
            if not item.password:
                skipped += 1
                continue
            valid.append(item)
        if not valid:
            logger.info("Vault import: nothing to import (%d skipped)", skipped)
            return []
        async with self._transaction() as (key, salt):
            records = await self.read_records(key)
            imported = [self._build(item, key, salt) for item in valid]
            records.extend(imported)
            await self._write(records, key, salt)
        logger.info(
            "Vault import: %d record(s) imported, %d skipped",
            len(imported), skipped,
        )
        return imported
