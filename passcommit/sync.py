"""
RemoteSync — Best-effort replication of vault records to the sync API.

The vault is local-first: local mutations never wait on the network. After a
successful local mutation the caller publishes a :class:`SyncEvent`; a single
worker task drains the queue and replays events against the API with bounded
retries. Failed events are logged and dropped.

Only EncryptedBlob payloads cross this boundary, never plaintext passwords.
"""
import asyncio
import logging
from datetime import datetime
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Optional

import aiohttp
import orjson

from .conf import AUTH_STATE, REMOTE_IDS
from .exceptions import SyncError
from .storage import AbstractStorage
from .vault.config import VaultConfig
from .vault.models import AuthState, CredentialRecord, EncryptedBlob

logger = logging.getLogger("passcommit.sync")


class SyncOp(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class SyncEvent:
    op: SyncOp
    record_id: str
    payload: Optional[dict[str, Any]] = field(default=None, repr=False)


def record_payload(record: CredentialRecord) -> dict[str, Any]:
    """Body of a POST/PUT for one record, password kept encrypted."""
    payload = {
        "domain": record.domain,
        "username": record.username,
        "encryptedPassword": record.password_blob.model_dump(),
    }
    if record.notes is not None:
        payload["notes"] = record.notes
    return payload


def _to_millis(value: Any, default: int) -> int:
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value:
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return default
        return int(dt.timestamp() * 1000)
    return default


def remote_to_record(entry: dict[str, Any], now: int) -> CredentialRecord:
    """Convert an entry of ``GET /vault`` into a local record."""
    blob = EncryptedBlob.model_validate(entry["encryptedPassword"])
    created = _to_millis(entry.get("createdAt"), now)
    return CredentialRecord(
        id=str(entry.get("_id") or entry["id"]),
        domain=entry["domain"],
        username=entry["username"],
        encrypted_password=blob.to_json(),
        notes=entry.get("notes"),
        favicon=entry.get("favicon"),
        created_at=created,
        updated_at=_to_millis(entry.get("updatedAt"), created),
    )


class RemoteSync:
    """Outbound sync queue and bearer-token HTTP client of the sync API."""

    def __init__(
        self,
        storage: AbstractStorage,
        config: Optional[VaultConfig] = None,
        client: Optional[aiohttp.ClientSession] = None,
    ):
        self._storage = storage
        self.config = config or VaultConfig()
        self._client = client
        self._owns_client = client is None
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f'<RemoteSync api={self.config.api_base_url!r}>'

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _get_client(self) -> aiohttp.ClientSession:
        if self._client is None or self._client.closed:
            self._client = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.sync_timeout)
            )
            self._owns_client = True
        return self._client

    async def _token(self) -> Optional[str]:
        data = await self._storage.get(AUTH_STATE)
        if not data:
            return None
        return AuthState.model_validate(data).token

    async def request(self, method: str, path: str, payload: Any = None) -> Any:
        """Send an authenticated request and return the decoded JSON body.

        Raises:
            SyncError: On a non-2xx response (a 401 also clears the auth state).
            aiohttp.ClientError: On transport errors.
        """
        headers = {"Content-Type": "application/json"}
        token = await self._token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        data = orjson.dumps(payload) if payload is not None else None
        url = f"{self.config.api_base_url}{path}"
        async with self._get_client().request(
            method, url, data=data, headers=headers
        ) as response:
            body = await response.read()
            if response.status >= 400:
                if response.status == 401:
                    logger.warning("Sync API rejected token, clearing auth state")
                    await self._storage.remove(AUTH_STATE)
                message = None
                try:
                    message = orjson.loads(body).get("message")
                except (orjson.JSONDecodeError, AttributeError):
                    pass
                raise SyncError(
                    message or f"API Error: {response.reason}",
                    status=response.status,
                )
            if not body:
                return None
            return orjson.loads(body)

    # ------------------------------------------------------------------
    # Direct calls
    # ------------------------------------------------------------------

    async def fetch_vault(self, now: int = 0) -> list[CredentialRecord]:
        """Fetch every remote entry as a local record.

        Entries that cannot be converted are logged and skipped.
        """
        entries = await self.request("GET", "/vault")
        if not isinstance(entries, list):
            return []
        records = []
        for entry in entries:
            try:
                records.append(remote_to_record(entry, now))
            except (KeyError, TypeError, ValueError) as err:
                logger.warning("Skipping malformed remote entry: %s", err)
        return records

    async def fetch_salt(self) -> Optional[str]:
        body = await self.request("GET", "/users/salt")
        if isinstance(body, dict):
            return body.get("salt")
        return None

    async def push_salt(self, salt: str) -> None:
        await self.request("POST", "/users/salt", {"salt": salt})

    async def remote_ids(self) -> dict[str, str]:
        return dict(await self._storage.get(REMOTE_IDS) or {})

    # ------------------------------------------------------------------
    # Outbound queue
    # ------------------------------------------------------------------

    def publish(self, event: SyncEvent) -> None:
        """Queue an event; starts the worker on first use."""
        if self._queue is None:
            self._queue = asyncio.Queue()
        self._queue.put_nowait(event)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())
        logger.debug("Sync queued: %s %s", event.op.value, event.record_id)

    async def join(self) -> None:
        """Wait until every queued event was delivered or dropped."""
        if self._queue is not None:
            await self._queue.join()

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._process(event)
            except Exception:
                logger.exception(
                    "Unexpected sync failure for %s %s",
                    event.op.value, event.record_id,
                )
            finally:
                self._queue.task_done()

    async def _process(self, event: SyncEvent) -> None:
        retries = self.config.sync_retries
        for attempt in range(retries + 1):
            try:
                await self._deliver(event)
                return
            except SyncError as err:
                if err.status is not None and 400 <= err.status < 500 and err.status != 429:
                    logger.error(
                        "Sync %s %s rejected (%s): %s",
                        event.op.value, event.record_id, err.status, err,
                    )
                    return
                logger.warning(
                    "Sync %s %s failed (attempt %d): %s",
                    event.op.value, event.record_id, attempt + 1, err,
                )
            except (aiohttp.ClientError, asyncio.TimeoutError) as err:
                logger.warning(
                    "Sync %s %s failed (attempt %d): %s",
                    event.op.value, event.record_id, attempt + 1, err,
                )
            if attempt < retries:
                await asyncio.sleep(self.config.sync_backoff * (attempt + 1))
        logger.error(
            "Dropping sync event %s %s after %d attempt(s)",
            event.op.value, event.record_id, retries + 1,
        )

    async def _deliver(self, event: SyncEvent) -> None:
        remote_ids = await self.remote_ids()
        remote_id = remote_ids.get(event.record_id, event.record_id)
        if event.op is SyncOp.CREATE:
            result = await self.request("POST", "/vault", event.payload)
            new_id = None
            if isinstance(result, dict):
                new_id = result.get("_id") or result.get("id")
            if new_id and str(new_id) != event.record_id:
                remote_ids[event.record_id] = str(new_id)
                await self._storage.set(REMOTE_IDS, remote_ids)
        elif event.op is SyncOp.UPDATE:
            await self.request("PUT", f"/vault/{remote_id}", event.payload)
        elif event.op is SyncOp.DELETE:
            await self.request("DELETE", f"/vault/{remote_id}")
            if remote_ids.pop(event.record_id, None) is not None:
                await self._storage.set(REMOTE_IDS, remote_ids)
        logger.debug("Synced %s %s", event.op.value, event.record_id)

    async def close(self) -> None:
        """Stop the worker (pending events are dropped) and the HTTP client."""
        worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        if self._owns_client and self._client is not None and not self._client.closed:
            await self._client.close()
        self._client = None
