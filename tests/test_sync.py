"""
Tests for RemoteSync against an in-process aiohttp fake of the sync API.

Tests cover:
- create/update/delete replay with the bearer token and remote id mapping
- only encrypted blobs leave the client
- retry on 5xx, no retry on 4xx, auth state cleared on 401
- pull-and-merge after unlock
- adoption of the account salt before setup
- local operations keep working when the API is unreachable
"""
import itertools

import pytest
from aiohttp import web, test_utils

from passcommit.conf import AUTH_STATE, MASTER_SALT, REMOTE_IDS
from passcommit.manager import PasswordManager
from passcommit.sync import RemoteSync, remote_to_record
from passcommit.vault.config import VaultConfig
from passcommit.vault.crypto import b64encode, encrypt_text, generate_salt
from passcommit.vault.models import EncryptedBlob

from .conftest import MASTER

ENTRY = {"domain": "github.com", "username": "octo", "password": "s3cret"}
TOKEN = "t0k"


class FakeApi:
    """Minimal stand-in for the vault sync API."""

    def __init__(self):
        self.entries: dict[str, dict] = {}
        self.salt = None
        self.calls: list[tuple[str, str, str]] = []
        self.bodies: list[bytes] = []
        self.fail_status = None
        self._ids = itertools.count(1)
        self.app = web.Application(middlewares=[self.record])
        self.app.router.add_get("/api/vault", self.list_entries)
        self.app.router.add_post("/api/vault", self.create)
        self.app.router.add_put("/api/vault/{id}", self.update)
        self.app.router.add_delete("/api/vault/{id}", self.delete)
        self.app.router.add_get("/api/users/salt", self.get_salt)
        self.app.router.add_post("/api/users/salt", self.set_salt)

    @web.middleware
    async def record(self, request, handler):
        self.calls.append(
            (request.method, request.path, request.headers.get("Authorization"))
        )
        self.bodies.append(await request.read())
        if self.fail_status is not None:
            return web.json_response({"message": "nope"}, status=self.fail_status)
        return await handler(request)

    def mutations(self):
        return [c for c in self.calls if c[1].startswith("/api/vault") and c[0] != "GET"]

    async def list_entries(self, request):
        return web.json_response(list(self.entries.values()))

    async def create(self, request):
        body = await request.json()
        entry_id = f"srv-{next(self._ids)}"
        self.entries[entry_id] = {"_id": entry_id, **body}
        return web.json_response(self.entries[entry_id], status=201)

    async def update(self, request):
        entry_id = request.match_info["id"]
        if entry_id not in self.entries:
            return web.json_response({"message": "Not found"}, status=404)
        self.entries[entry_id].update(await request.json())
        return web.json_response(self.entries[entry_id])

    async def delete(self, request):
        self.entries.pop(request.match_info["id"], None)
        return web.json_response({"message": "deleted"})

    async def get_salt(self, request):
        return web.json_response({"salt": self.salt})

    async def set_salt(self, request):
        self.salt = (await request.json())["salt"]
        return web.json_response({"salt": self.salt})


@pytest.fixture
async def api():
    fake = FakeApi()
    server = test_utils.TestServer(fake.app)
    await server.start_server()
    fake.base_url = str(server.make_url("/api"))
    yield fake
    await server.close()


def sync_config(base_url, retries=2):
    return VaultConfig(
        kdf_iterations=1000,
        idle_timeout=60,
        api_base_url=base_url,
        sync_enabled=True,
        sync_retries=retries,
        sync_backoff=0.01,
        sync_timeout=5,
    )


@pytest.fixture
async def manager(api, storage, clock):
    pm = PasswordManager(storage, sync_config(api.base_url), clock=clock)
    await pm.save_auth_state({"isAuthenticated": True, "token": TOKEN})
    await pm.initialize_vault(MASTER)
    yield pm
    await pm.close()


class TestOutbound:
    """Local mutations replayed against the API."""

    async def test_sync_enabled_builds_client(self, manager):
        assert isinstance(manager.sync, RemoteSync)

    async def test_salt_pushed_on_initialize(self, manager, api):
        assert api.salt == await manager.storage.get("masterSalt")

    async def test_create(self, manager, api, storage):
        record = await manager.add_credential(ENTRY)
        await manager.sync.join()
        assert list(api.entries) == ["srv-1"]
        remote = api.entries["srv-1"]
        assert remote["domain"] == "github.com"
        EncryptedBlob.model_validate(remote["encryptedPassword"])
        assert await storage.get(REMOTE_IDS) == {record.id: "srv-1"}
        assert all(auth == f"Bearer {TOKEN}" for _, _, auth in api.calls)

    async def test_no_plaintext_leaves_client(self, manager, api):
        await manager.add_credential(ENTRY)
        await manager.sync.join()
        assert api.bodies
        assert not any(b"s3cret" in body for body in api.bodies)
        assert not any(MASTER.encode() in body for body in api.bodies)

    async def test_update_and_delete_use_remote_id(self, manager, api, storage):
        record = await manager.add_credential(ENTRY)
        await manager.update_credential(record.id, {"username": "cat"})
        await manager.delete_credential(record.id)
        await manager.sync.join()
        assert [(m, p) for m, p, _ in api.mutations()] == [
            ("POST", "/api/vault"),
            ("PUT", "/api/vault/srv-1"),
            ("DELETE", "/api/vault/srv-1"),
        ]
        assert api.entries == {}
        assert await storage.get(REMOTE_IDS) == {}

    async def test_rotation_republishes(self, manager, api):
        await manager.add_credential(ENTRY)
        await manager.sync.join()
        before = api.entries["srv-1"]["encryptedPassword"]
        await manager.change_master_password(MASTER, "n3w-master-pass")
        await manager.sync.join()
        assert api.entries["srv-1"]["encryptedPassword"] != before
        assert api.salt == await manager.storage.get("masterSalt")


class TestFailures:
    """Retry policy and error handling."""

    async def test_server_error_retried_then_dropped(self, manager, api):
        api.fail_status = 500
        record = await manager.add_credential(ENTRY)
        await manager.sync.join()
        assert len(api.mutations()) == 3
        assert [r.id for r in await manager.get_credentials()] == [record.id]

    async def test_client_error_not_retried(self, manager, api):
        api.fail_status = 400
        await manager.add_credential(ENTRY)
        await manager.sync.join()
        assert len(api.mutations()) == 1

    async def test_unauthorized_clears_auth_state(self, manager, api, storage):
        api.fail_status = 401
        await manager.add_credential(ENTRY)
        await manager.sync.join()
        assert await storage.get(AUTH_STATE) is None
        assert len(api.mutations()) == 1

    async def test_unreachable_server(self, storage, clock):
        pm = PasswordManager(
            storage, sync_config("http://127.0.0.1:9", retries=0), clock=clock
        )
        await pm.initialize_vault(MASTER)
        record = await pm.add_credential(ENTRY)
        await pm.sync.join()
        await pm.lock_vault()
        await pm.unlock_vault(MASTER)
        assert [r.id for r in await pm.get_credentials()] == [record.id]
        await pm.close()


class TestInbound:
    """Pull-and-merge after unlock."""

    async def test_unlock_merges_remote_entries(self, manager, api):
        key, salt = manager.session.require_key()
        api.entries["srv-9"] = {
            "_id": "srv-9",
            "domain": "remote.com",
            "username": "far",
            "encryptedPassword": EncryptedBlob.from_json(
                encrypt_text("remote-pw", key, salt)
            ).model_dump(),
            "createdAt": "2024-01-02T03:04:05.000Z",
        }
        await manager.lock_vault()
        await manager.unlock_vault(MASTER)
        records = await manager.get_credentials()
        assert [r.id for r in records] == ["srv-9"]
        assert await manager.get_decrypted_password("srv-9") == "remote-pw"

    async def test_unlock_skips_own_entries(self, manager, api):
        """Entries created from this client are not pulled back as duplicates."""
        await manager.add_credential(ENTRY)
        await manager.sync.join()
        await manager.lock_vault()
        await manager.unlock_vault(MASTER)
        assert len(await manager.get_credentials()) == 1

    async def test_fetch_salt(self, manager, api):
        assert await manager.sync.fetch_salt() == api.salt


class TestSaltAdoption:
    """Account salt taken over from the backend before the vault is set up."""

    @pytest.fixture
    async def fresh(self, api, storage, clock):
        pm = PasswordManager(storage, sync_config(api.base_url), clock=clock)
        await pm.save_auth_state({"isAuthenticated": True, "token": TOKEN})
        yield pm
        await pm.close()

    async def test_adopt_then_initialize(self, fresh, api, storage):
        salt = generate_salt()
        api.salt = b64encode(salt)
        assert await fresh.adopt_remote_salt() is True
        assert await storage.get(MASTER_SALT) == api.salt
        await fresh.initialize_vault(MASTER)
        assert fresh.session.salt == salt
        assert api.salt == b64encode(salt)

    async def test_no_remote_salt(self, fresh, storage):
        assert await fresh.adopt_remote_salt() is False
        assert await storage.get(MASTER_SALT) is None

    async def test_invalid_remote_salt_ignored(self, fresh, api, storage):
        api.salt = b64encode(b"short")
        assert await fresh.adopt_remote_salt() is False
        assert await storage.get(MASTER_SALT) is None

    async def test_existing_vault_keeps_its_salt(self, manager, api, storage):
        before = await storage.get(MASTER_SALT)
        api.salt = b64encode(generate_salt())
        assert await manager.adopt_remote_salt() is False
        assert await storage.get(MASTER_SALT) == before

    async def test_backend_down(self, fresh, api):
        api.fail_status = 503
        assert await fresh.adopt_remote_salt() is False


class TestRemoteToRecord:
    """Conversion of API entries into local records."""

    def test_iso_dates(self):
        blob = {"ciphertext": "AA==", "iv": "AA==", "salt": "AA=="}
        record = remote_to_record({
            "_id": "abc",
            "domain": "x.com",
            "username": "u",
            "encryptedPassword": blob,
            "createdAt": "1970-01-01T00:00:01Z",
            "updatedAt": "1970-01-01T00:00:02Z",
        }, now=5)
        assert record.id == "abc"
        assert record.created_at == 1000
        assert record.updated_at == 2000
        assert record.password_blob.model_dump() == blob

    def test_missing_dates_use_now(self):
        blob = {"ciphertext": "AA==", "iv": "AA==", "salt": "AA=="}
        record = remote_to_record(
            {"id": 7, "domain": "x.com", "username": "u", "encryptedPassword": blob},
            now=42,
        )
        assert record.id == "7"
        assert record.created_at == record.updated_at == 42

    def test_missing_blob_rejected(self):
        with pytest.raises(KeyError):
            remote_to_record({"_id": "a", "domain": "x", "username": "u"}, now=0)
