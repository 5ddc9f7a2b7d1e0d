"""Shared fixtures for the vault test-suite.

KDF iterations are lowered so key derivation stays fast; everything else runs
with production semantics.
"""
import pytest

from passcommit.storage import MemoryStorage
from passcommit.vault.config import VaultConfig
from passcommit.vault.session import VaultSession
from passcommit.vault.store import VaultStore

MASTER = "correct horse battery"
OTHER = "tr0ub4dor&3-staple"


class FakeClock:
    """Manually advanced wall clock (seconds)."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def config():
    return VaultConfig(kdf_iterations=1000, idle_timeout=60)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session(storage, config, clock):
    return VaultSession(storage, config, clock=clock)


@pytest.fixture
async def unlocked(session):
    """A freshly initialized (therefore unlocked) session."""
    await session.initialize(MASTER)
    yield session
    await session.close()


@pytest.fixture
def store(unlocked):
    return VaultStore(unlocked)
