import pytest

from ads_secrets.security.keyring import KeyRing
from ads_secrets.services.redis_store import InMemoryStore
from ads_secrets.services.secrets_repository import SecretsRepository

SECRET_V1 = "test_master_secret_v1_0123456789"
SECRET_V2 = "test_master_secret_v2_9876543210"


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def keyring() -> KeyRing:
    return KeyRing.from_secrets([("v1", SECRET_V1)])


@pytest.fixture
def store(clock: FakeClock) -> InMemoryStore:
    return InMemoryStore(clock=clock)


@pytest.fixture
def repo(store: InMemoryStore, keyring: KeyRing, clock: FakeClock) -> SecretsRepository:
    return SecretsRepository(store, keyring, clock=clock)
