"""Test fixtures — in-memory database, fake MQTT broker, ASGI client.

Learn: Each test gets a brand-new SQLite database (aiosqlite, in memory,
one shared connection via StaticPool) with the schema created from the
ORM models. The app's get_db dependency is overridden to hand out
sessions bound to that engine, so every request sees the same data
but nothing leaks between tests.

The MQTT broker is replaced by FakeMqttClient, attached to a real
TopicPublisher: topic naming, JSON encoding, and the outcome handling
all run for real; only the network is gone.
"""

import itertools
import threading
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from payrelay.auth import password as password_module
from payrelay.auth.jwt import create_access_token
from payrelay.db.engine import get_db
from payrelay.db.models import Account, Base, Device
from payrelay.main import app, install_relay
from payrelay.services.publisher import TopicPublisher

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


# ─── Fake MQTT ───────────────────────────────────────────


class FakeMessageInfo:
    def __init__(self, mid: int, rc: int = 0, acked: bool = True):
        self.mid = mid
        self.rc = rc
        self._acked = acked

    def wait_for_publish(self, timeout=None):
        return None

    def is_published(self) -> bool:
        return self._acked


class FakeMqttClient:
    """Records publishes instead of sending them.

    Flip `connected`, `rc` or `acked` to simulate an offline client, a
    broker rejection, or a PUBACK that never arrives.
    """

    def __init__(self):
        self.connected = True
        self.rc = 0
        self.acked = True
        self.published: list[tuple[str, str, int]] = []
        self._mids = itertools.count(1)
        self._lock = threading.Lock()

    def is_connected(self) -> bool:
        return self.connected

    def publish(self, topic, payload, qos=0):
        if "+" in topic or "#" in topic:
            # Same guard paho applies before anything reaches the socket.
            raise ValueError("Publish topic cannot contain wildcards.")
        with self._lock:
            mid = next(self._mids)
            if self.rc == 0:
                self.published.append((topic, payload, qos))
        return FakeMessageInfo(mid, rc=self.rc, acked=self.acked)

    def disconnect(self):
        self.connected = False

    def loop_stop(self):
        pass


# ─── Fixtures ────────────────────────────────────────────


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    """bcrypt at 12 rounds makes the auth tests crawl."""
    monkeypatch.setattr(password_module, "BCRYPT_ROUNDS", 4)


@pytest_asyncio.fixture()
async def db_engine():
    engine = create_async_engine(
        TEST_DB_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture()
def mqtt_client():
    return FakeMqttClient()


@pytest.fixture()
def publisher(mqtt_client):
    pub = TopicPublisher(topic_prefix="prefix", publish_timeout=1.0)
    pub.attach(mqtt_client)
    return pub


@pytest.fixture()
def relay(publisher):
    """The app-wide RelayService, rebuilt per test with the fake broker."""
    return install_relay(app, publisher)


@pytest_asyncio.fixture()
async def client(session_factory, relay):
    """HTTP client against the real app, with get_db pointed at the test DB."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await relay.drain()
    await relay.registry.close_all()
    app.dependency_overrides.clear()


# ─── Data helpers ────────────────────────────────────────


async def make_account(db: AsyncSession, email: str | None = None) -> Account:
    account = Account(
        email=email or f"merchant-{uuid.uuid4().hex[:8]}@example.com",
        password_hash=password_module.hash_password("password_123"),
    )
    db.add(account)
    await db.commit()
    await db.refresh(account)
    return account


async def make_device(db: AsyncSession, account: Account, serial: str) -> Device:
    device = Device(serial=serial, account_id=account.id)
    db.add(device)
    await db.commit()
    await db.refresh(device)
    return device


def auth_headers(account: Account) -> dict[str, str]:
    token = create_access_token(str(account.id), email=account.email)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture()
async def merchant(db_session):
    """Account A1 owning terminal DEV-001."""
    account = await make_account(db_session, "a1@example.com")
    await make_device(db_session, account, "DEV-001")
    return account
