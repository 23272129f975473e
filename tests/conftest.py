import os

os.environ.setdefault("TFA_SECRET_KEY", "test-secret-key-for-two-factor-suite")
os.environ.setdefault("TFA_ENCRYPTION_KEY", "test-encryption-passphrase")

import asyncio
import re
import uuid

import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from twofactor.config import Settings
from twofactor.db import Base, User
from twofactor.mfa.delivery import Delivery
from twofactor.mfa.service import TwoFactorService
from twofactor.mfa.store import InMemoryEphemeralStore
from twofactor.mfa.vault import SecretVault

START_TIME = 1_700_000_010.0


class FakeClock:
    """Unix-time clock that only moves when told to."""

    def __init__(self, now: float = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSender:
    """Captures outgoing messages instead of delivering them."""

    def __init__(self) -> None:
        self.sms: list[tuple[str, str]] = []
        self.emails: list[tuple[str, str, str]] = []

    async def send_sms(self, to: str, message: str) -> None:
        self.sms.append((to, message))

    async def send_email(self, to: str, subject: str, body: str) -> None:
        self.emails.append((to, subject, body))


class YieldingStore(InMemoryEphemeralStore):
    """In-memory store that hands control to the event loop before every call.

    Lets coroutines started with ``asyncio.gather`` interleave between a
    read and the write that depends on it.
    """

    async def get(self, key: str) -> bytes | None:
        await asyncio.sleep(0)
        return await super().get(key)

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        await asyncio.sleep(0)
        await super().set(key, value, ttl)

    async def delete(self, *keys: str) -> int:
        await asyncio.sleep(0)
        return await super().delete(*keys)

    async def compare_and_swap(self, key, expected, new, ttl=None) -> bool:
        await asyncio.sleep(0)
        return await super().compare_and_swap(key, expected, new, ttl)


def extract_code(text: str) -> str:
    return re.search(r"\b(\d{6})\b", text).group(1)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    session = sessionmaker(db_engine, expire_on_commit=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def user(db_session) -> User:
    user = User(id=uuid.uuid4(), email="buyer@example.com", phone_number="+15555550100")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def user_without_phone(db_session) -> User:
    user = User(id=uuid.uuid4(), email="supplier@example.com", phone_number=None)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def store(clock) -> InMemoryEphemeralStore:
    return InMemoryEphemeralStore(clock=clock)


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def delivery(sender) -> Delivery:
    return Delivery(sms=sender, email=sender)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        secret_key="test-secret-key-for-two-factor-suite",
        encryption_key="test-encryption-passphrase",
        db_url="sqlite://",
    )


@pytest.fixture(scope="session")
def vault() -> SecretVault:
    return SecretVault("test-encryption-passphrase", "twofactor-test-salt")


@pytest.fixture
def service(db_session, store, delivery, settings, vault, clock) -> TwoFactorService:
    return TwoFactorService(db_session, store, delivery, settings, vault=vault, clock=clock)


@pytest.fixture
def yielding_store(clock) -> YieldingStore:
    return YieldingStore(clock=clock)


@pytest.fixture
def yielding_service(db_session, yielding_store, delivery, settings, vault, clock) -> TwoFactorService:
    """Service over a store that lets concurrent requests interleave."""
    return TwoFactorService(db_session, yielding_store, delivery, settings, vault=vault, clock=clock)


def current_code(service: TwoFactorService, secret: str) -> str:
    manager = service.totp_manager
    return manager.compute_code(secret, manager.time_step(service.clock()))


@pytest_asyncio.fixture
async def enrolled(service, user, clock):
    """User with 2FA enabled; the clock sits one step past confirmation."""
    start = await service.start_enrollment(user.id)
    assert await service.confirm_enrollment(user.id, current_code(service, start.secret))
    clock.advance(30)
    return start


@pytest.fixture
def code_for(service):
    """Current TOTP code for a hex secret at the fake clock's time."""
    return lambda secret: current_code(service, secret)


@pytest.fixture
def sent_code(sender):
    """Code from the most recent SMS or email."""

    def latest(channel: str = "sms") -> str:
        if channel == "sms":
            return extract_code(sender.sms[-1][1])
        return extract_code(sender.emails[-1][2])

    return latest
