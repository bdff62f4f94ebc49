"""Shared pytest fixtures for time capsule tests."""

from pathlib import Path

import pytest
import pytest_asyncio

from timecapsule.auth import issue_key
from timecapsule.capsule.schema import Capsule
from timecapsule.clock import Clock
from timecapsule.config import Settings
from timecapsule.db import get_db, init_db
from timecapsule.service import CapsuleService

NOW = 1_700_000_000
MESSAGE = "Message secret de test crypté".encode("utf-8")
EMAIL_HASH = "a" * 64
PASSWORD_HASH = "b" * 64
WRONG_HASH = "c" * 64


class FixedClock(Clock):
    """A clock that only moves when told to."""

    def __init__(self, timestamp: int):
        self.timestamp = timestamp

    def now(self) -> int:
        return self.timestamp

    def advance(self, seconds: int) -> None:
        self.timestamp += seconds


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def settings(tmp_path: Path, monkeypatch) -> Settings:
    """Create settings with a temporary database and a clean environment."""
    monkeypatch.chdir(tmp_path)
    return Settings(db_path=tmp_path / "test_capsules.db")


@pytest.fixture
def sample_capsule() -> Capsule:
    """An active capsule unlocking one hour after NOW."""
    return Capsule(
        sender="alice",
        encrypted_message=MESSAGE,
        unlock_timestamp=NOW + 3600,
        recipient_email_hash=EMAIL_HASH,
        password_hash=PASSWORD_HASH,
        password_hint="Votre couleur préférée",
        message_title="Ma première capsule de test",
        created_at=NOW,
        is_claimed=False,
    )


@pytest_asyncio.fixture
async def db(settings: Settings):
    """Initialize database and return connection."""
    await init_db(settings.db_path)
    conn = await get_db(settings.db_path)
    yield conn
    await conn.close()


@pytest.fixture
def service(db, settings: Settings, clock: FixedClock) -> CapsuleService:
    return CapsuleService(db, settings, clock)


@pytest_asyncio.fixture
async def api_key(db) -> str:
    """Issue an API key for sender 'alice' and return the raw key."""
    return await issue_key(db, name="alice", rate_limit=60)
