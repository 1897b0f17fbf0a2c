"""Shared test fixtures for the identity engine test suite."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import Mock

import pytest
from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

import clients.vault_client as vault_module
vault_module.reset_cache()

from clients.email_client import EmailGatewayClient
from identity.bootstrap import build_engine, seed_default_roles
from identity.config import IdentityConfig
from identity.storage.memory import MemoryIdentityStorage


# =============================================================================
# TEST CONSTANTS
# =============================================================================

ACCESS_SECRET = "access-secret-for-tests-0123456789abcdef"
REFRESH_SECRET = "refresh-secret-for-tests-0123456789abcdef"

TEST_EMAIL = "alice@example.com"
TEST_PASSWORD = "correct horse battery staple"

START = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock. Components take it wherever they'd call now_utc()."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# =============================================================================
# ENGINE FIXTURES
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> IdentityConfig:
    """Config with minimum bcrypt cost so the suite stays fast."""
    return IdentityConfig(
        access_token_secret=ACCESS_SECRET,
        refresh_token_secret=REFRESH_SECRET,
        bcrypt_rounds=4,
        storage_backend="memory",
        app_base_url="https://app.example.com",
    )


@pytest.fixture
def storage(clock) -> MemoryIdentityStorage:
    return MemoryIdentityStorage(clock=clock)


@pytest.fixture
def email_client() -> Mock:
    return Mock(spec=EmailGatewayClient)


@pytest.fixture
def engine(config, storage, email_client, clock):
    """Fully wired engine over in-memory storage with the built-in roles."""
    engine = build_engine(config, storage=storage, email_client=email_client, clock=clock)
    seed_default_roles(engine.permissions)
    return engine


@pytest.fixture
def user(engine, email_client):
    """A registered user with the default role. Email client calls reset."""
    registered = engine.accounts.register(TEST_EMAIL, TEST_PASSWORD)
    email_client.reset_mock()
    return registered

