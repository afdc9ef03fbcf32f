"""
Test configuration and fixtures for the BeatWell client.

- Function-scoped SQLite local store in tmp_path (real database, no mocks)
- Fake clock shared by the store and the mock backend
- Session Context persisted under tmp_path
- MockRemoteGateway standing in for the backend
- SyncCoordinator wired from all of the above
"""

from datetime import datetime

import pytest
import pytest_asyncio

from beatwell.services.auth.credentials import CredentialCodec
from beatwell.services.auth.session_context import SessionContext
from beatwell.services.local_store import LocalStore
from beatwell.services.sync_coordinator import SyncCoordinator
from tests.factories import TEST_PASSWORD
from tests.fixtures.mocks import FakeClock, MockRemoteGateway, NetworkSwitch


# =============================================================================
# Local Store Fixtures
# =============================================================================


@pytest.fixture
def codec() -> CredentialCodec:
    """Credential codec with the minimum bcrypt cost, to keep tests fast."""
    return CredentialCodec(rounds=4)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 14, 9, 30))


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'beatwell.db'}"


@pytest.fixture
def store(database_url, codec, clock):
    """
    Local store on a fresh SQLite file.

    Each test gets its own file, so no cleanup queries are needed.
    """
    local_store = LocalStore.open(database_url, codec=codec, clock=clock)
    yield local_store
    local_store.engine.dispose()


@pytest.fixture
def session_context(tmp_path) -> SessionContext:
    return SessionContext.load(tmp_path / "session.json")


# =============================================================================
# Remote / Coordinator Fixtures
# =============================================================================


@pytest.fixture
def mock_gateway(clock) -> MockRemoteGateway:
    """
    Mock backend for coordinator tests.

    Configure per test with offline, delay, set_error() or fail_method().
    """
    return MockRemoteGateway(clock)


@pytest.fixture
def network() -> NetworkSwitch:
    return NetworkSwitch(online=True)


@pytest.fixture
def coordinator(store, mock_gateway, session_context, codec, network) -> SyncCoordinator:
    return SyncCoordinator(
        store,
        mock_gateway,
        session_context,
        codec=codec,
        is_online=network,
        remote_timeout=0.5,
    )


@pytest.fixture
def account(mock_gateway) -> dict:
    """A server-side account that has never logged in on this device."""
    return mock_gateway.add_account(
        "alice",
        TEST_PASSWORD,
        email="alice@example.com",
        first_name="Alice",
        last_name="Ng",
        city="Pune",
    )


@pytest_asyncio.fixture
async def logged_in(coordinator, account):
    """Coordinator with alice logged in; yields the SessionHandle."""
    result = await coordinator.login("alice", TEST_PASSWORD)
    return result.value


# =============================================================================
# pytest markers
# =============================================================================


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers",
        "security: marks tests as security tests (deselect with '-m not security')",
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m not slow')"
    )
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
