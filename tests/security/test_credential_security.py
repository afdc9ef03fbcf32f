"""
Security tests for credential and session handling on the device.

Tests security aspects including:
- Passwords never stored or persisted in plaintext
- Session tokens never logged in full
- Local state cleared on logout even without a network
"""

import logging

import pytest

from beatwell.services.errors import NoConnectivityError
from tests.factories import TEST_PASSWORD, create_session, create_user


@pytest.mark.security
class TestCredentialStorage:
    """Tests for what ends up on disk after a login."""

    @pytest.mark.asyncio
    async def test_password_only_stored_as_bcrypt_hash(self, coordinator, store, account):
        await coordinator.login("alice", TEST_PASSWORD)

        user = store.get_user(account["user_id"])
        assert user.password_hash != TEST_PASSWORD
        assert user.password_hash.startswith("$2")

    @pytest.mark.asyncio
    async def test_session_file_holds_no_password(self, coordinator, account, session_context):
        await coordinator.login("alice", TEST_PASSWORD)

        content = session_context.path.read_text(encoding="utf-8")
        assert TEST_PASSWORD not in content
        assert "password" not in content

    def test_profile_excludes_credential(self, store):
        user = create_user(store, "alice")

        assert "password_hash" not in user.to_profile()

    @pytest.mark.asyncio
    async def test_profile_update_cannot_touch_credential(self, coordinator, store, logged_in, network):
        network.online = False
        before = store.get_user(logged_in.user_id).password_hash

        await coordinator.update_profile(city="Goa", password_hash="$2b$04$forged")

        assert store.get_user(logged_in.user_id).password_hash == before


@pytest.mark.security
class TestSessionSecurity:
    """Tests for session token handling."""

    def test_session_tokens_not_guessable(self, store, codec):
        """Test that session tokens are sufficiently random."""
        user = create_user(store)

        tokens = [create_session(store, user).token for _ in range(100)]

        assert len(set(tokens)) == 100
        for token in tokens:
            assert len(token) >= 32

    @pytest.mark.asyncio
    async def test_full_token_never_logged(self, coordinator, account, caplog):
        with caplog.at_level(logging.DEBUG):
            result = await coordinator.login("alice", TEST_PASSWORD)
            await coordinator.logout()

        assert result.value.token[:8] in caplog.text
        assert result.value.token not in caplog.text

    @pytest.mark.asyncio
    async def test_offline_logout_leaves_no_usable_session(
        self, coordinator, store, logged_in, network, session_context
    ):
        network.online = False

        await coordinator.logout()

        assert store.find_valid_session(logged_in.token) is None
        assert not session_context.path.exists()

    @pytest.mark.asyncio
    async def test_offline_session_cannot_be_created(self, coordinator, store, account, network):
        """Test that login has no local-credential shortcut when offline."""
        await coordinator.login("alice", TEST_PASSWORD)
        await coordinator.logout()
        network.online = False

        with pytest.raises(NoConnectivityError):
            await coordinator.login("alice", TEST_PASSWORD)

        assert coordinator.current_session() is None
