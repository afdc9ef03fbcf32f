"""
Unit tests for CredentialCodec.

Tests:
- Password hashing and verification
- Handling of unusable stored hashes
- Session token generation
"""
import string

import pytest

from beatwell.config import settings
from beatwell.services.auth.credentials import CredentialCodec, credential_codec


class TestPasswordHashing:
    """Tests for password hashing and verification."""

    @pytest.mark.parametrize(
        "password",
        ["Passw0rd!", "correct horse battery staple", "ünïcødé-пароль", "x" * 60],
    )
    def test_hash_then_verify_round_trips(self, codec: CredentialCodec, password):
        """Test that a hashed password verifies against itself."""
        hashed = codec.hash(password)

        assert hashed != password
        assert hashed.startswith("$2b$")
        assert codec.verify(password, hashed) is True

    @pytest.mark.parametrize("other", ["passw0rd!", "Passw0rd", "Passw0rd! ", ""])
    def test_verify_rejects_other_passwords(self, codec: CredentialCodec, other):
        """Test that only the exact password verifies."""
        hashed = codec.hash("Passw0rd!")

        assert codec.verify(other, hashed) is False

    def test_hash_is_salted(self, codec: CredentialCodec):
        """Test that hashing same password twice gives different hashes."""
        assert codec.hash("same_password") != codec.hash("same_password")

    def test_hash_uses_configured_rounds(self):
        """Test that the cost factor is embedded in the hash."""
        hashed = CredentialCodec(rounds=5).hash("Passw0rd!")

        assert hashed.startswith("$2b$05$")

    def test_default_rounds_come_from_settings(self):
        """Test that the codec falls back to configured rounds."""
        assert CredentialCodec().rounds == settings.bcrypt_rounds
        assert credential_codec.rounds == settings.bcrypt_rounds

    @pytest.mark.parametrize("stored", [None, "", "not-a-bcrypt-hash", "plaintext-legacy"])
    def test_verify_unusable_hash_is_false(self, codec: CredentialCodec, stored):
        """Test that missing or malformed hashes never verify."""
        assert codec.verify("Passw0rd!", stored) is False


class TestTokenGeneration:
    """Tests for opaque session tokens."""

    def test_token_is_256_bit_hex(self, codec: CredentialCodec):
        """Test token format: 64 lowercase hex characters."""
        token = codec.new_token()

        assert len(token) == 64
        assert set(token) <= set(string.hexdigits.lower())

    def test_tokens_are_unique(self, codec: CredentialCodec):
        """Test that tokens do not repeat."""
        tokens = {codec.new_token() for _ in range(200)}

        assert len(tokens) == 200
