"""Password hashing and session token generation."""
import secrets

import bcrypt

from beatwell.config import settings


class CredentialCodec:
    """
    Hashes and verifies passwords with bcrypt and mints opaque session tokens.

    Tokens are 32 random bytes (256 bits) hex-encoded. They carry no
    structure and are only meaningful when looked up against stored sessions.
    """

    TOKEN_BYTES = 32

    def __init__(self, rounds: int | None = None):
        self.rounds = rounds or settings.bcrypt_rounds

    def hash(self, password: str) -> str:
        """Hash a password using bcrypt with a fresh salt."""
        return bcrypt.hashpw(
            password.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)
        ).decode("utf-8")

    def verify(self, password: str, hashed_password: str | None) -> bool:
        """Verify a password against its hash. Unusable hashes never verify."""
        if not hashed_password:
            return False
        try:
            return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
        except ValueError:
            # Not a bcrypt hash (e.g. a legacy placeholder)
            return False

    def new_token(self) -> str:
        """Generate a cryptographically secure session token."""
        return secrets.token_hex(self.TOKEN_BYTES)


# Singleton instance
credential_codec = CredentialCodec()
