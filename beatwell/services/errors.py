"""
Failure taxonomy for the sync layer.

Callers only ever see the caller-facing errors below; gateway and store
internals are normalized by the SyncCoordinator before they escape.
"""

from typing import Optional


class BeatWellError(Exception):
    """Base class for every failure raised by the sync layer."""

    default_message = "Operation failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# =============================================================================
# CALLER-FACING
# =============================================================================


class InvalidCredentialsError(BeatWellError):
    """Username/email and password did not match."""

    default_message = "Invalid username or password"


class DuplicateUserError(BeatWellError):
    """Username or email is already registered."""

    default_message = "User already exists"


class NoConnectivityError(BeatWellError):
    """A remote-only operation could not reach the backend."""

    default_message = "No internet connection. Please check your network and try again."


class SessionExpiredError(BeatWellError):
    """No active session, or the session token is no longer valid."""

    default_message = "Invalid or expired session"


class ValidationError(BeatWellError):
    """A request field failed validation, locally or on the server."""

    def __init__(self, field: Optional[str], reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"{field}: {reason}" if field else reason)


class StorageUnavailableError(BeatWellError):
    """The local store could not complete the operation."""

    default_message = "Local storage unavailable"


class RemoteOperationError(BeatWellError):
    """The server rejected the request for a reason outside the taxonomy."""

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


# =============================================================================
# LOCAL STORE INTERNALS
# =============================================================================


class DuplicateKeyError(StorageUnavailableError):
    """A unique column (username, email, token) already holds the value."""

    default_message = "Duplicate key"


# =============================================================================
# REMOTE GATEWAY INTERNALS
# =============================================================================


class RemoteError(BeatWellError):
    """Base class for failures talking to the backend."""

    pass


class RemoteTransportError(RemoteError):
    """Connection failure or timeout; the request may never have arrived."""

    default_message = "Backend unreachable"


class RemoteStatusError(RemoteError):
    """Non-2xx response or a non-success envelope."""

    def __init__(self, status_code: int, message: Optional[str] = None):
        self.status_code = status_code
        super().__init__(message or f"Request failed with HTTP {status_code}")


class ResponseFormatError(RemoteError):
    """The response body was not JSON or did not match the expected record."""

    default_message = "Malformed response from server"
