"""
Client-side authentication primitives.

- CredentialCodec: bcrypt password hashing and opaque session tokens
- SessionContext: the persisted "who is logged in" handle

Usage:
    from beatwell.services.auth import SessionContext, credential_codec

    context = SessionContext.load()
    handle = context.current()
"""
from beatwell.services.auth.credentials import CredentialCodec, credential_codec
from beatwell.services.auth.session_context import SessionContext, SessionHandle


__all__ = [
    "CredentialCodec",
    "credential_codec",
    "SessionContext",
    "SessionHandle",
]
