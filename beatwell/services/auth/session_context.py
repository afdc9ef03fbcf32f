"""
Process-wide handle on the active session.

The persisted value is read once when the context is loaded and then kept in
memory; reads never touch the network or the local entity store. Writes go
to disk first (atomic replace) and then swap the in-memory value, all under
one lock so a reader never observes a half-applied change.
"""
import logging
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from beatwell.config import settings


logger = logging.getLogger(__name__)


class SessionHandle(BaseModel):
    """The active session plus the identity fields screens need without a lookup."""

    model_config = ConfigDict(frozen=True)

    token: str
    user_id: int
    username: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    expires_at: Optional[datetime] = None


class SessionContext:
    """Single-writer, multiple-reader holder of the current SessionHandle."""

    def __init__(self, path: Path, handle: Optional[SessionHandle] = None):
        self.path = Path(path)
        self._handle = handle
        self._lock = threading.RLock()

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "SessionContext":
        """
        Read the persisted handle, if any.

        A missing file means no session. An unreadable or corrupt file is
        logged and treated as no session rather than failing startup.
        """
        path = Path(path or settings.resolved_session_context_path).expanduser()
        handle = None
        if path.exists():
            try:
                handle = SessionHandle.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, ValidationError) as e:
                logger.warning("Ignoring unreadable session context at %s: %s", path, e)
        return cls(path, handle)

    def current(self) -> Optional[SessionHandle]:
        with self._lock:
            return self._handle

    @property
    def is_authenticated(self) -> bool:
        return self.current() is not None

    def set(self, handle: SessionHandle) -> None:
        with self._lock:
            self._write(handle.model_dump_json())
            self._handle = handle

    def clear(self) -> None:
        with self._lock:
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Could not remove session context at %s: %s", self.path, e)
            self._handle = None

    def _write(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".session-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
