"""
Unit tests for SessionContext.

Tests:
- Loading with and without a persisted handle
- set/clear persistence across reloads
- Corrupt files treated as no session
- Reader/writer consistency under threads
"""
import logging
import threading
from datetime import datetime

import pytest
from pydantic import ValidationError

from beatwell.services.auth.session_context import SessionContext, SessionHandle


def make_handle(**overrides) -> SessionHandle:
    defaults = {
        "token": "a" * 64,
        "user_id": 100,
        "username": "alice",
        "email": "alice@example.com",
        "first_name": "Alice",
        "last_name": "Ng",
        "expires_at": datetime(2026, 4, 13, 9, 30),
    }
    defaults.update(overrides)
    return SessionHandle(**defaults)


class TestLoad:
    """Tests for reading the persisted handle."""

    def test_missing_file_means_no_session(self, tmp_path):
        context = SessionContext.load(tmp_path / "session.json")

        assert context.current() is None
        assert context.is_authenticated is False

    def test_corrupt_file_is_ignored(self, tmp_path, caplog):
        """Test that an unreadable file does not fail startup."""
        path = tmp_path / "session.json"
        path.write_text("{not json", encoding="utf-8")

        with caplog.at_level(logging.WARNING):
            context = SessionContext.load(path)

        assert context.current() is None
        assert "Ignoring unreadable session context" in caplog.text

    def test_incomplete_handle_is_ignored(self, tmp_path):
        path = tmp_path / "session.json"
        path.write_text('{"token": "abc"}', encoding="utf-8")

        assert SessionContext.load(path).current() is None


class TestSetAndClear:
    """Tests for mutations and their persistence."""

    def test_set_survives_reload(self, tmp_path):
        """Test that a handle written by one process is read by the next."""
        path = tmp_path / "session.json"
        handle = make_handle()

        SessionContext.load(path).set(handle)
        reloaded = SessionContext.load(path)

        assert reloaded.current() == handle
        assert reloaded.is_authenticated is True

    def test_set_replaces_previous_handle(self, tmp_path):
        context = SessionContext.load(tmp_path / "session.json")
        context.set(make_handle(token="first"))
        context.set(make_handle(token="second"))

        assert context.current().token == "second"
        assert SessionContext.load(context.path).current().token == "second"

    def test_set_leaves_no_temp_files(self, tmp_path):
        context = SessionContext.load(tmp_path / "session.json")

        context.set(make_handle())

        assert [p.name for p in tmp_path.iterdir()] == ["session.json"]

    def test_set_creates_parent_directory(self, tmp_path):
        context = SessionContext.load(tmp_path / "nested" / "dir" / "session.json")

        context.set(make_handle())

        assert context.path.exists()

    def test_clear_removes_file_and_handle(self, tmp_path):
        context = SessionContext.load(tmp_path / "session.json")
        context.set(make_handle())

        context.clear()

        assert context.current() is None
        assert not context.path.exists()
        assert SessionContext.load(context.path).current() is None

    def test_clear_without_session_is_noop(self, tmp_path):
        context = SessionContext.load(tmp_path / "session.json")

        context.clear()

        assert context.current() is None

    def test_handle_is_immutable(self):
        handle = make_handle()

        with pytest.raises(ValidationError):
            handle.token = "changed"


class TestConcurrency:
    """Tests for single-writer, multiple-reader behavior."""

    def test_readers_only_see_whole_handles(self, tmp_path):
        """Test that concurrent readers never observe a mixed handle."""
        context = SessionContext.load(tmp_path / "session.json")
        handles = [make_handle(token=f"token-{i}", user_id=i) for i in range(20)]
        torn_reads = []
        stop = threading.Event()

        def reader():
            while not stop.is_set():
                current = context.current()
                if current is not None and current.token != f"token-{current.user_id}":
                    torn_reads.append(current)

        readers = [threading.Thread(target=reader) for _ in range(4)]
        for thread in readers:
            thread.start()
        for handle in handles:
            context.set(handle)
        context.clear()
        stop.set()
        for thread in readers:
            thread.join()

        assert torn_reads == []
        assert context.current() is None
