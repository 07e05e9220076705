"""Unit tests for the colony directory lock."""

import os

import pytest

from colony.core.lock import ColonyLock
from colony.utils.logging import ConflictError


class TestColonyLock:
    """Test cases for ColonyLock."""

    def test_acquire_records_pid(self, tmp_path):
        lock = ColonyLock(tmp_path / "colony" / "colony.lock")

        lock.acquire()
        try:
            assert lock.held
            assert lock.owner_pid() == os.getpid()
        finally:
            lock.release()

        assert not lock.held
        assert (tmp_path / "colony" / "colony.lock").exists()

    def test_second_holder_is_rejected(self, tmp_path):
        path = tmp_path / "colony.lock"

        with ColonyLock(path):
            with pytest.raises(ConflictError, match="in use by another orchestrator") as exc_info:
                ColonyLock(path).acquire()

        assert exc_info.value.context["owner_pid"] == os.getpid()

    def test_released_lock_can_be_taken_again(self, tmp_path):
        path = tmp_path / "colony.lock"

        with ColonyLock(path):
            pass
        with ColonyLock(path) as lock:
            assert lock.held

    def test_acquire_and_release_are_idempotent(self, tmp_path):
        lock = ColonyLock(tmp_path / "colony.lock")

        lock.acquire()
        lock.acquire()
        lock.release()
        lock.release()

        assert not lock.held
