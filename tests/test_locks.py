"""
Test suite for per-entity locks
"""

import threading
import time

import pytest

from village_sacco.locks import EntityLockRegistry


class TestEntityLockRegistry:
    """Test lock lifetime and exclusion"""

    def setup_method(self):
        self.locks = EntityLockRegistry()

    def test_lock_released_after_use(self):
        with self.locks.hold("loan", "L1"):
            assert self.locks.active_count() == 1
        assert self.locks.active_count() == 0

    def test_unknown_ids_leave_nothing_behind(self):
        for i in range(100):
            with self.locks.hold("savings_account", f"missing-{i}"):
                pass
        assert self.locks.active_count() == 0

    def test_lock_released_when_block_raises(self):
        with pytest.raises(RuntimeError):
            with self.locks.hold("loan", "L1"):
                raise RuntimeError("boom")
        assert self.locks.active_count() == 0

    def test_reentrant(self):
        with self.locks.hold("loan", "L1"):
            with self.locks.hold("loan", "L1"):
                assert self.locks.active_count() == 1
        assert self.locks.active_count() == 0

    def test_same_entity_is_exclusive(self):
        inside = []
        overlaps = []

        def worker():
            with self.locks.hold("loan", "L1"):
                if inside:
                    overlaps.append(True)
                inside.append(True)
                time.sleep(0.01)
                inside.pop()

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert overlaps == []
        assert self.locks.active_count() == 0
