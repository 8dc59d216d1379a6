"""
Per-Entity Locks

Single-writer discipline: each loan or savings account is mutated by at most
one atomic unit at a time. Locks are keyed by entity type and id and live
only while some thread holds or waits on them.
"""

import threading
from contextlib import contextmanager
from typing import Dict, List, Tuple


class EntityLockRegistry:
    """Hands out one re-entrant lock per (entity_type, entity_id)"""

    def __init__(self):
        # key -> [lock, number of threads holding or waiting]
        self._locks: Dict[Tuple[str, str], List] = {}
        self._guard = threading.Lock()

    def active_count(self) -> int:
        """Number of entities currently locked or waited on"""
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, entity_type: str, entity_id: str):
        """Hold the entity's lock for the duration of the block"""
        key = (entity_type, entity_id)
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._locks[key] = entry
            entry[1] += 1

        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]
