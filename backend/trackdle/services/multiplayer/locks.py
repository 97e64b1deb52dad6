"""Per-entity serialization for read-modify-write operations.

Every mutation of a lobby or game runs while holding the lock for that
entity id. Combined with `SELECT ... FOR UPDATE` on the row this
serializes concurrent joins, ready toggles and guesses on one entity,
while different entities proceed in parallel.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Tuple


class EntityLocks:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Tuple[str, str], threading.RLock] = {}

    def lock_for(self, kind: str, entity_id: str) -> threading.RLock:
        key = (kind, str(entity_id))
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, kind: str, entity_id: str) -> Iterator[None]:
        lock = self.lock_for(kind, entity_id)
        with lock:
            yield

    def discard(self, kind: str, entity_id: str) -> None:
        with self._guard:
            self._locks.pop((kind, str(entity_id)), None)

    def __contains__(self, key) -> bool:
        kind, entity_id = key
        with self._guard:
            return (kind, str(entity_id)) in self._locks


entity_locks = EntityLocks()
