"""
Single-writer-per-user discipline.

All ledger writes for one user go through user_lock(user_id), so level and
skill recomputation never races against itself inside this process. Across
processes the ledger's unique (user_id, sequence) index plays the same role.
Locks are re-entrant: a badge award appends from inside an ingestion that
already holds the user's lock.
"""
import threading
from contextlib import contextmanager
from typing import Iterator

_registry: dict[int, threading.RLock] = {}
_registry_lock = threading.Lock()


def _lock_for(user_id: int) -> threading.RLock:
    with _registry_lock:
        lock = _registry.get(user_id)
        if lock is None:
            lock = _registry[user_id] = threading.RLock()
        return lock


@contextmanager
def user_lock(user_id: int) -> Iterator[None]:
    lock = _lock_for(user_id)
    with lock:
        yield
