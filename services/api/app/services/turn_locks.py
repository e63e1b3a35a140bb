from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class UserTurnLocks:
    """One lock per user id, held for the whole of a chat turn.

    Two turns from the same user never interleave, so neither can create a draft while the
    other still believes there is none. Turns from different users do not contend. Entries
    are dropped once no turn holds or waits on them.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, user_id: str) -> Iterator[None]:
        lock = self._acquire_ref(user_id)
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            self._release_ref(user_id)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _acquire_ref(self, user_id: str) -> threading.Lock:
        with self._guard:
            lock, refs = self._locks.get(user_id, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[user_id] = (lock, refs + 1)
            return lock

    def _release_ref(self, user_id: str) -> None:
        with self._guard:
            lock, refs = self._locks[user_id]
            if refs <= 1:
                del self._locks[user_id]
            else:
                self._locks[user_id] = (lock, refs - 1)


turn_locks = UserTurnLocks()
