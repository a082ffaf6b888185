from contextlib import contextmanager
from threading import Lock
from typing import Iterator

from .errors import StorageUnavailableError


class LockRegistry:
    """One exclusive lock per record key, live only while someone holds or waits on it.

    ``hold`` takes several keys in sorted order so two callers asking for the
    same pair can never deadlock each other. A key's lock is dropped once its
    last user releases it.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._guard = Lock()
        self._locks: dict[str, Lock] = {}
        self._users: dict[str, int] = {}

    def _checkout(self, key: str) -> Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = Lock()
                self._users[key] = 0
            self._users[key] += 1
            return lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def active_count(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        acquired: list[tuple[str, Lock]] = []
        try:
            for key in sorted(set(keys)):
                lock = self._checkout(key)
                if not lock.acquire(timeout=self.timeout):
                    self._checkin(key)
                    raise StorageUnavailableError(f"Timed out waiting for {key}")
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin(key)
