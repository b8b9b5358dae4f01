import threading
from collections.abc import Iterator
from contextlib import contextmanager


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class KeyedLocks:
    """
    One lock per string key, alive only while some caller holds or waits
    on it.

    `hold` takes its keys in sorted order so two callers that share keys
    can never deadlock on each other.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def _check_out(self, key: str) -> threading.Lock:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
            return entry.lock

    def _check_in(self, key: str) -> None:
        with self._guard:
            entry = self._entries[key]
            entry.users -= 1
            if not entry.users:
                del self._entries[key]

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        ordered = sorted(set(keys))
        checked_out: list[str] = []
        acquired: list[threading.Lock] = []
        try:
            for key in ordered:
                lock = self._check_out(key)
                checked_out.append(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in checked_out:
                self._check_in(key)


def duty_key(duty_id: str) -> str:
    return f"duty:{duty_id}"


def doctor_key(doctor_id: str) -> str:
    return f"doctor:{doctor_id}"


def date_key(day) -> str:
    return f"date:{day.isoformat()}"


def leave_key(leave_id: str) -> str:
    return f"leave:{leave_id}"


def swap_key(swap_id: str) -> str:
    return f"swap:{swap_id}"
