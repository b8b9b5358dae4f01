import threading
from collections.abc import Iterator, Mapping, MutableMapping
from typing import Generic, Protocol, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class KeyValueDatabase(Protocol[K, V]):
    def put(self, key: K, value: V) -> None: ...

    def put_many(self, items: Mapping[K, V]) -> None: ...

    def get(self, key: K) -> V | None: ...

    def all(self) -> list[V]: ...


class InMemoryKeyValueDatabase(Generic[K, V]):
    """
    Simple in-memory key/value database.

    Every read and write holds the same lock, so a `put_many` is seen by
    readers either entirely or not at all.
    """

    def __init__(self) -> None:
        self._store: MutableMapping[K, V] = {}
        self._lock = threading.RLock()

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._store[key] = value

    def put_many(self, items: Mapping[K, V]) -> None:
        """
        Write several records as one unit.
        """
        with self._lock:
            self._store.update(items)

    def get(self, key: K) -> V | None:
        with self._lock:
            return self._store.get(key)

    def delete(self, key: K) -> None:
        with self._lock:
            self._store.pop(key, None)

    def all(self) -> list[V]:
        with self._lock:
            return list(self._store.values())

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __iter__(self) -> Iterator[V]:
        return iter(self.all())

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
