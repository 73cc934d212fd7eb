"""Per-order mutual exclusion.

Every mutating operation holds its order's lock from load through commit, so
two concurrent fulfillments or refunds on one order are serialized and the
second sees the first's quantities.

A lock lives only while some caller holds or waits on it; the last one out
removes it from the registry.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class OrderLocks:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def _acquire_entry(self, order_id: str) -> _Entry:
        with self._guard:
            entry = self._entries.setdefault(order_id, _Entry())
            entry.users += 1
            return entry

    def _release_entry(self, order_id: str, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[order_id]

    @contextmanager
    def hold(self, order_id: str) -> Iterator[None]:
        order_id = str(order_id)
        entry = self._acquire_entry(order_id)
        try:
            with entry.lock:
                yield
        finally:
            self._release_entry(order_id, entry)
