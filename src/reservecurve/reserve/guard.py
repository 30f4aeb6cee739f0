"""Operation guard: serialization, re-entry rejection and rollback.

Every public operation on an instance runs inside ``guard.atomic(...)``:

1. A second thread waits on the instance lock (operations are serialized).
2. The thread already inside the instance is rejected with ReentrancyError
   if anything it calls tries to come back in.
3. The listed stores are snapshotted on entry. If the body raises, each
   store is restored and registered undo callbacks run in reverse order,
   so a failed operation leaves no partial write.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Optional, Protocol

from reservecurve.errors import ReentrancyError

log = logging.getLogger(__name__)


class Restorable(Protocol):
    def snapshot(self) -> Any: ...

    def restore(self, snapshot: Any) -> None: ...


class Transaction:
    """Undo journal for effects outside the snapshotted stores."""

    def __init__(self) -> None:
        self._undo: List[Callable[[], None]] = []

    def on_rollback(self, callback: Callable[[], None]) -> None:
        self._undo.append(callback)

    def rollback(self) -> None:
        while self._undo:
            callback = self._undo.pop()
            callback()


class OperationGuard:
    """Per-instance critical section with an in-flight flag."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._owner: Optional[int] = None

    @property
    def in_flight(self) -> bool:
        return self._owner is not None

    @contextmanager
    def atomic(self, *stores: Restorable) -> Iterator[Transaction]:
        if self._owner == threading.get_ident():
            raise ReentrancyError(f"Re-entry into {self.name} during an in-flight call")
        with self._lock:
            self._owner = threading.get_ident()
            snapshots = [store.snapshot() for store in stores]
            tx = Transaction()
            try:
                yield tx
            except BaseException:
                for store, snap in zip(stores, snapshots):
                    store.restore(snap)
                tx.rollback()
                log.debug("Rolled back operation on %s", self.name)
                raise
            finally:
                self._owner = None
