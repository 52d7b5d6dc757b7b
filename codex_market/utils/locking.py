"""In-process read/write locks for shared on-disk state.

Locks are keyed by file path so that every object in the process that
touches the same file shares one lock. There is no cross-process locking.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path


class ReadWriteLock:
    """A writer-preferring read/write lock.

    Any number of readers may hold the lock at once; a writer holds it alone.
    The write side is reentrant for the owning thread, and the owner may also
    take the read side, so a load-modify-save cycle can call ``load()`` while
    holding the write lock.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer: int | None = None
        self._write_depth = 0
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                # Owner already excludes everyone else.
                owned = True
            else:
                owned = False
                while self._writer is not None or self._waiting_writers:
                    self._cond.wait()
                self._readers += 1
        try:
            yield
        finally:
            if not owned:
                with self._cond:
                    self._readers -= 1
                    if self._readers == 0:
                        self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._write_depth += 1
            else:
                self._waiting_writers += 1
                try:
                    while self._writer is not None or self._readers:
                        self._cond.wait()
                finally:
                    self._waiting_writers -= 1
                self._writer = me
                self._write_depth = 1
        try:
            yield
        finally:
            with self._cond:
                self._write_depth -= 1
                if self._write_depth == 0:
                    self._writer = None
                    self._cond.notify_all()


_LOCKS: dict[Path, ReadWriteLock] = {}
_LOCKS_GUARD = threading.Lock()


def lock_for(path: Path) -> ReadWriteLock:
    """Get the process-wide lock for a file path.

    Args:
        path: File the lock protects

    Returns:
        The shared ReadWriteLock for that path
    """
    key = path.expanduser().absolute()
    with _LOCKS_GUARD:
        lock = _LOCKS.get(key)
        if lock is None:
            lock = ReadWriteLock()
            _LOCKS[key] = lock
        return lock
