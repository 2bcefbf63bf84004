"""
ProjectLockRegistry -- in-process mutual exclusion per project.

Responsibility:
    Serializes approval commands on the same project inside one process.
    Commands on different projects never contend.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Complements the
    database row lock (``SELECT ... FOR UPDATE``), which SQLite does not
    provide.

Invariants enforced:
    - While any thread holds or waits on a project's lock, every other
      thread asking for that project gets the same lock.
    - An entry lives only while it has holders or waiters; the registry
      is empty whenever no command is running.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID


class _LockEntry:

    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class ProjectLockRegistry:
    """Reference-counted ``threading.Lock`` objects keyed by project id."""

    def __init__(self) -> None:
        self._entries: dict[UUID, _LockEntry] = {}
        self._guard = threading.Lock()

    def _acquire_entry(self, project_id: UUID) -> _LockEntry:
        with self._guard:
            entry = self._entries.get(project_id)
            if entry is None:
                entry = self._entries[project_id] = _LockEntry()
            entry.users += 1
            return entry

    def _release_entry(self, project_id: UUID, entry: _LockEntry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[project_id]

    @contextmanager
    def hold(self, project_id: UUID) -> Iterator[None]:
        """Hold the project's lock for the duration of the block."""
        entry = self._acquire_entry(project_id)
        try:
            with entry.lock:
                yield
        finally:
            self._release_entry(project_id, entry)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
