"""Per-path mutual exclusion for edit operations.

Operations on the same file are serialised; operations on different files run
in parallel. Locks are created on first use and dropped when the last holder
or waiter leaves, so the registry only holds entries for paths in use.
Locking is process-local and bound to the running event loop.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    refs: int = 0


class PathLockRegistry:
    """Keyed, reference-counted asyncio locks.

    Usage:
        locks = PathLockRegistry()
        async with locks.hold(Path("notes.txt")):
            ...  # no other holder of notes.txt runs here

    The lock is not reentrant: a task holding a path must not ask for the same
    path again.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _LockEntry] = {}
        self._stats = {
            "acquisitions": 0,
            "contended": 0,
        }

    @staticmethod
    def key_for(path: Path | str) -> str:
        return str(Path(path).expanduser().resolve())

    @asynccontextmanager
    async def hold(self, path: Path | str) -> AsyncIterator[None]:
        """Hold the lock for ``path`` for the duration of the block."""
        key = self.key_for(path)
        entry = self._entries.get(key)
        if entry is None:
            entry = _LockEntry()
            self._entries[key] = entry
        entry.refs += 1

        try:
            if entry.lock.locked():
                self._stats["contended"] += 1
                logger.debug(f"Waiting for lock on {key}")
            async with entry.lock:
                self._stats["acquisitions"] += 1
                yield
        finally:
            entry.refs -= 1
            if entry.refs == 0:
                self._entries.pop(key, None)

    def is_locked(self, path: Path | str) -> bool:
        entry = self._entries.get(self.key_for(path))
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> dict[str, int]:
        """Get lock statistics."""
        return {
            **self._stats,
            "active_paths": len(self._entries),
        }
