"""Per-application critical sections.

Every mutation of an application, its queries, or the approval requests and
events tied to it runs inside ``application_lock(application_id)``.  Locks are
created on first use and discarded once nobody holds or waits for them, so
unrelated applications never contend.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


class ApplicationLocks:
    """Registry of asyncio locks keyed by application id."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, application_id: str):
        lock = self._locks.get(application_id)
        if lock is None:
            lock = self._locks[application_id] = asyncio.Lock()
        self._users[application_id] = self._users.get(application_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users[application_id] - 1
            if remaining:
                self._users[application_id] = remaining
            else:
                del self._users[application_id]
                del self._locks[application_id]

    def is_locked(self, application_id: str) -> bool:
        lock = self._locks.get(application_id)
        return bool(lock and lock.locked())

    def __len__(self) -> int:
        return len(self._locks)


_registry = ApplicationLocks()


def application_lock(application_id: str):
    return _registry.hold(application_id)


def get_lock_registry() -> ApplicationLocks:
    return _registry
