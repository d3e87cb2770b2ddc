"""
Subscription Locks

Per-key ``asyncio.Lock`` registry serializing commands on the same member
or subscription within one process. Multiple keys are always acquired in
sorted order so two commands never wait on each other crosswise.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Optional, Tuple


class SubscriptionLocks:
    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        # Holders plus waiters per key; a key is dropped when it reaches zero
        self._users: Dict[str, int] = {}

    def _checkout(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _checkin(self, key: str) -> None:
        self._users[key] -= 1
        if self._users[key] == 0:
            del self._users[key]
            del self._locks[key]

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, *keys: Optional[str]) -> AsyncIterator[None]:
        """
        Hold every given key for the duration of the block.

        Usage:
            async with subscription_locks.hold(f"member:{member.id}", f"subscription:{sub.id}"):
                ...
        """
        ordered = sorted({k for k in keys if k})
        checked_out: List[Tuple[str, asyncio.Lock, bool]] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                checked_out.append((key, lock, False))
                await lock.acquire()
                checked_out[-1] = (key, lock, True)
            yield
        finally:
            for key, lock, acquired in reversed(checked_out):
                if acquired:
                    lock.release()
                self._checkin(key)

    def keys(self) -> Iterable[str]:
        return list(self._locks)


def member_key(member_id: str) -> str:
    return f"member:{member_id}"


def subscription_key(subscription_id: Optional[str]) -> Optional[str]:
    return f"subscription:{subscription_id}" if subscription_id else None


subscription_locks = SubscriptionLocks()
