"""
Keyed asyncio locks for per-user and per-proposal mutual exclusion
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, List, Tuple


class KeyedLock:
    """
    Registry of asyncio.Lock objects, one per (namespace, key).

    An entry lives only while some task holds or waits on it, so the
    registry does not grow with every user and proposal ever seen.
    """

    def __init__(self):
        # lock_key -> [lock, holders and waiters]
        self._locks: Dict[Tuple[str, str], List] = {}

    @asynccontextmanager
    async def hold(self, namespace: str, key: str):
        lock_key = (namespace, key)
        entry = self._locks.get(lock_key)
        if entry is None:
            entry = [asyncio.Lock(), 0]
            self._locks[lock_key] = entry
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[lock_key]

    def user(self, user_id: str):
        return self.hold("user", user_id)

    def proposal(self, proposal_id: str):
        return self.hold("proposal", proposal_id)

    def milestones(self):
        return self.hold("milestones", "all")

    def __len__(self) -> int:
        return len(self._locks)
