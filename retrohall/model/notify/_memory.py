from __future__ import annotations
import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict, Set


class _QueueSubscription:
    def __init__(self, q: asyncio.Queue) -> None:
        self.q = q

    async def get(self) -> Dict[str, Any]:
        return await self.q.get()


class NotificationHub:
    """Single-process hub; subscribers only see publishes from this worker."""
    backend = "memory"

    def __init__(self) -> None:
        self._subs: Dict[str, Set[asyncio.Queue]] = {}

    async def publish(self, user_id: str, payload: Dict[str, Any]) -> None:
        for q in list(self._subs.get(user_id, ())):
            q.put_nowait(payload)

    @asynccontextmanager
    async def subscribe(self, user_id: str):
        q: asyncio.Queue = asyncio.Queue()
        self._subs.setdefault(user_id, set()).add(q)
        try:
            yield _QueueSubscription(q)
        finally:
            subs = self._subs.get(user_id)
            if subs is not None:
                subs.discard(q)
                if not subs:
                    del self._subs[user_id]

    async def close(self) -> None:
        self._subs.clear()
