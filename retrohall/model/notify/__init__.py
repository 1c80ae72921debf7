# model/notify/__init__.py
import os
from typing import Optional

BACKEND = os.getenv("NOTIFY_BACKEND", "memory").lower()  # 'memory' | 'redis'


def new_hub(backend: Optional[str] = None, redis_url: Optional[str] = None):
    """Realtime fan-out of freshly inserted notifications, per user."""
    backend = (backend or BACKEND).lower()
    if backend == "redis":
        from ._redis import NotificationHub as _RedisHub
        if not redis_url:
            raise RuntimeError("NotificationHub(redis) requires redis_url")
        return _RedisHub.from_url(redis_url)
    from ._memory import NotificationHub as _MemoryHub
    return _MemoryHub()


__all__ = ["new_hub", "BACKEND"]
