from __future__ import annotations
import json
import os
from contextlib import asynccontextmanager
from typing import Any, Dict

import redis.asyncio as redis


def k_channel(user_id: str) -> str: return f"notifications:{user_id}"


class _PubSubSubscription:
    def __init__(self, pubsub) -> None:
        self.pubsub = pubsub

    async def get(self) -> Dict[str, Any]:
        while True:
            msg = await self.pubsub.get_message(
                ignore_subscribe_messages=True, timeout=1.0
            )
            if msg is not None and msg.get("type") == "message":
                return json.loads(msg["data"])


class NotificationHub:
    backend = "redis"

    def __init__(self, r: redis.Redis) -> None:
        self.r = r

    @classmethod
    def from_url(cls, url: str) -> "NotificationHub":
        return cls(redis.from_url(
            url,
            decode_responses=True,
            max_connections=int(os.getenv("REDIS_MAX_CONN", "512")),
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        ))

    async def publish(self, user_id: str, payload: Dict[str, Any]) -> None:
        await self.r.publish(k_channel(user_id), json.dumps(payload))

    @asynccontextmanager
    async def subscribe(self, user_id: str):
        pubsub = self.r.pubsub()
        await pubsub.subscribe(k_channel(user_id))
        try:
            yield _PubSubSubscription(pubsub)
        finally:
            await pubsub.unsubscribe(k_channel(user_id))
            await pubsub.aclose()

    async def close(self) -> None:
        await self.r.aclose()
