from typing import Any, Dict, List, Sequence

import httpx
from loguru import logger

from . import config
from .helpers import chunk
from .infra.timings import timeit


def expo_messages(
    tokens: Sequence[str], title: str, body: str, type: str = "broadcast"
) -> List[Dict[str, Any]]:
    return [
        {
            "to": to,
            "title": title,
            "body": body,
            "sound": "default",
            "data": {"type": type},
        }
        for to in tokens
        if isinstance(to, str) and to
    ]


async def send_expo_push(
    http: httpx.AsyncClient,
    tokens: Sequence[str],
    title: str,
    body: str,
    url: str = config.EXPO_PUSH_URL,
) -> int:
    """
    Fire-and-forget delivery to the Expo push service, in batches of
    PUSH_CHUNK. Failures are logged per batch; returns the number of
    messages in accepted batches.
    """
    messages = expo_messages(tokens, title, body)
    sent = 0
    for part in chunk(messages, config.PUSH_CHUNK):
        try:
            async with timeit("push.send"):
                r = await http.post(
                    url,
                    json=list(part),
                    headers={
                        "Accept": "application/json",
                        "Accept-Encoding": "gzip, deflate",
                    },
                )
        except httpx.HTTPError as e:
            logger.warning("expo push request failed: {}", e)
            continue
        if r.status_code >= 400:
            logger.warning("expo push error {}: {}", r.status_code, r.text)
            continue
        sent += len(part)
    return sent
