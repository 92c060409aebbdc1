"""
Server-Sent Events manager for live note updates.

Each connected user gets one asyncio.Queue; the /api/notes/events stream
drains it. A newer connection for the same user replaces the older queue.
"""
import asyncio
import json
import logging
import time
from typing import Dict, Any, Optional, AsyncIterator

logger = logging.getLogger(__name__)

PING_INTERVAL_SECONDS = 30

_connections: Dict[str, asyncio.Queue] = {}


def _now_ms() -> int:
    return int(time.time() * 1000)


def format_event(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def register(user_id: str) -> asyncio.Queue:
    queue: asyncio.Queue = asyncio.Queue()
    _connections[user_id] = queue
    logger.info(f"SSE connection registered for {user_id} (active={len(_connections)})")
    return queue


def unregister(user_id: str, queue: Optional[asyncio.Queue] = None) -> None:
    if queue is None or _connections.get(user_id) is queue:
        _connections.pop(user_id, None)


def broadcast_title_update(note_id: str, title: str, user_id: str) -> bool:
    """Queue a title_updated event for the note owner. Returns False when they are offline."""
    queue = _connections.get(user_id)
    if queue is None:
        return False
    queue.put_nowait({
        "type": "title_updated",
        "data": {"note_id": note_id, "title": title, "user_id": user_id},
        "timestamp": _now_ms(),
    })
    return True


def has_active_connection(user_id: str) -> bool:
    return user_id in _connections


async def event_stream(user_id: str, ping_interval: float = PING_INTERVAL_SECONDS) -> AsyncIterator[str]:
    """Yield SSE frames: `connected` first, then queued events, `ping` on idle."""
    queue = register(user_id)
    try:
        yield format_event({
            "type": "connected",
            "message": "SSE connection established",
            "timestamp": _now_ms(),
        })
        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=ping_interval)
            except asyncio.TimeoutError:
                event = {"type": "ping", "timestamp": _now_ms()}
            yield format_event(event)
    finally:
        unregister(user_id, queue)
        logger.info(f"SSE connection closed for {user_id}")
