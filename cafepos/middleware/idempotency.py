import asyncio
import json
import logging
import re
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from ..core.config import settings

logger = logging.getLogger(__name__)

HEADER = "Idempotency-Key"

# Endpoints covered and the key a successful JSON body must carry
ALLOW = [
    (re.compile(r"^/orders/\d+/pay$"), "order"),
    (re.compile(r"^/orders/merge$"), "survivor"),
    (re.compile(r"^/shift/expenses$"), "expense_id"),
]


def _success_key(path: str) -> Optional[str]:
    for pattern, key in ALLOW:
        if pattern.match(path):
            return key
    return None


@dataclass
class StoredReply:
    status: int
    headers: Dict[str, str]
    media_type: Optional[str]
    body: bytes
    expires: float


class ReplayStore:
    """Successful replies by key, oldest evicted first once full."""

    def __init__(self, ttl: int = 3600, max_entries: int = 2048):
        self.ttl = ttl
        self.max_entries = max_entries
        self._replies: "OrderedDict[str, StoredReply]" = OrderedDict()
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[StoredReply]:
        async with self._lock:
            reply = self._replies.get(key)
            if reply is None:
                return None
            if reply.expires < time.time():
                del self._replies[key]
                return None
            return reply

    async def put(self, key: str, reply: StoredReply) -> None:
        async with self._lock:
            self._replies[key] = reply
            self._replies.move_to_end(key)
            while len(self._replies) > self.max_entries:
                self._replies.popitem(last=False)

    async def clear(self) -> None:
        async with self._lock:
            self._replies.clear()


class KeyLocks:
    """One lock per idempotency key; dropped once nobody holds or waits on it."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    async def acquire(self, key: str) -> None:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            await lock.acquire()
        except BaseException:
            # cancelled while waiting: give up the slot without touching the lock
            self._leave(key)
            raise

    def release(self, key: str) -> None:
        self._locks[key].release()
        self._leave(key)

    def _leave(self, key: str) -> None:
        self._users[key] -= 1
        if not self._users[key]:
            del self._users[key]
            del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


def _headers_without_length(headers) -> dict:
    return {k: v for k, v in dict(headers).items() if k.lower() != "content-length"}


def _replay(reply: StoredReply) -> Response:
    body = reply.body
    js = json.loads(body.decode("utf-8"))
    if isinstance(js, dict):
        js["replay"] = True
        body = json.dumps(js).encode("utf-8")
    headers = dict(reply.headers)
    headers["Idempotent-Replay"] = "true"
    return Response(content=body, status_code=reply.status, media_type=reply.media_type, headers=headers)


def _carries(body: bytes, success_key: str) -> bool:
    try:
        js = json.loads(body.decode("utf-8"))
    except ValueError:
        return False
    return isinstance(js, dict) and success_key in js


replies = ReplayStore(ttl=settings.idempotency_ttl)
key_locks = KeyLocks()


class IdempotencyMiddleware(BaseHTTPMiddleware):
    """
    Replays the first successful response for a repeated ``Idempotency-Key``.

    Requests sharing a key are serialized by a per-key lock, so a register
    retrying a payment after a timeout never charges the shift twice. Only
    2xx bodies that carry the endpoint's success key are stored; rejections
    are not, so a later retry is evaluated again.
    """

    async def dispatch(self, request, call_next):
        success_key = _success_key(request.url.path) if request.method == "POST" else None
        idem_key = request.headers.get(HEADER)
        if not (success_key and idem_key):
            return await call_next(request)

        store_key = f"{request.url.path}:{idem_key}"
        await key_locks.acquire(store_key)
        try:
            stored = await replies.get(store_key)
            if stored is not None:
                logger.info("idempotent replay %s", store_key)
                return _replay(stored)

            response = await call_next(request)
            body = b"".join([chunk async for chunk in response.body_iterator])
            headers = _headers_without_length(response.headers)
            if 200 <= response.status_code < 300 and _carries(body, success_key):
                await replies.put(
                    store_key,
                    StoredReply(
                        status=response.status_code,
                        headers=headers,
                        media_type=response.media_type,
                        body=body,
                        expires=time.time() + replies.ttl,
                    ),
                )
            return Response(
                content=body, status_code=response.status_code, media_type=response.media_type, headers=headers
            )
        finally:
            key_locks.release(store_key)


def install_idempotency(app):
    app.add_middleware(IdempotencyMiddleware)
