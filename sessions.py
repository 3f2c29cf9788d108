# sessions.py
"""
SSE sessions.

A session owns an ordered queue of slots. Producers reserve a slot when they
start work and fill it when they are done; the SSE stream emits slots in
reservation order, so responses leave in the order requests were dispatched
even if their handlers finish out of order.
"""

import asyncio
import json
import uuid
from typing import Any, AsyncIterator, Dict, Iterator, Optional

from logging_config import logger

# Queued after the last slot when a session is closed
_CLOSED = object()


def format_event(data: Any, event: Optional[str] = None) -> str:
    """Frame ``data`` as one Server-Sent Event. Non-strings are JSON-encoded."""
    payload = data if isinstance(data, str) else json.dumps(data)
    lines = [f"event: {event}"] if event else []
    lines.extend(f"data: {line}" for line in payload.split("\n"))
    return "\n".join(lines) + "\n\n"


def format_comment(text: str) -> str:
    return f": {text}\n\n"


class SessionClosed(Exception):
    """Raised when writing to a session whose stream has ended."""


class Session:
    def __init__(self, session_id: str):
        self.id = session_id
        self.endpoint = f"/sse/message?sessionId={session_id}"
        self.keepalive_task: Optional[asyncio.Task] = None
        self._slots: asyncio.Queue = asyncio.Queue()
        # Pings bypass the slot queue so a pending response never holds them back
        self._ping_due = asyncio.Event()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def reserve(self) -> asyncio.Future:
        """Claim the next position in the stream. Fill it with ``deliver``."""
        if self._closed:
            raise SessionClosed(self.id)
        slot = asyncio.get_running_loop().create_future()
        self._slots.put_nowait(slot)
        return slot

    def deliver(self, slot: asyncio.Future, message: Optional[Dict[str, Any]]) -> None:
        """Fill a reserved slot with a JSON-RPC message, or with None to skip it."""
        if not slot.done():
            slot.set_result(format_event(message) if message is not None else None)

    async def _keepalive(self, interval: float) -> None:
        while not self._closed:
            await asyncio.sleep(interval)
            self._ping_due.set()

    def start_keepalive(self, interval: float) -> None:
        self.keepalive_task = asyncio.get_running_loop().create_task(self._keepalive(interval))

    async def _next_frame(self) -> Any:
        slot = await self._slots.get()
        if slot is _CLOSED:
            return _CLOSED
        return await slot

    async def stream(self) -> AsyncIterator[str]:
        """
        Yield the endpoint frame, then every filled slot until the session closes.

        Keep-alive pings are interleaved whenever they fall due, including
        while the next response is still being produced.
        """
        yield format_event(self.endpoint, event="endpoint")
        head: Optional[asyncio.Future] = None
        ping: Optional[asyncio.Future] = None
        try:
            while True:
                if head is None:
                    head = asyncio.ensure_future(self._next_frame())
                if ping is None:
                    ping = asyncio.ensure_future(self._ping_due.wait())
                done, _ = await asyncio.wait({head, ping}, return_when=asyncio.FIRST_COMPLETED)
                if ping in done:
                    ping = None
                    self._ping_due.clear()
                    yield format_comment("ping")
                if head in done:
                    frame = head.result()
                    head = None
                    if frame is _CLOSED:
                        return
                    if frame is not None:
                        yield frame
        finally:
            for waiter in (head, ping):
                if waiter is not None:
                    waiter.cancel()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.keepalive_task is not None:
            self.keepalive_task.cancel()
        # Slots reserved before closing are still drained by a live stream
        self._slots.put_nowait(_CLOSED)


class SessionStore:
    """
    Maps session ids to live sessions.

    One store is built per application and injected into the transport. All
    methods run on the event loop thread, so a plain dict is enough.
    """

    def __init__(self, keepalive_seconds: float = 30.0):
        self.keepalive_seconds = keepalive_seconds
        self._sessions: Dict[str, Session] = {}

    def create(self) -> Session:
        session = Session(uuid.uuid4().hex)
        self._sessions[session.id] = session
        session.start_keepalive(self.keepalive_seconds)
        logger.info("Session %s opened", session.id)
        return session

    def get(self, session_id: Optional[str]) -> Optional[Session]:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        session.close()
        logger.info("Session %s closed", session_id)

    def close(self) -> None:
        for session_id in list(self._sessions):
            self.remove(session_id)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def __len__(self) -> int:
        return len(self._sessions)
