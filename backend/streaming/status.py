"""
Status reporters: log lines and fan-out to websocket subscribers.
"""
from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Iterable, List, Tuple

from scanner.fusion import status_message
from scanner.protocols import StatusReporter

logger = logging.getLogger(__name__)


def status_payload(status: str) -> dict:
    return {
        "type": "status",
        "status": status,
        "message": status_message(status),
        "timestamp": time.time(),
    }


class LoggingStatusReporter:
    def report(self, message: str) -> None:
        logger.info("[status] %s", message)


class StatusBroadcaster:
    """
    Pushes status payloads to asyncio subscribers from any thread.

    Subscriber queues are bounded; when one is full its oldest payload is
    dropped so a slow client never holds back the scanner.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: List[Tuple[asyncio.AbstractEventLoop, asyncio.Queue]] = []
        self._latest: dict | None = None

    @property
    def latest(self) -> dict | None:
        with self._lock:
            return self._latest

    def subscribe(self, loop: asyncio.AbstractEventLoop, maxsize: int = 16) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        with self._lock:
            self._subscribers.append((loop, q))
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        with self._lock:
            self._subscribers = [(loop, sub) for (loop, sub) in self._subscribers if sub is not q]

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def report(self, message: str) -> None:
        payload = status_payload(message)
        with self._lock:
            self._latest = payload
            subscribers = list(self._subscribers)

        for loop, q in subscribers:
            def enqueue(queue_ref: asyncio.Queue = q, item: dict = payload) -> None:
                if queue_ref.full():
                    try:
                        queue_ref.get_nowait()
                    except asyncio.QueueEmpty:
                        pass
                try:
                    queue_ref.put_nowait(item)
                except asyncio.QueueFull:
                    pass

            try:
                loop.call_soon_threadsafe(enqueue)
            except RuntimeError:
                # Subscriber's event loop is closed.
                self.unsubscribe(q)


class CompositeStatusReporter:
    """Reports to every wrapped reporter; one failing reporter does not stop the rest."""

    def __init__(self, reporters: Iterable[StatusReporter]):
        self._reporters = list(reporters)

    def report(self, message: str) -> None:
        for reporter in self._reporters:
            try:
                reporter.report(message)
            except Exception:
                logger.exception("Status reporter %r failed", reporter)
