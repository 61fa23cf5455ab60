"""Fan-out of lifecycle events to long-lived SSE subscribers."""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
import uuid
from collections.abc import Callable
from typing import Any

LOGGER = logging.getLogger(__name__)

KEEPALIVE_FRAME = ": keep-alive\n\n"


class ChannelClosed(ConnectionError):
    pass


def format_sse(event: dict[str, Any]) -> str:
    return f"data: {json.dumps(event, separators=(',', ':'))}\n\n"


class Channel:
    """
    One subscriber connection. The broadcaster enqueues frames; the HTTP response
    generator is the only reader and the only writer to the socket.
    """

    def __init__(self, maxsize: int = 256):
        self.id = f"C-{uuid.uuid4().hex[:8]}"
        self.closed = False
        self.created_at = time.monotonic()
        self._queue: queue.Queue[str | None] = queue.Queue(maxsize=maxsize)

    def write(self, frame: str) -> None:
        if self.closed:
            raise ChannelClosed(self.id)
        self._queue.put_nowait(frame)

    def next_frame(self, timeout: float) -> str | None:
        """Next queued frame, or None after `timeout` seconds of silence or once closed."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # wake a reader blocked in next_frame
        try:
            self._queue.put_nowait(None)
        except queue.Full:
            pass


class EventBroadcaster:
    def __init__(
        self,
        *,
        document_id: str,
        revision_provider: Callable[[], int],
        queue_size: int = 256,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.document_id = document_id
        self._revision_provider = revision_provider
        self._queue_size = max(1, queue_size)
        self._clock = clock
        self._channels: dict[str, Channel] = {}
        self._lock = threading.Lock()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._channels)

    def subscribe(self) -> Channel:
        ch = Channel(self._queue_size)
        with self._lock:
            self._channels[ch.id] = ch
        LOGGER.info("SSE subscriber connected: %s", ch.id)
        return ch

    def unsubscribe(self, channel: Channel) -> None:
        with self._lock:
            removed = self._channels.pop(channel.id, None)
        channel.close()
        if removed is not None:
            LOGGER.info("SSE subscriber disconnected: %s", channel.id)

    def broadcast(self, event: dict[str, Any]) -> dict[str, Any]:
        """
        Stamp `event` and enqueue it on every open channel.

        A revision already on the event (the one its mutation committed) is kept;
        otherwise the current revision is stamped. Channels that are closed or too
        far behind are pruned; failures never reach the caller or other subscribers.
        """
        stamped = dict(event)
        stamped["documentId"] = self.document_id
        if stamped.get("revision") is None:
            stamped["revision"] = self._revision_provider()
        stamped["ts"] = int(self._clock() * 1000)
        frame = format_sse(stamped)

        dead: list[Channel] = []
        with self._lock:
            for ch in self._channels.values():
                try:
                    ch.write(frame)
                except (ChannelClosed, queue.Full):
                    dead.append(ch)
            for ch in dead:
                self._channels.pop(ch.id, None)
            delivered = len(self._channels)
        for ch in dead:
            ch.close()
            LOGGER.debug("Pruned SSE subscriber %s", ch.id)

        LOGGER.debug("broadcast %s to %s subscriber(s)", stamped.get("type"), delivered)
        return stamped

    def close_all(self) -> None:
        with self._lock:
            channels = list(self._channels.values())
            self._channels.clear()
        for ch in channels:
            ch.close()
