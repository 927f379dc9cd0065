# clinic_core/realtime/broker.py
"""
In-process fan-out of committed change events to live subscribers.

Subscribers are keyed by (tenant_id, facility_id) and each gets a bounded
buffer. A subscriber that falls behind is never allowed to block writers:
when its buffer is full it is flagged `needs_resync`, its buffer is dropped
and it receives nothing more until it reconnects and reloads a snapshot.

The broker only sees events committed in this process; the ChangeEvent
outbox (realtime.services.changes_since) is the cross-process source of truth.
"""
from __future__ import annotations

import logging
import queue
import threading
from collections import defaultdict
from typing import Iterator, Optional
from uuid import UUID

from django.conf import settings

logger = logging.getLogger(__name__)

ScopeKey = tuple[UUID, UUID]


def _key(tenant_id, facility_id) -> ScopeKey:
    return UUID(str(tenant_id)), UUID(str(facility_id))


class Subscription:
    def __init__(self, broker: "ChangeBroker", key: ScopeKey, maxsize: int):
        self._broker = broker
        self.key = key
        self._buffer: queue.Queue = queue.Queue(maxsize=maxsize)
        self.needs_resync = False
        self.closed = False

    def _offer(self, message: dict) -> None:
        if self.needs_resync or self.closed:
            return
        try:
            self._buffer.put_nowait(message)
        except queue.Full:
            self.needs_resync = True
            self._drain()
            logger.warning(
                "Realtime subscriber overflowed; resync required",
                extra={"tenant_id": str(self.key[0]), "facility_id": str(self.key[1])},
            )

    def _drain(self) -> None:
        while True:
            try:
                self._buffer.get_nowait()
            except queue.Empty:
                return

    def get(self, timeout: Optional[float] = None) -> Optional[dict]:
        """Next message, or None if nothing arrived within `timeout` (or resync is needed)."""
        if self.needs_resync or self.closed:
            return None
        try:
            if timeout is None:
                return self._buffer.get_nowait()
            return self._buffer.get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self) -> int:
        return self._buffer.qsize()

    def __iter__(self) -> Iterator[dict]:
        """Drain what is buffered right now (non-blocking)."""
        while True:
            msg = self.get()
            if msg is None:
                return
            yield msg

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._broker._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class ChangeBroker:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: dict[ScopeKey, list[Subscription]] = defaultdict(list)

    def subscribe(self, *, tenant_id: UUID, facility_id: UUID, maxsize: Optional[int] = None) -> Subscription:
        size = maxsize or getattr(settings, "REALTIME_SUBSCRIBER_QUEUE_SIZE", 256)
        sub = Subscription(self, _key(tenant_id, facility_id), size)
        with self._lock:
            self._subscribers[sub.key].append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(sub.key, [])
            if sub in subs:
                subs.remove(sub)
            if not subs:
                self._subscribers.pop(sub.key, None)

    def publish(self, *, tenant_id: UUID, facility_id: UUID, message: dict) -> int:
        with self._lock:
            subs = list(self._subscribers.get(_key(tenant_id, facility_id), []))
        for sub in subs:
            sub._offer(message)
        return len(subs)

    def subscriber_count(self, *, tenant_id: UUID, facility_id: UUID) -> int:
        with self._lock:
            return len(self._subscribers.get(_key(tenant_id, facility_id), []))


broker = ChangeBroker()
