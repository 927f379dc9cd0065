# clinic_core/realtime/stream.py
"""
Server-Sent Events framing for the realtime feed.

Frames, in order:
  event: hello   {"cursor": <seq>}          once, on connect
  event: change  <ChangeEvent message>      catch-up from ?since, then live
  : heartbeat                               when idle
  event: resync  {"reason": ...}            subscription overflowed; stream ends
"""
from __future__ import annotations

import json
import time
from typing import Callable, Iterator, Optional
from uuid import UUID

from django.core.serializers.json import DjangoJSONEncoder
from rest_framework.renderers import BaseRenderer

from clinic_core.realtime.broker import Subscription
from clinic_core.realtime.services import changes_since, current_cursor


class EventStreamRenderer(BaseRenderer):
    media_type = "text/event-stream"
    format = "sse"
    charset = "utf-8"

    def render(self, data, accepted_media_type=None, renderer_context=None):
        if isinstance(data, (bytes, str)):
            return data
        return json.dumps(data, cls=DjangoJSONEncoder)


def sse_frame(event: str, data, *, event_id: Optional[int] = None) -> str:
    lines = []
    if event_id is not None:
        lines.append(f"id: {event_id}")
    lines.append(f"event: {event}")
    lines.append(f"data: {json.dumps(data, cls=DjangoJSONEncoder)}")
    return "\n".join(lines) + "\n\n"


def event_stream(
    *,
    subscription: Subscription,
    tenant_id: UUID,
    facility_id: UUID,
    since: Optional[int] = None,
    heartbeat_seconds: float = 15.0,
    max_seconds: float = 300.0,
    clock: Callable[[], float] = time.monotonic,
) -> Iterator[str]:
    """
    `subscription` must already be open so nothing committed between the
    cursor read and the first live event is missed (duplicates are possible
    and are dropped by the client's row_version check).
    """
    started = clock()
    try:
        yield sse_frame("hello", {"cursor": current_cursor(tenant_id=tenant_id, facility_id=facility_id)})

        if since is not None:
            cursor = since
            while True:
                page = changes_since(tenant_id=tenant_id, facility_id=facility_id, since=cursor)
                for message in page["events"]:
                    yield sse_frame("change", message, event_id=message["seq"])
                cursor = page["cursor"]
                if not page["has_more"]:
                    break

        while clock() - started < max_seconds:
            message = subscription.get(timeout=heartbeat_seconds)
            if subscription.needs_resync:
                yield sse_frame("resync", {"reason": "overflow"})
                return
            if message is None:
                yield ": heartbeat\n\n"
                continue
            yield sse_frame("change", message, event_id=message["seq"])
    finally:
        subscription.close()
