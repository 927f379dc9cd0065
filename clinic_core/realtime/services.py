# clinic_core/realtime/services.py
from __future__ import annotations

import logging
from typing import Any, Optional
from uuid import UUID

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from clinic_core.realtime.broker import broker
from clinic_core.realtime.models import ChangeEvent, ChangeFeedHead, ChangeOp

logger = logging.getLogger(__name__)

TABLE_QUEUE = "patient_queue"
TABLE_ENCOUNTERS = "encounters"
TABLE_STATUS_HISTORY = "encounter_status_history"


class RealtimeService:
    """
    Change-event outbox + live fan-out.

    - record_change must be called inside the mutating transaction; the row is
      durable together with the change it describes.
    - The scope's ChangeFeedHead stays locked until that transaction ends, so
      a later seq in the same scope can only be allocated once every earlier
      one has committed or rolled back.
    - Live subscribers are notified only after commit (never for rolled back work).
    """

    @staticmethod
    def record_change(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        table: str,
        op: str,
        row_id,
        row: dict[str, Any],
        row_version: int = 1,
    ) -> ChangeEvent:
        if op not in ChangeOp.values:
            raise ValueError(f"Unknown change op: {op}")

        with transaction.atomic():
            head, _ = ChangeFeedHead.objects.select_for_update().get_or_create(
                tenant_id=tenant_id, facility_id=facility_id
            )
            event = ChangeEvent.objects.create(
                tenant_id=tenant_id,
                facility_id=facility_id,
                table=table,
                op=op,
                row_id=str(row_id),
                row_version=row_version,
                row=row,
                occurred_at=timezone.now(),
            )
            head.last_seq = event.seq
            head.save(update_fields=["last_seq"])

        def _fanout():
            # Re-read so the message carries exactly what the feed will serve.
            message = ChangeEvent.objects.get(pk=event.pk).as_message()
            broker.publish(tenant_id=tenant_id, facility_id=facility_id, message=message)

        # the change is committed already; a failed publish must not surface as a request error
        transaction.on_commit(_fanout, robust=True)
        return event


def current_cursor(*, tenant_id: UUID, facility_id: UUID) -> int:
    """Highest committed seq of the scope's feed (0 when nothing was recorded)."""
    head = ChangeFeedHead.objects.filter(tenant_id=tenant_id, facility_id=facility_id).values_list(
        "last_seq", flat=True
    ).first()
    return head or 0


def changes_since(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    since: int = 0,
    limit: Optional[int] = None,
) -> dict[str, Any]:
    """
    Catch-up page of the outbox after cursor `since`.
    Returns {"events": [...], "cursor": <last seq served or since>, "has_more": bool}.

    Only events at or below the feed head are served. The head is read first,
    so a row that becomes visible between the two reads waits for the next
    page instead of pushing the cursor past it.
    """
    page_size = limit or getattr(settings, "REALTIME_FEED_PAGE_SIZE", 200)
    head = current_cursor(tenant_id=tenant_id, facility_id=facility_id)
    rows = list(
        ChangeEvent.objects.filter(tenant_id=tenant_id, facility_id=facility_id, seq__gt=since, seq__lte=head)
        .order_by("seq")[: page_size + 1]
    )
    has_more = len(rows) > page_size
    rows = rows[:page_size]

    return {
        "events": [r.as_message() for r in rows],
        "cursor": rows[-1].seq if rows else since,
        "has_more": has_more,
    }


def snapshot(*, tenant_id: UUID, facility_id: UUID) -> dict[str, Any]:
    """
    Full resync payload: the live queue, every non-terminal encounter and the
    feed cursor they are consistent with.
    """
    from clinic_core.admissions.selectors import active_queue_qs
    from clinic_core.admissions.serializers import QueueEntrySerializer
    from clinic_core.encounters.selectors import active_encounters_qs
    from clinic_core.encounters.serializers import EncounterSerializer

    with transaction.atomic():
        cursor = current_cursor(tenant_id=tenant_id, facility_id=facility_id)
        queue = QueueEntrySerializer(active_queue_qs(tenant_id=tenant_id, facility_id=facility_id), many=True).data
        encounters = EncounterSerializer(
            active_encounters_qs(tenant_id=tenant_id, facility_id=facility_id), many=True
        ).data

    return {
        "cursor": cursor,
        TABLE_QUEUE: list(queue),
        TABLE_ENCOUNTERS: list(encounters),
    }
