# clinic_core/admissions/selectors.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional
from uuid import UUID

from django.db.models import QuerySet
from django.utils import timezone

from clinic_core.admissions.models import QueueEntry, QueueStatus
from clinic_core.common.errors import NotFoundError, ValidationError

# Next-to-serve order: most urgent first, then earliest arrival, id for determinism
SERVE_ORDER = ("priority", "arrival_time", "id")

ACTIVE_QUEUE_STATUSES = (QueueStatus.WAITING, QueueStatus.CALLED, QueueStatus.IN_CONSULTATION)


def queue_qs(*, tenant_id: UUID, facility_id: UUID) -> QuerySet[QueueEntry]:
    return QueueEntry.objects.filter(tenant_id=tenant_id, facility_id=facility_id)


def get_queue_entry(*, tenant_id: UUID, facility_id: UUID, entry_id: UUID) -> QueueEntry:
    entry = queue_qs(tenant_id=tenant_id, facility_id=facility_id).select_related("patient").filter(id=entry_id).first()
    if entry is None:
        raise NotFoundError("Queue entry not found.", field="entry_id")
    return entry


def dequeue_next(*, tenant_id: UUID, facility_id: UUID) -> Optional[QueueEntry]:
    """
    The waiting entry to serve next, or None if nobody is waiting.
    Read-only: the caller decides when to mark it called.
    """
    return (
        queue_qs(tenant_id=tenant_id, facility_id=facility_id)
        .filter(status=QueueStatus.WAITING)
        .select_related("patient")
        .order_by(*SERVE_ORDER)
        .first()
    )


def list_queue(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    status: Optional[str] = None,
) -> QuerySet[QueueEntry]:
    qs = queue_qs(tenant_id=tenant_id, facility_id=facility_id).select_related("patient")
    if status:
        if status not in QueueStatus.values:
            raise ValidationError(f"Unknown queue status '{status}'.", field="status")
        qs = qs.filter(status=status)
    return qs.order_by(*SERVE_ORDER)


def active_queue_qs(*, tenant_id: UUID, facility_id: UUID) -> QuerySet[QueueEntry]:
    return list_queue(tenant_id=tenant_id, facility_id=facility_id).filter(status__in=ACTIVE_QUEUE_STATUSES)


@dataclass(frozen=True)
class WaitingTime:
    minutes: int
    label: str


def format_wait(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes} min"
    hours, rest = divmod(minutes, 60)
    return f"{hours}h {rest}min"


def waiting_time(entry: QueueEntry, *, now: Optional[datetime] = None) -> WaitingTime:
    """
    Minutes elapsed since arrival. Once the patient has been called the clock
    stops at called_at (or started_at when they went straight in).
    """
    end = entry.called_at or entry.started_at or now or timezone.now()
    minutes = max(0, int((end - entry.arrival_time).total_seconds() // 60))
    return WaitingTime(minutes=minutes, label=format_wait(minutes))


@dataclass(frozen=True)
class QueueStats:
    waiting: int
    in_consultation: int
    completed_today: int
    average_wait_minutes: int


def daily_stats(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    day: Optional[date] = None,
    now: Optional[datetime] = None,
) -> QueueStats:
    now = now or timezone.now()
    day = day or timezone.localdate(now)
    tz = timezone.get_current_timezone()
    day_start = timezone.make_aware(datetime.combine(day, time.min), tz)
    day_end = timezone.make_aware(datetime.combine(day, time.max), tz)

    qs = queue_qs(tenant_id=tenant_id, facility_id=facility_id)
    waiting = list(qs.filter(status=QueueStatus.WAITING))

    waits = [waiting_time(e, now=now).minutes for e in waiting]
    average = round(sum(waits) / len(waits)) if waits else 0

    return QueueStats(
        waiting=len(waiting),
        in_consultation=qs.filter(status=QueueStatus.IN_CONSULTATION).count(),
        completed_today=qs.filter(
            status=QueueStatus.COMPLETED,
            completed_at__gte=day_start,
            completed_at__lte=day_end,
        ).count(),
        average_wait_minutes=average,
    )
