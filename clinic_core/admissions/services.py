# clinic_core/admissions/services.py
from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from django.db import transaction
from django.utils import timezone

from clinic_core.admissions.models import QUEUE_FLOW, REASON_MAX_LENGTH, QueueEntry, QueuePriority, QueueStatus
from clinic_core.admissions.serializers import QueueEntryChangeSerializer
from clinic_core.audit.services import AuditService
from clinic_core.common.concurrency import compare_and_swap, lock_versioned
from clinic_core.common.errors import TerminalStateError, TransitionNotAllowedError, ValidationError
from clinic_core.patients.selectors import get_patient
from clinic_core.realtime.models import ChangeOp
from clinic_core.realtime.services import TABLE_QUEUE, RealtimeService

logger = logging.getLogger(__name__)

# status -> timestamp stamped when the entry reaches it
STAMP_FIELDS = {
    QueueStatus.CALLED: "called_at",
    QueueStatus.IN_CONSULTATION: "started_at",
    QueueStatus.COMPLETED: "completed_at",
    QueueStatus.CANCELLED: "completed_at",
}


def validate_priority(priority) -> int:
    if isinstance(priority, bool):
        raise ValidationError("Priority must be an integer between 1 and 4.", field="priority")
    try:
        value = int(priority)
    except (TypeError, ValueError):
        raise ValidationError("Priority must be an integer between 1 and 4.", field="priority")
    # int() truncates 2.5 or Decimal("2.5") silently
    if not isinstance(priority, (int, str)) and value != priority:
        raise ValidationError("Priority must be an integer between 1 and 4.", field="priority", value=str(priority))
    if value not in QueuePriority.values:
        raise ValidationError("Priority must be between 1 (urgent) and 4 (low).", field="priority", value=value)
    return value


def validate_reason(reason) -> str:
    text = (reason or "").strip()
    if not text:
        raise ValidationError("A reason for the visit is required.", field="reason")
    if len(text) > REASON_MAX_LENGTH:
        raise ValidationError(
            f"Reason must be at most {REASON_MAX_LENGTH} characters.",
            field="reason",
            max_length=REASON_MAX_LENGTH,
        )
    return text


def check_queue_move(current: str, target: str) -> None:
    """
    Raise unless current -> target is a legal queue move:
    forward along QUEUE_FLOW (skips allowed) or any non-terminal -> cancelled.
    """
    if target not in QueueStatus.values:
        raise ValidationError(f"Unknown queue status '{target}'.", field="status")

    if current in (QueueStatus.COMPLETED, QueueStatus.CANCELLED):
        raise TerminalStateError(
            "Queue entry is closed and can no longer change.",
            from_status=current,
            to_status=target,
        )

    if target == QueueStatus.CANCELLED:
        return

    if QUEUE_FLOW.index(target) <= QUEUE_FLOW.index(current):
        raise TransitionNotAllowedError(
            f"Cannot move a queue entry from {current} to {target}.",
            from_status=current,
            to_status=target,
        )


def _stamps_for(entry: QueueEntry, target: str, ts) -> dict:
    """Timestamps to set for a move; a forward skip stamps the phases it jumps over."""
    if target == QueueStatus.CANCELLED:
        steps = [QueueStatus.CANCELLED]
    else:
        steps = QUEUE_FLOW[QUEUE_FLOW.index(entry.status) + 1 : QUEUE_FLOW.index(target) + 1]

    stamps = {}
    for step in steps:
        field = STAMP_FIELDS.get(step)
        if field and getattr(entry, field) is None:
            stamps[field] = ts
    return stamps


def is_queue_move_allowed(current: str, target: str) -> bool:
    try:
        check_queue_move(current, target)
    except (ValidationError, TerminalStateError, TransitionNotAllowedError):
        return False
    return True


class QueueService:
    """
    Queue Admission Manager writes.

    Every accepted mutation:
    - bumps QueueEntry.version (compare-and-swap),
    - records a realtime ChangeEvent in the same transaction,
    - is audited.
    """

    @staticmethod
    def _record_change(entry: QueueEntry, op: str) -> None:
        RealtimeService.record_change(
            tenant_id=entry.tenant_id,
            facility_id=entry.facility_id,
            table=TABLE_QUEUE,
            op=op,
            row_id=entry.id,
            row_version=entry.version,
            row=dict(QueueEntryChangeSerializer(entry).data),
        )

    @staticmethod
    @transaction.atomic
    def enqueue(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        patient_id: UUID,
        priority=QueuePriority.NORMAL,
        reason: str,
        notes: str = "",
        actor_user_id: int | None = None,
    ) -> QueueEntry:
        priority = validate_priority(priority)
        reason = validate_reason(reason)
        patient = get_patient(tenant_id=tenant_id, facility_id=facility_id, patient_id=patient_id)

        entry = QueueEntry.objects.create(
            tenant_id=tenant_id,
            facility_id=facility_id,
            patient=patient,
            priority=priority,
            reason=reason,
            notes=notes or "",
            status=QueueStatus.WAITING,
            arrival_time=timezone.now(),
        )

        QueueService._record_change(entry, ChangeOp.INSERT)
        AuditService.log(
            event_code="queue.enqueued",
            entity_type="QueueEntry",
            entity_id=entry.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"patient_id": str(patient.id), "priority": priority},
        )
        logger.info(
            "Patient enqueued",
            extra={"queue_entry_id": str(entry.id), "priority": priority, "facility_id": str(facility_id)},
        )
        return entry

    @staticmethod
    @transaction.atomic
    def advance(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        entry_id: UUID,
        new_status: str,
        expected_version: Optional[int] = None,
        actor_user_id: int | None = None,
    ) -> QueueEntry:
        entry = lock_versioned(
            QueueEntry.objects,
            tenant_id=tenant_id,
            facility_id=facility_id,
            pk=entry_id,
            expected_version=expected_version,
            label="Queue entry",
        )
        from_status = entry.status
        check_queue_move(from_status, new_status)

        fields = {"status": new_status}
        fields.update(_stamps_for(entry, new_status, timezone.now()))

        compare_and_swap(entry, **fields)

        QueueService._record_change(entry, ChangeOp.UPDATE)
        AuditService.log(
            event_code="queue.advanced",
            entity_type="QueueEntry",
            entity_id=entry.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"from": from_status, "to": new_status, "version": entry.version},
        )
        logger.info(
            "Queue entry advanced",
            extra={"queue_entry_id": str(entry.id), "from_status": from_status, "to_status": new_status},
        )
        return entry

    @staticmethod
    def call(*, tenant_id: UUID, facility_id: UUID, entry_id: UUID, **kwargs) -> QueueEntry:
        return QueueService.advance(
            tenant_id=tenant_id, facility_id=facility_id, entry_id=entry_id, new_status=QueueStatus.CALLED, **kwargs
        )

    @staticmethod
    def cancel(*, tenant_id: UUID, facility_id: UUID, entry_id: UUID, **kwargs) -> QueueEntry:
        return QueueService.advance(
            tenant_id=tenant_id, facility_id=facility_id, entry_id=entry_id, new_status=QueueStatus.CANCELLED, **kwargs
        )

    @staticmethod
    @transaction.atomic
    def sync_with_encounter(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        entry_id: UUID,
        new_status: str,
        actor_user_id: int | None = None,
    ) -> Optional[QueueEntry]:
        """
        Follow an encounter transition. A move that is not legal for the entry
        (already further along, or closed) is skipped, never raised.
        """
        entry = QueueEntry.objects.filter(id=entry_id, tenant_id=tenant_id, facility_id=facility_id).first()
        if entry is None or not is_queue_move_allowed(entry.status, new_status):
            return None
        return QueueService.advance(
            tenant_id=tenant_id,
            facility_id=facility_id,
            entry_id=entry_id,
            new_status=new_status,
            actor_user_id=actor_user_id,
        )

    @staticmethod
    @transaction.atomic
    def update_details(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        entry_id: UUID,
        priority=None,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
        actor_user_id: int | None = None,
    ) -> QueueEntry:
        entry = lock_versioned(
            QueueEntry.objects,
            tenant_id=tenant_id,
            facility_id=facility_id,
            pk=entry_id,
            expected_version=expected_version,
            label="Queue entry",
        )
        if entry.is_terminal:
            raise TerminalStateError("Queue entry is closed and can no longer change.", status=entry.status)

        fields = {}
        if priority is not None:
            value = validate_priority(priority)
            if value != entry.priority:
                fields["priority"] = value
        if reason is not None:
            value = validate_reason(reason)
            if value != entry.reason:
                fields["reason"] = value
        if notes is not None and notes != entry.notes:
            fields["notes"] = notes

        if not fields:
            return entry

        compare_and_swap(entry, **fields)

        QueueService._record_change(entry, ChangeOp.UPDATE)
        AuditService.log(
            event_code="queue.updated",
            entity_type="QueueEntry",
            entity_id=entry.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"fields": sorted(fields)},
        )
        return entry
