# clinic_core/admissions/tests/test_queue_services.py
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from clinic_core.admissions import selectors
from clinic_core.admissions.models import REASON_MAX_LENGTH, QueueEntry, QueueStatus
from clinic_core.admissions.services import QueueService, check_queue_move, is_queue_move_allowed
from clinic_core.audit.models import AuditEvent
from clinic_core.common.errors import (
    ConcurrencyConflictError,
    NotFoundError,
    TerminalStateError,
    TransitionNotAllowedError,
    ValidationError,
)
from clinic_core.realtime.models import ChangeEvent

pytestmark = pytest.mark.django_db


def _enqueue(tenant, facility, patient, priority=3, reason="consultation"):
    return QueueService.enqueue(
        tenant_id=tenant.id,
        facility_id=facility.id,
        patient_id=patient.id,
        priority=priority,
        reason=reason,
    )


def _advance(tenant, facility, entry, status, **kwargs):
    return QueueService.advance(
        tenant_id=tenant.id,
        facility_id=facility.id,
        entry_id=entry.id,
        new_status=status,
        **kwargs,
    )


def test_urgent_patient_is_served_before_earlier_routine_arrival(tenant, facility, make_patient):
    routine = make_patient("Routine")
    urgent = make_patient("Urgent")
    _enqueue(tenant, facility, routine, priority=3, reason="follow-up")
    _enqueue(tenant, facility, urgent, priority=1, reason="chest pain")

    nxt = selectors.dequeue_next(tenant_id=tenant.id, facility_id=facility.id)

    assert nxt.patient_id == urgent.id
    # read-only: nobody was called
    assert nxt.status == QueueStatus.WAITING
    assert QueueEntry.objects.filter(status=QueueStatus.CALLED).count() == 0


def test_same_priority_served_by_arrival_time(tenant, facility, make_patient):
    first = _enqueue(tenant, facility, make_patient("A"), priority=2)
    second = _enqueue(tenant, facility, make_patient("B"), priority=2)
    now = timezone.now()
    QueueEntry.objects.filter(pk=first.pk).update(arrival_time=now - timedelta(minutes=5))
    QueueEntry.objects.filter(pk=second.pk).update(arrival_time=now - timedelta(minutes=30))

    nxt = selectors.dequeue_next(tenant_id=tenant.id, facility_id=facility.id)
    assert nxt.id == second.id


def test_dequeue_next_skips_called_entries_and_returns_none_when_empty(tenant, facility, patient):
    entry = _enqueue(tenant, facility, patient)
    _advance(tenant, facility, entry, QueueStatus.CALLED)

    assert selectors.dequeue_next(tenant_id=tenant.id, facility_id=facility.id) is None


@pytest.mark.parametrize("priority", [0, 5, -1, "high", True, None, 4.9, 2.5, Decimal("1.5"), "2.5"])
def test_enqueue_rejects_invalid_priority(tenant, facility, patient, priority):
    with pytest.raises(ValidationError) as exc:
        _enqueue(tenant, facility, patient, priority=priority)

    assert exc.value.details["field"] == "priority"
    assert QueueEntry.objects.count() == 0


def test_enqueue_requires_a_reason(tenant, facility, patient):
    with pytest.raises(ValidationError) as exc:
        _enqueue(tenant, facility, patient, reason="   ")
    assert exc.value.details["field"] == "reason"


def test_enqueue_rejects_an_overlong_reason(tenant, facility, patient):
    with pytest.raises(ValidationError) as exc:
        _enqueue(tenant, facility, patient, reason="x" * (REASON_MAX_LENGTH + 1))

    assert exc.value.details == {"field": "reason", "max_length": REASON_MAX_LENGTH}
    assert QueueEntry.objects.count() == 0


def test_update_details_rejects_an_overlong_reason(tenant, facility, patient):
    entry = _enqueue(tenant, facility, patient)

    with pytest.raises(ValidationError) as exc:
        QueueService.update_details(
            tenant_id=tenant.id, facility_id=facility.id, entry_id=entry.id, reason="x" * (REASON_MAX_LENGTH + 1)
        )

    assert exc.value.details["field"] == "reason"
    assert QueueEntry.objects.get(pk=entry.pk).version == 1


def test_enqueue_accepts_integral_priority_values(tenant, facility, make_patient):
    assert _enqueue(tenant, facility, make_patient("A"), priority="2").priority == 2
    assert _enqueue(tenant, facility, make_patient("B"), priority=4.0).priority == 4


def test_enqueue_rejects_patient_of_another_facility(tenant, facility, other_facility, make_patient):
    outsider = make_patient("Outsider", at_facility=other_facility)

    with pytest.raises(NotFoundError):
        _enqueue(tenant, facility, outsider)


def test_enqueue_starts_waiting_and_records_change_and_audit(tenant, facility, patient):
    entry = _enqueue(tenant, facility, patient, priority=1, reason=" chest pain ")

    assert entry.status == QueueStatus.WAITING
    assert entry.version == 1
    assert entry.reason == "chest pain"
    assert entry.called_at is None and entry.started_at is None and entry.completed_at is None

    change = ChangeEvent.objects.get(row_id=entry.id)
    assert change.table == "patient_queue"
    assert change.op == "insert"
    assert change.row_version == 1
    assert change.row["status"] == "waiting"

    assert AuditEvent.objects.filter(event_code="queue.enqueued", entity_id=entry.id).exists()


def test_advance_walks_the_flow_and_stamps_each_phase(tenant, facility, patient):
    entry = _enqueue(tenant, facility, patient)

    entry = _advance(tenant, facility, entry, QueueStatus.CALLED)
    assert entry.called_at is not None
    assert entry.version == 2

    entry = _advance(tenant, facility, entry, QueueStatus.IN_CONSULTATION)
    assert entry.started_at is not None

    entry = _advance(tenant, facility, entry, QueueStatus.COMPLETED)
    assert entry.completed_at is not None
    assert entry.version == 4

    stored = QueueEntry.objects.get(pk=entry.pk)
    assert stored.status == QueueStatus.COMPLETED
    assert stored.version == 4
    assert ChangeEvent.objects.filter(row_id=entry.id).count() == 4


def test_forward_skip_stamps_the_skipped_phase(tenant, facility, patient):
    entry = _enqueue(tenant, facility, patient)

    entry = _advance(tenant, facility, entry, QueueStatus.IN_CONSULTATION)

    assert entry.called_at is not None
    assert entry.started_at is not None
    assert entry.called_at == entry.started_at


@pytest.mark.parametrize(
    "current,target",
    [
        (QueueStatus.CALLED, QueueStatus.WAITING),
        (QueueStatus.IN_CONSULTATION, QueueStatus.CALLED),
        (QueueStatus.WAITING, QueueStatus.WAITING),
    ],
)
def test_backward_and_same_status_moves_are_rejected(current, target):
    with pytest.raises(TransitionNotAllowedError) as exc:
        check_queue_move(current, target)
    assert exc.value.details == {"from_status": current, "to_status": target}


@pytest.mark.parametrize("terminal", [QueueStatus.COMPLETED, QueueStatus.CANCELLED])
@pytest.mark.parametrize("target", [QueueStatus.CALLED, QueueStatus.CANCELLED, QueueStatus.COMPLETED])
def test_closed_entries_never_move(terminal, target):
    with pytest.raises(TerminalStateError):
        check_queue_move(terminal, target)
    assert not is_queue_move_allowed(terminal, target)


def test_unknown_target_status_is_a_validation_error():
    with pytest.raises(ValidationError):
        check_queue_move(QueueStatus.WAITING, "teleported")


def test_cancel_from_consultation_stamps_completed_at(tenant, facility, patient):
    entry = _enqueue(tenant, facility, patient)
    _advance(tenant, facility, entry, QueueStatus.IN_CONSULTATION)

    entry = QueueService.cancel(tenant_id=tenant.id, facility_id=facility.id, entry_id=entry.id)

    assert entry.status == QueueStatus.CANCELLED
    assert entry.completed_at is not None


def test_rejected_move_leaves_row_untouched(tenant, facility, patient):
    entry = _enqueue(tenant, facility, patient)
    _advance(tenant, facility, entry, QueueStatus.CALLED)

    with pytest.raises(TransitionNotAllowedError):
        _advance(tenant, facility, entry, QueueStatus.WAITING)

    stored = QueueEntry.objects.get(pk=entry.pk)
    assert stored.status == QueueStatus.CALLED
    assert stored.version == 2


def test_stale_expected_version_raises_concurrency_conflict(tenant, facility, patient):
    entry = _enqueue(tenant, facility, patient)
    _advance(tenant, facility, entry, QueueStatus.CALLED, expected_version=1)

    with pytest.raises(ConcurrencyConflictError) as exc:
        _advance(tenant, facility, entry, QueueStatus.IN_CONSULTATION, expected_version=1)

    assert exc.value.details == {"expected_version": 1, "current_version": 2}
    assert QueueEntry.objects.get(pk=entry.pk).status == QueueStatus.CALLED


def test_advance_entry_of_other_scope_is_not_found(tenant, facility, other_tenant, other_facility, patient):
    entry = _enqueue(tenant, facility, patient)

    with pytest.raises(NotFoundError):
        QueueService.advance(
            tenant_id=other_tenant.id,
            facility_id=other_facility.id,
            entry_id=entry.id,
            new_status=QueueStatus.CALLED,
        )


def test_update_details_changes_priority_and_bumps_version(tenant, facility, patient):
    entry = _enqueue(tenant, facility, patient, priority=3)

    entry = QueueService.update_details(
        tenant_id=tenant.id, facility_id=facility.id, entry_id=entry.id, priority=1, notes="fever 39.5"
    )

    assert entry.priority == 1
    assert entry.notes == "fever 39.5"
    assert entry.version == 2
    audit = AuditEvent.objects.get(event_code="queue.updated", entity_id=entry.id)
    assert audit.metadata["fields"] == ["notes", "priority"]


def test_update_details_without_changes_is_a_noop(tenant, facility, patient):
    entry = _enqueue(tenant, facility, patient, priority=3, reason="follow-up")

    same = QueueService.update_details(
        tenant_id=tenant.id, facility_id=facility.id, entry_id=entry.id, priority=3, reason="follow-up"
    )

    assert same.version == 1
    assert not AuditEvent.objects.filter(event_code="queue.updated").exists()


def test_update_details_refused_on_closed_entry(tenant, facility, patient):
    entry = _enqueue(tenant, facility, patient)
    QueueService.cancel(tenant_id=tenant.id, facility_id=facility.id, entry_id=entry.id)

    with pytest.raises(TerminalStateError):
        QueueService.update_details(tenant_id=tenant.id, facility_id=facility.id, entry_id=entry.id, priority=1)


def test_sync_with_encounter_skips_moves_that_are_not_legal(tenant, facility, patient):
    entry = _enqueue(tenant, facility, patient)
    QueueService.cancel(tenant_id=tenant.id, facility_id=facility.id, entry_id=entry.id)

    result = QueueService.sync_with_encounter(
        tenant_id=tenant.id, facility_id=facility.id, entry_id=entry.id, new_status=QueueStatus.COMPLETED
    )

    assert result is None
    assert QueueEntry.objects.get(pk=entry.pk).status == QueueStatus.CANCELLED


def test_sync_with_encounter_follows_a_legal_move(tenant, facility, patient):
    entry = _enqueue(tenant, facility, patient)

    result = QueueService.sync_with_encounter(
        tenant_id=tenant.id, facility_id=facility.id, entry_id=entry.id, new_status=QueueStatus.IN_CONSULTATION
    )

    assert result.status == QueueStatus.IN_CONSULTATION
    assert result.started_at is not None


def test_list_queue_is_scoped_and_ordered(tenant, facility, other_facility, make_patient):
    low = _enqueue(tenant, facility, make_patient("Low"), priority=4)
    urgent = _enqueue(tenant, facility, make_patient("Urgent"), priority=1)
    outsider = make_patient("Outsider", at_facility=other_facility)
    QueueService.enqueue(
        tenant_id=other_facility.tenant_id,
        facility_id=other_facility.id,
        patient_id=outsider.id,
        priority=1,
        reason="elsewhere",
    )

    ids = list(selectors.list_queue(tenant_id=tenant.id, facility_id=facility.id).values_list("id", flat=True))
    assert ids == [urgent.id, low.id]


def test_list_queue_rejects_unknown_status(tenant, facility):
    with pytest.raises(ValidationError):
        selectors.list_queue(tenant_id=tenant.id, facility_id=facility.id, status="lost")
