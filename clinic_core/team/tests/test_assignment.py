# clinic_core/team/tests/test_assignment.py
import pytest

from clinic_core.admissions.services import QueueService
from clinic_core.audit.models import AuditEvent
from clinic_core.common.errors import (
    AuthorizationError,
    ConcurrencyConflictError,
    NotFoundError,
    TerminalStateError,
    ValidationError,
)
from clinic_core.encounters.constants import EncounterStatus
from clinic_core.encounters.services import EncounterService
from clinic_core.realtime.models import ChangeEvent
from clinic_core.team import selectors
from clinic_core.team.capabilities import ASSISTANT, DOCTOR
from clinic_core.team.models import JobTitle
from clinic_core.team.services import (
    ENTITY_ENCOUNTER,
    ENTITY_QUEUE_ENTRY,
    ROLE_ASSISTANT,
    ROLE_PRACTITIONER,
    AssignmentService,
)

pytestmark = pytest.mark.django_db


def _assign(tenant, facility, entity_type, entity_id, role, member, **kwargs):
    return AssignmentService.assign(
        tenant_id=tenant.id,
        facility_id=facility.id,
        entity_type=entity_type,
        entity_id=entity_id,
        role=role,
        team_member_id=member.id,
        **kwargs,
    )


def test_assign_practitioner_to_encounter(tenant, facility, encounter, doctor):
    enc = _assign(tenant, facility, ENTITY_ENCOUNTER, encounter.id, ROLE_PRACTITIONER, doctor)

    assert enc.assigned_practitioner_id == doctor.id
    assert enc.version == 2
    audit = AuditEvent.objects.get(event_code="encounter.assigned", entity_id=enc.id)
    assert audit.metadata["team_member_id"] == str(doctor.id)
    assert audit.metadata["previous_team_member_id"] is None
    assert ChangeEvent.objects.filter(table="encounters", row_id=enc.id, row_version=2).exists()


def test_reassigning_same_member_is_a_noop(tenant, facility, encounter, doctor):
    _assign(tenant, facility, ENTITY_ENCOUNTER, encounter.id, ROLE_PRACTITIONER, doctor)
    again = _assign(tenant, facility, ENTITY_ENCOUNTER, encounter.id, ROLE_PRACTITIONER, doctor)

    assert again.version == 2
    assert AuditEvent.objects.filter(event_code="encounter.assigned").count() == 1


def test_rebinding_replaces_previous_assignee(tenant, facility, encounter, assistant, make_member):
    second = make_member("ide.bernard", JobTitle.INFIRMIER)

    _assign(tenant, facility, ENTITY_ENCOUNTER, encounter.id, ROLE_ASSISTANT, assistant)
    enc = _assign(tenant, facility, ENTITY_ENCOUNTER, encounter.id, ROLE_ASSISTANT, second)

    assert enc.assigned_assistant_id == second.id
    (rebind,) = [
        a for a in AuditEvent.objects.filter(event_code="encounter.assigned")
        if a.metadata["team_member_id"] == str(second.id)
    ]
    assert rebind.metadata["previous_team_member_id"] == str(assistant.id)


def test_assignee_must_hold_the_role_capability(tenant, facility, encounter, secretary):
    with pytest.raises(AuthorizationError) as exc:
        _assign(tenant, facility, ENTITY_ENCOUNTER, encounter.id, ROLE_PRACTITIONER, secretary)

    assert exc.value.details["capability"] == DOCTOR
    assert exc.value.details["action"] == "assign.practitioner"


def test_inactive_member_cannot_be_assigned(tenant, facility, encounter, make_member):
    retired = make_member("ide.retired", JobTitle.INFIRMIER, is_active=False)

    with pytest.raises(AuthorizationError) as exc:
        _assign(tenant, facility, ENTITY_ENCOUNTER, encounter.id, ROLE_ASSISTANT, retired)
    assert exc.value.details["capability"] == ASSISTANT


def test_member_of_other_facility_is_not_found(tenant, facility, other_facility, encounter, make_member):
    outsider = make_member("dr.outsider", JobTitle.MEDECIN, at_facility=other_facility)

    with pytest.raises(NotFoundError) as exc:
        _assign(tenant, facility, ENTITY_ENCOUNTER, encounter.id, ROLE_PRACTITIONER, outsider)
    assert exc.value.details["field"] == "team_member_id"


def test_terminal_encounter_assignments_are_frozen(tenant, facility, encounter, doctor):
    EncounterService.transition(
        tenant_id=tenant.id,
        facility_id=facility.id,
        encounter_id=encounter.id,
        target_status=EncounterStatus.COMPLETED,
        actor_user_id=doctor.user_id,
    )

    with pytest.raises(TerminalStateError):
        _assign(tenant, facility, ENTITY_ENCOUNTER, encounter.id, ROLE_PRACTITIONER, doctor)


def test_unknown_role_and_entity_are_rejected(tenant, facility, encounter, doctor):
    with pytest.raises(ValidationError) as role_exc:
        _assign(tenant, facility, ENTITY_ENCOUNTER, encounter.id, "surgeon", doctor)
    assert role_exc.value.details["field"] == "role"

    with pytest.raises(ValidationError) as entity_exc:
        _assign(tenant, facility, "invoice", encounter.id, ROLE_PRACTITIONER, doctor)
    assert entity_exc.value.details["field"] == "entity_type"


def test_stale_version_is_rejected(tenant, facility, encounter, doctor):
    with pytest.raises(ConcurrencyConflictError):
        _assign(tenant, facility, ENTITY_ENCOUNTER, encounter.id, ROLE_PRACTITIONER, doctor, expected_version=5)


def test_queue_entry_single_slot(tenant, facility, patient, doctor, assistant):
    entry = QueueService.enqueue(tenant_id=tenant.id, facility_id=facility.id, patient_id=patient.id, reason="cough")

    entry = _assign(tenant, facility, ENTITY_QUEUE_ENTRY, entry.id, ROLE_PRACTITIONER, doctor)
    assert entry.assigned_to_id == doctor.id

    entry = _assign(tenant, facility, ENTITY_QUEUE_ENTRY, entry.id, ROLE_ASSISTANT, assistant)
    assert entry.assigned_to_id == assistant.id

    entry = AssignmentService.unassign(
        tenant_id=tenant.id,
        facility_id=facility.id,
        entity_type=ENTITY_QUEUE_ENTRY,
        entity_id=entry.id,
        role=ROLE_ASSISTANT,
    )
    assert entry.assigned_to_id is None
    assert entry.version == 4
    assert AuditEvent.objects.filter(event_code="queue_entry.unassigned", entity_id=entry.id).exists()


def test_unassign_empty_slot_is_a_noop(tenant, facility, encounter):
    enc = AssignmentService.unassign(
        tenant_id=tenant.id,
        facility_id=facility.id,
        entity_type=ENTITY_ENCOUNTER,
        entity_id=encounter.id,
        role=ROLE_PRACTITIONER,
    )
    assert enc.version == 1


def test_list_team_members_by_capability(tenant, facility, doctor, assistant, secretary, make_member):
    make_member("ide.off", JobTitle.INFIRMIER, is_available=False)

    assistants = selectors.list_team_members(tenant_id=tenant.id, facility_id=facility.id, capability=ASSISTANT)
    available = selectors.list_team_members(
        tenant_id=tenant.id, facility_id=facility.id, capability=ASSISTANT, available_only=True
    )

    assert len(assistants) == 2
    assert [m.id for m in available] == [assistant.id]
