# clinic_core/team/services.py
from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from django.db import transaction

from clinic_core.audit.services import AuditService
from clinic_core.common.concurrency import compare_and_swap, lock_versioned
from clinic_core.common.errors import TerminalStateError, ValidationError
from clinic_core.team import selectors
from clinic_core.team.capabilities import ASSISTANT, DOCTOR, require_capability

logger = logging.getLogger(__name__)

ENTITY_ENCOUNTER = "encounter"
ENTITY_QUEUE_ENTRY = "queue_entry"

ROLE_PRACTITIONER = "practitioner"
ROLE_ASSISTANT = "assistant"

ROLE_CAPABILITY = {
    ROLE_PRACTITIONER: DOCTOR,
    ROLE_ASSISTANT: ASSISTANT,
}

# entity -> role -> model field holding the assignee
SLOTS = {
    ENTITY_ENCOUNTER: {
        ROLE_PRACTITIONER: "assigned_practitioner",
        ROLE_ASSISTANT: "assigned_assistant",
    },
    # a queue entry has a single slot; the role only selects the capability
    ENTITY_QUEUE_ENTRY: {
        ROLE_PRACTITIONER: "assigned_to",
        ROLE_ASSISTANT: "assigned_to",
    },
}


class AssignmentService:
    """
    Assignment Resolver writes: bind a capable team member to an encounter
    or queue entry slot. Rebinding is allowed until the entity is terminal.
    """

    @staticmethod
    def _entity_model(entity_type: str):
        from clinic_core.admissions.models import QueueEntry
        from clinic_core.encounters.models import Encounter

        if entity_type == ENTITY_ENCOUNTER:
            return Encounter, "Encounter"
        if entity_type == ENTITY_QUEUE_ENTRY:
            return QueueEntry, "Queue entry"
        raise ValidationError(f"Unknown entity type '{entity_type}'.", field="entity_type")

    @staticmethod
    def _slot(entity_type: str, role: str) -> str:
        if entity_type not in SLOTS:
            raise ValidationError(f"Unknown entity type '{entity_type}'.", field="entity_type")
        slot = SLOTS[entity_type].get(role)
        if slot is None:
            raise ValidationError(f"Unknown assignment role '{role}'.", field="role")
        return slot

    @staticmethod
    def _record_change(entity_type: str, obj) -> None:
        from clinic_core.admissions.services import QueueService
        from clinic_core.encounters.services import EncounterService
        from clinic_core.realtime.models import ChangeOp

        if entity_type == ENTITY_ENCOUNTER:
            EncounterService._record_change(obj, ChangeOp.UPDATE)
        else:
            QueueService._record_change(obj, ChangeOp.UPDATE)

    @staticmethod
    def _lock_open(*, entity_type: str, tenant_id: UUID, facility_id: UUID, entity_id: UUID, expected_version):
        model, label = AssignmentService._entity_model(entity_type)
        obj = lock_versioned(
            model.objects,
            tenant_id=tenant_id,
            facility_id=facility_id,
            pk=entity_id,
            expected_version=expected_version,
            label=label,
        )
        if obj.is_terminal:
            raise TerminalStateError(f"{label} is closed; assignments can no longer change.", status=obj.status)
        return obj

    @staticmethod
    @transaction.atomic
    def assign(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        entity_type: str,
        entity_id: UUID,
        role: str,
        team_member_id: UUID,
        actor_user_id: int | None = None,
        expected_version: Optional[int] = None,
    ):
        slot = AssignmentService._slot(entity_type, role)
        obj = AssignmentService._lock_open(
            entity_type=entity_type,
            tenant_id=tenant_id,
            facility_id=facility_id,
            entity_id=entity_id,
            expected_version=expected_version,
        )
        member = selectors.get_team_member(tenant_id=tenant_id, facility_id=facility_id, team_member_id=team_member_id)
        require_capability(member, ROLE_CAPABILITY[role], action=f"assign.{role}")

        if getattr(obj, f"{slot}_id") == member.id:
            return obj

        previous = getattr(obj, f"{slot}_id")
        compare_and_swap(obj, **{slot: member})

        AssignmentService._record_change(entity_type, obj)
        AuditService.log(
            event_code=f"{entity_type}.assigned",
            entity_type=type(obj).__name__,
            entity_id=obj.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={
                "role": role,
                "team_member_id": str(member.id),
                "previous_team_member_id": str(previous) if previous else None,
            },
        )
        logger.info(
            "Team member assigned",
            extra={"entity_type": entity_type, "entity_id": str(obj.id), "role": role, "team_member_id": str(member.id)},
        )
        return obj

    @staticmethod
    @transaction.atomic
    def unassign(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        entity_type: str,
        entity_id: UUID,
        role: str,
        actor_user_id: int | None = None,
        expected_version: Optional[int] = None,
    ):
        slot = AssignmentService._slot(entity_type, role)
        obj = AssignmentService._lock_open(
            entity_type=entity_type,
            tenant_id=tenant_id,
            facility_id=facility_id,
            entity_id=entity_id,
            expected_version=expected_version,
        )

        previous = getattr(obj, f"{slot}_id")
        if previous is None:
            return obj

        compare_and_swap(obj, **{slot: None})

        AssignmentService._record_change(entity_type, obj)
        AuditService.log(
            event_code=f"{entity_type}.unassigned",
            entity_type=type(obj).__name__,
            entity_id=obj.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"role": role, "previous_team_member_id": str(previous)},
        )
        return obj
