# clinic_core/encounters/services.py
from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from django.db import IntegrityError, transaction
from django.utils import timezone

from clinic_core.admissions.models import QueueStatus
from clinic_core.admissions.selectors import get_queue_entry
from clinic_core.audit.services import AuditService
from clinic_core.common.concurrency import compare_and_swap, lock_versioned
from clinic_core.common.errors import (
    ConflictError,
    TerminalStateError,
    TransitionNotAllowedError,
    ValidationError,
)
from clinic_core.common.events import publish
from clinic_core.encounters import history as status_history
from clinic_core.encounters.constants import STATUS_REASON_MAX_LENGTH, EncounterMode, EncounterStatus
from clinic_core.encounters.models import Encounter, EncounterStatusHistoryEntry
from clinic_core.encounters.selectors import active_encounter_for_patient
from clinic_core.encounters.serializers import EncounterChangeSerializer, StatusHistoryEntrySerializer
from clinic_core.encounters.transitions import (
    INITIAL_STATUS,
    NOTIFY,
    QUEUE_COMPLETED,
    QUEUE_IN_CONSULTATION,
    TRANSITIONS,
    TransitionRule,
    allowed_targets,
    rule_for,
)
from clinic_core.patients.selectors import get_patient
from clinic_core.realtime.models import ChangeOp
from clinic_core.realtime.services import TABLE_ENCOUNTERS, TABLE_STATUS_HISTORY, RealtimeService
from clinic_core.team import selectors as team_selectors
from clinic_core.team.capabilities import ASSISTANT, DOCTOR, MEMBER, capability_of, require_capability

logger = logging.getLogger(__name__)

TRANSITIONED_EVENT = "encounter.transitioned"


class EncounterService:
    """
    Encounter State Machine writes.

    transition() runs, in order:
      1. terminal check      -> TerminalStateError
      2. edge check          -> TransitionNotAllowedError (same-status included)
      3. capability check    -> AuthorizationError
      4. status + stamp + version bump + one history row, atomically
      5. side effects from the transition table, after commit
    """

    # ---------------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------------
    @staticmethod
    def _record_change(enc: Encounter, op: str) -> None:
        RealtimeService.record_change(
            tenant_id=enc.tenant_id,
            facility_id=enc.facility_id,
            table=TABLE_ENCOUNTERS,
            op=op,
            row_id=enc.id,
            row_version=enc.version,
            row=dict(EncounterChangeSerializer(enc).data),
        )

    @staticmethod
    def _record_history(
        enc: Encounter,
        *,
        from_status: Optional[str],
        to_status: str,
        actor_user_id: int | None,
        reason: str = "",
    ) -> EncounterStatusHistoryEntry:
        entry = status_history.record(
            encounter=enc,
            from_status=from_status,
            to_status=to_status,
            actor_user_id=actor_user_id,
            reason=reason,
        )
        RealtimeService.record_change(
            tenant_id=enc.tenant_id,
            facility_id=enc.facility_id,
            table=TABLE_STATUS_HISTORY,
            op=ChangeOp.INSERT,
            # history rows are written once, so each key only ever has version 1
            row_id=entry.id,
            row_version=1,
            row=dict(StatusHistoryEntrySerializer(entry).data),
        )
        return entry

    @staticmethod
    def _actor_member(*, tenant_id: UUID, facility_id: UUID, actor_user_id: int | None):
        return team_selectors.member_for_user(tenant_id=tenant_id, facility_id=facility_id, user_id=actor_user_id)

    @staticmethod
    def _validate_mode(mode: str) -> str:
        if mode not in EncounterMode.values:
            raise ValidationError(f"Unknown encounter mode '{mode}'.", field="mode")
        return mode

    @staticmethod
    def _schedule_side_effects(
        enc: Encounter,
        *,
        rule: TransitionRule,
        from_status: Optional[str],
        actor_user_id: int | None,
    ) -> None:
        payload = {
            "tenant_id": str(enc.tenant_id),
            "facility_id": str(enc.facility_id),
            "encounter_id": str(enc.id),
            "patient_id": str(enc.patient_id),
            "queue_entry_id": str(enc.queue_entry_id) if enc.queue_entry_id else None,
            "from": from_status,
            "to": rule.to_status,
            "mode": enc.mode,
            "version": enc.version,
            "actor_user_id": actor_user_id,
        }
        transaction.on_commit(
            lambda: EncounterService._run_side_effects(rule.side_effects, payload)
        )

    @staticmethod
    def _run_side_effects(side_effects: tuple[str, ...], payload: dict) -> None:
        """
        Runs after the transition committed. A failing effect is logged and
        does not undo the transition or stop the remaining effects.
        """
        for effect in side_effects:
            try:
                if effect == NOTIFY:
                    publish(TRANSITIONED_EVENT, payload)
                elif effect in (QUEUE_IN_CONSULTATION, QUEUE_COMPLETED):
                    EncounterService._sync_queue(effect, payload)
                else:
                    logger.warning("Unknown encounter side effect %s", effect)
            except Exception:
                logger.exception(
                    "Encounter side effect failed",
                    extra={"side_effect": effect, "encounter_id": payload["encounter_id"]},
                )

    @staticmethod
    def _sync_queue(effect: str, payload: dict) -> None:
        from clinic_core.admissions.services import QueueService

        if not payload.get("queue_entry_id"):
            return
        target = QueueStatus.IN_CONSULTATION if effect == QUEUE_IN_CONSULTATION else QueueStatus.COMPLETED
        QueueService.sync_with_encounter(
            tenant_id=UUID(payload["tenant_id"]),
            facility_id=UUID(payload["facility_id"]),
            entry_id=UUID(payload["queue_entry_id"]),
            new_status=target,
            actor_user_id=payload.get("actor_user_id"),
        )

    # ---------------------------------------------------------------------
    # Creation
    # ---------------------------------------------------------------------
    @staticmethod
    @transaction.atomic
    def create(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        patient_id: UUID,
        mode: str = EncounterMode.SOLO,
        actor_user_id: int | None = None,
        queue_entry_id: Optional[UUID] = None,
        assigned_practitioner_id: Optional[UUID] = None,
        assigned_assistant_id: Optional[UUID] = None,
        defer_start: bool = False,
    ) -> Encounter:
        """
        Open an encounter. It starts at the first working status of its mode
        (assisted -> preconsult_in_progress, solo -> consultation_in_progress)
        unless defer_start=True, which stages it at `created`.
        """
        mode = EncounterService._validate_mode(mode)
        patient = get_patient(tenant_id=tenant_id, facility_id=facility_id, patient_id=patient_id)

        if actor_user_id is not None:
            actor = EncounterService._actor_member(
                tenant_id=tenant_id, facility_id=facility_id, actor_user_id=actor_user_id
            )
            require_capability(actor, MEMBER, action="encounter.create")

        practitioner = assistant = None
        if assigned_practitioner_id:
            practitioner = team_selectors.get_team_member(
                tenant_id=tenant_id, facility_id=facility_id, team_member_id=assigned_practitioner_id
            )
            require_capability(practitioner, DOCTOR, action="assign.practitioner")
        if assigned_assistant_id:
            assistant = team_selectors.get_team_member(
                tenant_id=tenant_id, facility_id=facility_id, team_member_id=assigned_assistant_id
            )
            require_capability(assistant, ASSISTANT, action="assign.assistant")

        queue_entry = None
        if queue_entry_id:
            queue_entry = get_queue_entry(tenant_id=tenant_id, facility_id=facility_id, entry_id=queue_entry_id)
            if queue_entry.patient_id != patient.id:
                raise ValidationError("Queue entry belongs to another patient.", field="queue_entry_id")
            if queue_entry.is_terminal:
                raise TerminalStateError(
                    "Queue entry is closed and cannot start an encounter.",
                    queue_entry_id=str(queue_entry.id),
                    status=queue_entry.status,
                )

        existing = active_encounter_for_patient(tenant_id=tenant_id, facility_id=facility_id, patient_id=patient.id)
        if existing is not None:
            raise ConflictError(
                "Patient already has an open encounter.",
                encounter_id=str(existing.id),
                status=existing.status,
            )

        status = EncounterStatus.CREATED if defer_start else INITIAL_STATUS[mode]
        now = timezone.now()
        stamps = {}
        if status == EncounterStatus.CONSULTATION_IN_PROGRESS:
            stamps["consultation_started_at"] = now

        try:
            with transaction.atomic():
                enc = Encounter.objects.create(
                    tenant_id=tenant_id,
                    facility_id=facility_id,
                    patient=patient,
                    mode=mode,
                    status=status,
                    queue_entry=queue_entry,
                    assigned_practitioner=practitioner,
                    assigned_assistant=assistant,
                    created_by_id=actor_user_id,
                    updated_by_id=actor_user_id,
                    **stamps,
                )
        except IntegrityError:
            raise ConflictError("Patient already has an open encounter.", patient_id=str(patient.id))

        EncounterService._record_change(enc, ChangeOp.INSERT)
        EncounterService._record_history(enc, from_status=None, to_status=status, actor_user_id=actor_user_id)

        AuditService.log(
            event_code="encounter.created",
            entity_type="Encounter",
            entity_id=enc.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={
                "patient_id": str(patient.id),
                "mode": mode,
                "status": status,
                "queue_entry_id": str(queue_entry.id) if queue_entry else None,
            },
        )

        if status != EncounterStatus.CREATED:
            # Same downstream effects as entering this status by transition
            EncounterService._schedule_side_effects(
                enc,
                rule=TRANSITIONS[(EncounterStatus.CREATED, status)],
                from_status=None,
                actor_user_id=actor_user_id,
            )

        logger.info(
            "Encounter created",
            extra={"encounter_id": str(enc.id), "mode": mode, "status": status, "facility_id": str(facility_id)},
        )
        return enc

    @staticmethod
    @transaction.atomic
    def create_from_queue(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        queue_entry_id: UUID,
        mode: str = EncounterMode.SOLO,
        actor_user_id: int | None = None,
    ) -> Encounter:
        """Patient and practitioner are taken from the queue entry."""
        entry = get_queue_entry(tenant_id=tenant_id, facility_id=facility_id, entry_id=queue_entry_id)

        practitioner_id = None
        if entry.assigned_to_id:
            member = team_selectors.get_team_member(
                tenant_id=tenant_id, facility_id=facility_id, team_member_id=entry.assigned_to_id
            )
            if DOCTOR in capability_of(member):
                practitioner_id = member.id

        return EncounterService.create(
            tenant_id=tenant_id,
            facility_id=facility_id,
            patient_id=entry.patient_id,
            mode=mode,
            actor_user_id=actor_user_id,
            queue_entry_id=entry.id,
            assigned_practitioner_id=practitioner_id,
        )

    @staticmethod
    @transaction.atomic
    def open_or_create(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        patient_id: UUID,
        mode: str = EncounterMode.SOLO,
        actor_user_id: int | None = None,
    ) -> tuple[Encounter, bool]:
        """Return (encounter, created). An existing open encounter wins."""
        get_patient(tenant_id=tenant_id, facility_id=facility_id, patient_id=patient_id)
        existing = active_encounter_for_patient(tenant_id=tenant_id, facility_id=facility_id, patient_id=patient_id)
        if existing is not None:
            return existing, False

        enc = EncounterService.create(
            tenant_id=tenant_id,
            facility_id=facility_id,
            patient_id=patient_id,
            mode=mode,
            actor_user_id=actor_user_id,
        )
        return enc, True

    # ---------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------
    @staticmethod
    @transaction.atomic
    def transition(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        encounter_id: UUID,
        target_status: str,
        actor_user_id: int | None,
        reason: str = "",
        expected_version: Optional[int] = None,
    ) -> Encounter:
        enc = lock_versioned(
            Encounter.objects,
            tenant_id=tenant_id,
            facility_id=facility_id,
            pk=encounter_id,
            expected_version=expected_version,
            label="Encounter",
        )
        from_status = enc.status

        if target_status not in EncounterStatus.values:
            raise ValidationError(f"Unknown encounter status '{target_status}'.", field="status")
        if reason and len(reason) > STATUS_REASON_MAX_LENGTH:
            raise ValidationError(
                f"Reason must be at most {STATUS_REASON_MAX_LENGTH} characters.",
                field="reason",
                max_length=STATUS_REASON_MAX_LENGTH,
            )

        if enc.is_terminal:
            raise TerminalStateError(
                "Encounter is closed and can no longer change.",
                from_status=from_status,
                to_status=target_status,
            )

        rule = rule_for(enc.mode, from_status, target_status)
        if rule is None:
            raise TransitionNotAllowedError(
                f"Cannot move a {enc.mode} encounter from {from_status} to {target_status}.",
                from_status=from_status,
                to_status=target_status,
                mode=enc.mode,
                allowed=list(allowed_targets(enc.mode, from_status)),
            )

        actor = EncounterService._actor_member(
            tenant_id=tenant_id, facility_id=facility_id, actor_user_id=actor_user_id
        )
        require_capability(actor, rule.capability, action=f"encounter.{target_status}")

        fields = {"status": target_status, "updated_by_id": actor_user_id}
        if rule.stamp_field:
            fields[rule.stamp_field] = timezone.now()

        compare_and_swap(enc, **fields)

        EncounterService._record_history(
            enc,
            from_status=from_status,
            to_status=target_status,
            actor_user_id=actor_user_id,
            reason=reason,
        )
        EncounterService._record_change(enc, ChangeOp.UPDATE)
        EncounterService._schedule_side_effects(
            enc, rule=rule, from_status=from_status, actor_user_id=actor_user_id
        )

        logger.info(
            "Encounter transitioned",
            extra={
                "encounter_id": str(enc.id),
                "from_status": from_status,
                "to_status": target_status,
                "version": enc.version,
            },
        )
        return enc

    @staticmethod
    @transaction.atomic
    def update_mode(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        encounter_id: UUID,
        new_mode: str,
        actor_user_id: int | None,
        expected_version: Optional[int] = None,
    ) -> Encounter:
        """
        Switch solo <-> assisted. Timestamps already stamped stay as they are
        and the status is left untouched.
        """
        enc = lock_versioned(
            Encounter.objects,
            tenant_id=tenant_id,
            facility_id=facility_id,
            pk=encounter_id,
            expected_version=expected_version,
            label="Encounter",
        )
        if enc.is_terminal:
            raise TerminalStateError("Encounter is closed and can no longer change.", status=enc.status)

        new_mode = EncounterService._validate_mode(new_mode)
        if new_mode == enc.mode:
            raise ValidationError(f"Encounter is already in {new_mode} mode.", field="mode")

        actor = EncounterService._actor_member(
            tenant_id=tenant_id, facility_id=facility_id, actor_user_id=actor_user_id
        )
        require_capability(actor, MEMBER, action="encounter.mode")

        old_mode = enc.mode
        compare_and_swap(enc, mode=new_mode, updated_by_id=actor_user_id)

        EncounterService._record_change(enc, ChangeOp.UPDATE)
        AuditService.log(
            event_code="encounter.mode_changed",
            entity_type="Encounter",
            entity_id=enc.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"from": old_mode, "to": new_mode, "status": enc.status, "version": enc.version},
        )
        logger.info(
            "Encounter mode changed",
            extra={"encounter_id": str(enc.id), "from_mode": old_mode, "to_mode": new_mode, "status": enc.status},
        )
        return enc

    @staticmethod
    @transaction.atomic
    def link_records(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        encounter_id: UUID,
        actor_user_id: int | None,
        consultation_id: Optional[UUID] = None,
        preconsultation_id: Optional[UUID] = None,
        expected_version: Optional[int] = None,
    ) -> Encounter:
        enc = lock_versioned(
            Encounter.objects,
            tenant_id=tenant_id,
            facility_id=facility_id,
            pk=encounter_id,
            expected_version=expected_version,
            label="Encounter",
        )
        if enc.is_terminal:
            raise TerminalStateError("Encounter is closed and can no longer change.", status=enc.status)

        fields = {}
        if consultation_id is not None and consultation_id != enc.consultation_id:
            fields["consultation_id"] = consultation_id
        if preconsultation_id is not None and preconsultation_id != enc.preconsultation_id:
            fields["preconsultation_id"] = preconsultation_id
        if not fields:
            return enc

        compare_and_swap(enc, updated_by_id=actor_user_id, **fields)

        EncounterService._record_change(enc, ChangeOp.UPDATE)
        AuditService.log(
            event_code="encounter.records_linked",
            entity_type="Encounter",
            entity_id=enc.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={k: str(v) for k, v in fields.items()},
        )
        return enc
