# clinic_core/encounters/models.py
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q

from clinic_core.common.models import VersionedScopedModel
from clinic_core.encounters.constants import (
    ACTIVE_STATUSES,
    STATUS_REASON_MAX_LENGTH,
    TERMINAL_STATUSES,
    EncounterMode,
    EncounterStatus,
)
from clinic_core.patients.models import Patient


class Encounter(VersionedScopedModel):
    """
    Lifecycle record of one clinical episode.

    `status` only changes through EncounterService.transition, which stamps the
    phase timestamps and appends one EncounterStatusHistoryEntry per change.
    """
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name="encounters")

    mode = models.CharField(max_length=16, choices=EncounterMode.choices, default=EncounterMode.ASSISTED)
    status = models.CharField(
        max_length=32,
        choices=EncounterStatus.choices,
        default=EncounterStatus.CREATED,
        db_index=True,
    )

    preconsult_completed_at = models.DateTimeField(null=True, blank=True)
    consultation_started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    assigned_practitioner = models.ForeignKey(
        "team.TeamMember",
        on_delete=models.PROTECT,
        related_name="practitioner_encounters",
        null=True,
        blank=True,
    )
    assigned_assistant = models.ForeignKey(
        "team.TeamMember",
        on_delete=models.PROTECT,
        related_name="assistant_encounters",
        null=True,
        blank=True,
    )

    queue_entry = models.ForeignKey(
        "admissions.QueueEntry",
        on_delete=models.PROTECT,
        related_name="encounters",
        null=True,
        blank=True,
    )

    # Owned by the documentation modules; opaque here
    consultation_id = models.UUIDField(null=True, blank=True)
    preconsultation_id = models.UUIDField(null=True, blank=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="created_encounters",
        null=True,
        blank=True,
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="updated_encounters",
        null=True,
        blank=True,
    )

    class Meta:
        db_table = "encounters"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "status"]),
            models.Index(fields=["tenant_id", "facility_id", "patient"]),
            models.Index(fields=["tenant_id", "facility_id", "created_at"]),
        ]
        constraints = [
            # At most one open encounter per patient in a facility.
            models.UniqueConstraint(
                fields=["tenant_id", "facility_id", "patient"],
                condition=Q(status__in=ACTIVE_STATUSES),
                name="uq_active_encounter_per_patient_scope",
            ),
        ]

    def __str__(self) -> str:
        return f"Encounter({self.patient_id}, {self.mode}, {self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class EncounterStatusHistoryEntry(models.Model):
    """
    Append-only status ledger. Exactly one row per accepted transition,
    plus the creation row (from_status is NULL).
    changed_at is strictly increasing per encounter.
    """
    id = models.BigAutoField(primary_key=True)

    tenant_id = models.UUIDField(db_index=True)
    facility_id = models.UUIDField(db_index=True)

    encounter = models.ForeignKey(Encounter, on_delete=models.PROTECT, related_name="status_history")

    from_status = models.CharField(max_length=32, choices=EncounterStatus.choices, null=True, blank=True)
    to_status = models.CharField(max_length=32, choices=EncounterStatus.choices)

    changed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="encounter_status_changes",
        null=True,
        blank=True,
    )
    changed_at = models.DateTimeField(db_index=True)
    reason = models.CharField(max_length=STATUS_REASON_MAX_LENGTH, blank=True, default="")

    # encounter.version right after this change was applied
    encounter_version = models.PositiveIntegerField()

    class Meta:
        db_table = "encounter_status_history"
        constraints = [
            models.UniqueConstraint(fields=["encounter", "changed_at"], name="uq_status_history_encounter_ts"),
            models.UniqueConstraint(fields=["encounter", "encounter_version"], name="uq_status_history_version"),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "encounter", "changed_at"]),
        ]

    def __str__(self) -> str:
        return f"{self.encounter_id}: {self.from_status} -> {self.to_status} @ {self.changed_at}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("EncounterStatusHistoryEntry is immutable and cannot be modified once created.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("EncounterStatusHistoryEntry is immutable and cannot be deleted.")
