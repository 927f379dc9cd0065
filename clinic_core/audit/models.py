# clinic_core/audit/models.py
from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models

from clinic_core.common.models import ScopedModel


class AuditEvent(ScopedModel):
    """
    Immutable audit record for mutations that are not status changes
    (admission, assignment, mode switch, record links).
    Encounter status changes are audited by EncounterStatusHistoryEntry.
    """
    event_code = models.CharField(max_length=128, db_index=True)  # e.g. "queue.enqueued"
    entity_type = models.CharField(max_length=64, db_index=True)  # e.g. "Encounter"
    entity_id = models.UUIDField(db_index=True)

    actor_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="audit_events",
        null=True,
        blank=True,
    )

    occurred_at = models.DateTimeField(auto_now_add=True, db_index=True)
    metadata = models.JSONField(default=dict, encoder=DjangoJSONEncoder)

    class Meta:
        db_table = "audit_audit_event"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "occurred_at"]),
            models.Index(fields=["entity_type", "entity_id"]),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("AuditEvent is immutable and cannot be modified once created.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("AuditEvent is immutable and cannot be deleted.")
