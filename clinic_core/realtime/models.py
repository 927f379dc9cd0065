# clinic_core/realtime/models.py
from django.core.exceptions import ValidationError
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models


class ChangeOp(models.TextChoices):
    INSERT = "insert", "Insert"
    UPDATE = "update", "Update"
    DELETE = "delete", "Delete"


class ChangeFeedHead(models.Model):
    """
    Last seq recorded for one (tenant, facility) feed.

    Writers lock this row before inserting a ChangeEvent and hold the lock
    until commit, so within a scope events commit in seq order and every seq
    at or below `last_seq` is already visible to readers.
    """
    tenant_id = models.UUIDField()
    facility_id = models.UUIDField()
    last_seq = models.BigIntegerField(default=0)

    class Meta:
        db_table = "realtime_change_feed_head"
        constraints = [
            models.UniqueConstraint(fields=["tenant_id", "facility_id"], name="uniq_change_feed_head_scope"),
        ]

    def __str__(self) -> str:
        return f"{self.tenant_id}/{self.facility_id}@{self.last_seq}"


class ChangeEvent(models.Model):
    """
    Immutable outbox of row-level changes, written in the same transaction as
    the mutation it describes. `seq` is the catch-up cursor for the feed.
    """
    seq = models.BigAutoField(primary_key=True)

    tenant_id = models.UUIDField(db_index=True)
    facility_id = models.UUIDField(db_index=True)

    table = models.CharField(max_length=64)
    op = models.CharField(max_length=8, choices=ChangeOp.choices)

    # uuid for queue entries and encounters, integer id for history rows
    row_id = models.CharField(max_length=64)
    row_version = models.PositiveIntegerField(default=1)
    row = models.JSONField(default=dict, encoder=DjangoJSONEncoder)

    occurred_at = models.DateTimeField(db_index=True)

    class Meta:
        db_table = "realtime_change_event"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "seq"]),
            models.Index(fields=["table", "row_id"]),
        ]

    def __str__(self) -> str:
        return f"{self.table}:{self.op}:{self.row_id}@{self.row_version}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("ChangeEvent is immutable and cannot be modified once created.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("ChangeEvent is immutable and cannot be deleted.")

    def as_message(self) -> dict:
        return {
            "seq": self.seq,
            "table": self.table,
            "op": self.op,
            "row_id": str(self.row_id),
            "row_version": self.row_version,
            "row": self.row,
            "occurred_at": self.occurred_at.isoformat(),
        }
