# clinic_core/admissions/serializers.py
from rest_framework import serializers

from clinic_core.admissions.models import REASON_MAX_LENGTH, QueueEntry, QueueStatus
from clinic_core.admissions.selectors import waiting_time


class QueueEntrySerializer(serializers.ModelSerializer):
    patient_name = serializers.CharField(source="patient.full_name", read_only=True)
    priority_label = serializers.CharField(source="get_priority_display", read_only=True)
    wait = serializers.SerializerMethodField()

    class Meta:
        model = QueueEntry
        fields = [
            "id",
            "tenant_id",
            "facility_id",
            "patient_id",
            "patient_name",
            "priority",
            "priority_label",
            "arrival_time",
            "status",
            "assigned_to_id",
            "reason",
            "notes",
            "called_at",
            "started_at",
            "completed_at",
            "version",
            "created_at",
            "updated_at",
            "wait",
        ]
        read_only_fields = fields

    def get_wait(self, obj) -> dict:
        w = waiting_time(obj)
        return {"minutes": w.minutes, "label": w.label}


class QueueEntryChangeSerializer(QueueEntrySerializer):
    """Row payload for realtime change events (no patient identity beyond the id)."""
    patient_name = None
    wait = None

    class Meta(QueueEntrySerializer.Meta):
        fields = [f for f in QueueEntrySerializer.Meta.fields if f not in ("patient_name", "wait")]
        read_only_fields = fields


class EnqueueSerializer(serializers.Serializer):
    patient_id = serializers.UUIDField()
    # range is enforced by the service so every caller gets the same error
    priority = serializers.IntegerField(required=False, default=3)
    reason = serializers.CharField(max_length=REASON_MAX_LENGTH, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class AdvanceSerializer(serializers.Serializer):
    status = serializers.CharField()
    expected_version = serializers.IntegerField(required=False, allow_null=True, min_value=1)


class QueueUpdateSerializer(serializers.Serializer):
    priority = serializers.IntegerField(required=False)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=REASON_MAX_LENGTH)
    notes = serializers.CharField(required=False, allow_blank=True)
    expected_version = serializers.IntegerField(required=False, allow_null=True, min_value=1)


class QueueListQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=QueueStatus.choices, required=False)


class WaitingTimeSerializer(serializers.Serializer):
    minutes = serializers.IntegerField()
    label = serializers.CharField()


class QueueStatsSerializer(serializers.Serializer):
    waiting = serializers.IntegerField()
    in_consultation = serializers.IntegerField()
    completed_today = serializers.IntegerField()
    average_wait_minutes = serializers.IntegerField()
