# clinic_core/encounters/serializers.py
from rest_framework import serializers

from clinic_core.encounters.constants import STATUS_REASON_MAX_LENGTH, EncounterMode, EncounterStatus
from clinic_core.encounters.models import Encounter, EncounterStatusHistoryEntry

ENCOUNTER_FIELDS = [
    "id",
    "tenant_id",
    "facility_id",
    "patient_id",
    "mode",
    "status",
    "preconsult_completed_at",
    "consultation_started_at",
    "completed_at",
    "assigned_practitioner_id",
    "assigned_assistant_id",
    "queue_entry_id",
    "consultation_id",
    "preconsultation_id",
    "created_by_id",
    "updated_by_id",
    "version",
    "created_at",
    "updated_at",
]


class EncounterSerializer(serializers.ModelSerializer):
    patient_name = serializers.CharField(source="patient.full_name", read_only=True)

    class Meta:
        model = Encounter
        fields = ENCOUNTER_FIELDS + ["patient_name"]
        read_only_fields = fields


class EncounterChangeSerializer(serializers.ModelSerializer):
    """Row payload for realtime change events."""

    class Meta:
        model = Encounter
        fields = ENCOUNTER_FIELDS
        read_only_fields = fields


class StatusHistoryEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = EncounterStatusHistoryEntry
        fields = [
            "id",
            "encounter_id",
            "from_status",
            "to_status",
            "changed_by_id",
            "changed_at",
            "reason",
            "encounter_version",
        ]
        read_only_fields = fields


class EncounterCreateSerializer(serializers.Serializer):
    patient_id = serializers.UUIDField()
    mode = serializers.ChoiceField(choices=EncounterMode.choices, default=EncounterMode.SOLO)
    queue_entry_id = serializers.UUIDField(required=False, allow_null=True)
    assigned_practitioner_id = serializers.UUIDField(required=False, allow_null=True)
    assigned_assistant_id = serializers.UUIDField(required=False, allow_null=True)
    defer_start = serializers.BooleanField(required=False, default=False)


class EncounterFromQueueSerializer(serializers.Serializer):
    queue_entry_id = serializers.UUIDField()
    mode = serializers.ChoiceField(choices=EncounterMode.choices, default=EncounterMode.SOLO)


class EncounterOpenSerializer(serializers.Serializer):
    patient_id = serializers.UUIDField()
    mode = serializers.ChoiceField(choices=EncounterMode.choices, default=EncounterMode.SOLO)


class EncounterTransitionSerializer(serializers.Serializer):
    # unknown statuses are rejected by the service with a named field
    status = serializers.CharField()
    reason = serializers.CharField(required=False, allow_blank=True, max_length=STATUS_REASON_MAX_LENGTH, default="")
    expected_version = serializers.IntegerField(required=False, allow_null=True, min_value=1)


class EncounterModeSerializer(serializers.Serializer):
    mode = serializers.CharField()
    expected_version = serializers.IntegerField(required=False, allow_null=True, min_value=1)


class EncounterLinksSerializer(serializers.Serializer):
    consultation_id = serializers.UUIDField(required=False, allow_null=True)
    preconsultation_id = serializers.UUIDField(required=False, allow_null=True)
    expected_version = serializers.IntegerField(required=False, allow_null=True, min_value=1)

    def validate(self, attrs):
        if attrs.get("consultation_id") is None and attrs.get("preconsultation_id") is None:
            raise serializers.ValidationError("Provide consultation_id and/or preconsultation_id.")
        return attrs

