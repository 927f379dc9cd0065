# clinic_core/encounters/admin.py
from __future__ import annotations

from django.contrib import admin

from clinic_core.encounters.models import Encounter, EncounterStatusHistoryEntry


@admin.register(Encounter)
class EncounterAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "tenant_id",
        "facility_id",
        "patient",
        "mode",
        "status",
        "consultation_started_at",
        "completed_at",
        "version",
        "created_at",
    )
    list_filter = ("status", "mode")
    search_fields = ("id", "patient__id", "patient__mrn", "patient__full_name")
    # lifecycle fields only change through EncounterService
    readonly_fields = (
        "status",
        "mode",
        "version",
        "preconsult_completed_at",
        "consultation_started_at",
        "completed_at",
        "created_at",
        "updated_at",
    )


@admin.register(EncounterStatusHistoryEntry)
class EncounterStatusHistoryEntryAdmin(admin.ModelAdmin):
    list_display = ("encounter", "from_status", "to_status", "changed_by", "changed_at", "encounter_version")
    list_filter = ("to_status",)
    search_fields = ("encounter__id",)
    ordering = ("-changed_at",)

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
