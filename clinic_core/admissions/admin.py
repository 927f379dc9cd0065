# clinic_core/admissions/admin.py
from django.contrib import admin

from clinic_core.admissions.models import QueueEntry


@admin.register(QueueEntry)
class QueueEntryAdmin(admin.ModelAdmin):
    list_display = ("id", "patient", "priority", "status", "arrival_time", "assigned_to", "version", "facility_id")
    list_filter = ("status", "priority")
    search_fields = ("id", "patient__full_name", "patient__mrn", "reason")
    # status changes must go through QueueService
    readonly_fields = (
        "status",
        "version",
        "called_at",
        "started_at",
        "completed_at",
        "created_at",
        "updated_at",
    )
    ordering = ("priority", "arrival_time")
