# clinic_core/realtime/admin.py
from django.contrib import admin

from clinic_core.realtime.models import ChangeEvent


@admin.register(ChangeEvent)
class ChangeEventAdmin(admin.ModelAdmin):
    list_display = ("seq", "table", "op", "row_id", "row_version", "facility_id", "occurred_at")
    list_filter = ("table", "op")
    search_fields = ("row_id",)
    ordering = ("-seq",)

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
