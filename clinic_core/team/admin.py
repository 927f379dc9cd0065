# clinic_core/team/admin.py
from django.contrib import admin

from clinic_core.team.models import TeamMember


@admin.register(TeamMember)
class TeamMemberAdmin(admin.ModelAdmin):
    list_display = ("user", "job_title", "specialty", "facility", "tenant", "is_active", "is_available")
    list_filter = ("job_title", "is_active", "is_available", "tenant")
    search_fields = ("user__username", "user__email", "facility__code")
    readonly_fields = ("id", "created_at", "updated_at")
