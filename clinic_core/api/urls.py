# clinic_core/api/urls.py
from __future__ import annotations

from rest_framework.routers import DefaultRouter

from clinic_core.admissions.api.views import QueueEntryViewSet
from clinic_core.audit.api.views import AuditEventViewSet
from clinic_core.encounters.api.views import EncounterViewSet
from clinic_core.realtime.api.views import RealtimeViewSet
from clinic_core.team.api.views import TeamMemberViewSet

router = DefaultRouter()

router.register(r"queue", QueueEntryViewSet, basename="queue")
router.register(r"encounters", EncounterViewSet, basename="encounter")
router.register(r"team-members", TeamMemberViewSet, basename="team-members")
router.register(r"realtime", RealtimeViewSet, basename="realtime")
router.register(r"audit/events", AuditEventViewSet, basename="audit-events")

urlpatterns = router.urls
