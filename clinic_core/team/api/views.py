# clinic_core/team/api/views.py
from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework import status, viewsets
from rest_framework.response import Response

from clinic_core.common.permissions import TeamPermission
from clinic_core.common.scope import UUID_RE, require_scope
from clinic_core.team import selectors
from clinic_core.team.models import TeamMember
from clinic_core.team.serializers import TeamMemberQuerySerializer, TeamMemberSerializer


class TeamMemberViewSet(viewsets.ViewSet):
    """
    Read-only staff directory of the facility, with derived capabilities.
    Team administration happens elsewhere.
    """
    permission_classes = [TeamPermission]
    lookup_value_regex = UUID_RE
    serializer_class = TeamMemberSerializer
    queryset = TeamMember.objects.none()

    @extend_schema(tags=["Team"], parameters=[TeamMemberQuerySerializer], responses=TeamMemberSerializer(many=True))
    def list(self, request):
        scope = require_scope(request)
        q = TeamMemberQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)

        members = selectors.list_team_members(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            capability=q.validated_data.get("capability"),
            available_only=q.validated_data["available"],
        )
        return Response(TeamMemberSerializer(members, many=True).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Team"], responses=TeamMemberSerializer)
    def retrieve(self, request, pk=None):
        scope = require_scope(request)
        member = selectors.get_team_member(tenant_id=scope.tenant_id, facility_id=scope.facility_id, team_member_id=pk)
        return Response(TeamMemberSerializer(member).data, status=status.HTTP_200_OK)
