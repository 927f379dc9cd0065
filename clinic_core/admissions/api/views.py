# clinic_core/admissions/api/views.py
from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from clinic_core.admissions import selectors
from clinic_core.admissions.models import QueueEntry
from clinic_core.admissions.serializers import (
    AdvanceSerializer,
    EnqueueSerializer,
    QueueEntrySerializer,
    QueueListQuerySerializer,
    QueueStatsSerializer,
    QueueUpdateSerializer,
)
from clinic_core.admissions.services import QueueService
from clinic_core.common.api.pagination import paginate
from clinic_core.common.permissions import QueuePermission
from clinic_core.common.scope import UUID_RE, require_scope
from clinic_core.team.serializers import AssignSerializer, UnassignSerializer
from clinic_core.team.services import ENTITY_QUEUE_ENTRY, AssignmentService


class QueueEntryViewSet(viewsets.ViewSet):
    """
    Admission queue of the facility.

    GET  /queue/               ordered by (priority, arrival_time)
    GET  /queue/next/          next waiting patient (no state change)
    POST /queue/{id}/advance/  status move, optional expected_version
    """
    permission_classes = [QueuePermission]
    serializer_class = QueueEntrySerializer
    queryset = QueueEntry.objects.none()
    lookup_value_regex = UUID_RE

    @extend_schema(tags=["Queue"], parameters=[QueueListQuerySerializer])
    def list(self, request):
        scope = require_scope(request)
        q = QueueListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)

        qs = selectors.list_queue(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            status=q.validated_data.get("status"),
        )
        return paginate(request, qs, QueueEntrySerializer)

    @extend_schema(tags=["Queue"], request=EnqueueSerializer, responses={201: QueueEntrySerializer})
    def create(self, request):
        scope = require_scope(request)
        ser = EnqueueSerializer(data=request.data or {})
        ser.is_valid(raise_exception=True)

        entry = QueueService.enqueue(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_user_id=request.user.id,
            **ser.validated_data,
        )
        return Response(QueueEntrySerializer(entry).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Queue"], responses=QueueEntrySerializer)
    def retrieve(self, request, pk=None):
        scope = require_scope(request)
        entry = selectors.get_queue_entry(tenant_id=scope.tenant_id, facility_id=scope.facility_id, entry_id=pk)
        return Response(QueueEntrySerializer(entry).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Queue"], request=QueueUpdateSerializer, responses=QueueEntrySerializer)
    def partial_update(self, request, pk=None):
        scope = require_scope(request)
        ser = QueueUpdateSerializer(data=request.data or {})
        ser.is_valid(raise_exception=True)

        entry = QueueService.update_details(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            entry_id=pk,
            actor_user_id=request.user.id,
            **ser.validated_data,
        )
        return Response(QueueEntrySerializer(entry).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Queue"], responses={200: QueueEntrySerializer, 204: None})
    @action(detail=False, methods=["get"], url_path="next")
    def next(self, request):
        scope = require_scope(request)
        entry = selectors.dequeue_next(tenant_id=scope.tenant_id, facility_id=scope.facility_id)
        if entry is None:
            return Response(status=status.HTTP_204_NO_CONTENT)
        return Response(QueueEntrySerializer(entry).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Queue"], request=AdvanceSerializer, responses=QueueEntrySerializer)
    @action(detail=True, methods=["post"], url_path="advance")
    def advance(self, request, pk=None):
        scope = require_scope(request)
        ser = AdvanceSerializer(data=request.data or {})
        ser.is_valid(raise_exception=True)

        entry = QueueService.advance(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            entry_id=pk,
            new_status=ser.validated_data["status"],
            expected_version=ser.validated_data.get("expected_version"),
            actor_user_id=request.user.id,
        )
        return Response(QueueEntrySerializer(entry).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Queue"], request=AssignSerializer, responses=QueueEntrySerializer)
    @action(detail=True, methods=["post"], url_path="assign")
    def assign(self, request, pk=None):
        scope = require_scope(request)
        ser = AssignSerializer(data=request.data or {})
        ser.is_valid(raise_exception=True)

        entry = AssignmentService.assign(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            entity_type=ENTITY_QUEUE_ENTRY,
            entity_id=pk,
            actor_user_id=request.user.id,
            **ser.validated_data,
        )
        return Response(QueueEntrySerializer(entry).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Queue"], request=UnassignSerializer, responses=QueueEntrySerializer)
    @action(detail=True, methods=["post"], url_path="unassign")
    def unassign(self, request, pk=None):
        scope = require_scope(request)
        ser = UnassignSerializer(data=request.data or {})
        ser.is_valid(raise_exception=True)

        entry = AssignmentService.unassign(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            entity_type=ENTITY_QUEUE_ENTRY,
            entity_id=pk,
            actor_user_id=request.user.id,
            **ser.validated_data,
        )
        return Response(QueueEntrySerializer(entry).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Queue"], responses=QueueStatsSerializer)
    @action(detail=False, methods=["get"], url_path="stats")
    def stats(self, request):
        scope = require_scope(request)
        stats = selectors.daily_stats(tenant_id=scope.tenant_id, facility_id=scope.facility_id)
        return Response(QueueStatsSerializer(stats).data, status=status.HTTP_200_OK)
