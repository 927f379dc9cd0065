# clinic_core/encounters/api/views.py
from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from clinic_core.common.api.pagination import paginate
from clinic_core.common.errors import ValidationError
from clinic_core.common.permissions import EncounterPermission
from clinic_core.common.scope import UUID_RE, require_scope
from clinic_core.encounters import history as status_history
from clinic_core.encounters import selectors
from clinic_core.encounters.filters import EncounterFilter
from clinic_core.encounters.models import Encounter
from clinic_core.encounters.serializers import (
    EncounterCreateSerializer,
    EncounterFromQueueSerializer,
    EncounterLinksSerializer,
    EncounterModeSerializer,
    EncounterOpenSerializer,
    EncounterSerializer,
    EncounterTransitionSerializer,
    StatusHistoryEntrySerializer,
)
from clinic_core.encounters.services import EncounterService
from clinic_core.team.serializers import AssignSerializer, UnassignSerializer
from clinic_core.team.services import ENTITY_ENCOUNTER, AssignmentService


class EncounterViewSet(viewsets.ViewSet):
    permission_classes = [EncounterPermission]
    serializer_class = EncounterSerializer
    queryset = Encounter.objects.none()
    lookup_value_regex = UUID_RE

    def _respond(self, enc: Encounter, http_status=status.HTTP_200_OK) -> Response:
        return Response(EncounterSerializer(enc).data, status=http_status)

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------
    @extend_schema(tags=["Encounters"])
    def list(self, request):
        scope = require_scope(request)
        qs = selectors.list_encounters(tenant_id=scope.tenant_id, facility_id=scope.facility_id)

        f = EncounterFilter(request.query_params, queryset=qs)
        if not f.is_valid():
            raise ValidationError("Invalid filters.", errors=f.errors.get_json_data())
        return paginate(request, f.qs, EncounterSerializer)

    @extend_schema(tags=["Encounters"], responses=EncounterSerializer)
    def retrieve(self, request, pk=None):
        scope = require_scope(request)
        enc = selectors.get_encounter(tenant_id=scope.tenant_id, facility_id=scope.facility_id, encounter_id=pk)
        return self._respond(enc)

    @extend_schema(tags=["Encounters"], responses=StatusHistoryEntrySerializer(many=True))
    @action(detail=True, methods=["get"], url_path="history")
    def history(self, request, pk=None):
        scope = require_scope(request)
        selectors.get_encounter(tenant_id=scope.tenant_id, facility_id=scope.facility_id, encounter_id=pk)
        qs = status_history.history(tenant_id=scope.tenant_id, facility_id=scope.facility_id, encounter_id=pk)
        return Response(StatusHistoryEntrySerializer(qs, many=True).data, status=status.HTTP_200_OK)

    # ------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------
    @extend_schema(tags=["Encounters"], request=EncounterCreateSerializer, responses={201: EncounterSerializer})
    def create(self, request):
        scope = require_scope(request)
        ser = EncounterCreateSerializer(data=request.data or {})
        ser.is_valid(raise_exception=True)

        enc = EncounterService.create(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_user_id=request.user.id,
            **ser.validated_data,
        )
        return self._respond(enc, status.HTTP_201_CREATED)

    @extend_schema(tags=["Encounters"], request=EncounterFromQueueSerializer, responses={201: EncounterSerializer})
    @action(detail=False, methods=["post"], url_path="from-queue")
    def from_queue(self, request):
        scope = require_scope(request)
        ser = EncounterFromQueueSerializer(data=request.data or {})
        ser.is_valid(raise_exception=True)

        enc = EncounterService.create_from_queue(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_user_id=request.user.id,
            **ser.validated_data,
        )
        return self._respond(enc, status.HTTP_201_CREATED)

    @extend_schema(tags=["Encounters"], request=EncounterOpenSerializer, responses={200: EncounterSerializer, 201: EncounterSerializer})
    @action(detail=False, methods=["post"], url_path="open")
    def open(self, request):
        scope = require_scope(request)
        ser = EncounterOpenSerializer(data=request.data or {})
        ser.is_valid(raise_exception=True)

        enc, created = EncounterService.open_or_create(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_user_id=request.user.id,
            **ser.validated_data,
        )
        return self._respond(enc, status.HTTP_201_CREATED if created else status.HTTP_200_OK)

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------
    @extend_schema(tags=["Encounters"], request=EncounterTransitionSerializer, responses=EncounterSerializer)
    @action(detail=True, methods=["post"], url_path="transition")
    def transition(self, request, pk=None):
        scope = require_scope(request)
        ser = EncounterTransitionSerializer(data=request.data or {})
        ser.is_valid(raise_exception=True)

        enc = EncounterService.transition(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            encounter_id=pk,
            target_status=ser.validated_data["status"],
            actor_user_id=request.user.id,
            reason=ser.validated_data["reason"],
            expected_version=ser.validated_data.get("expected_version"),
        )
        return self._respond(enc)

    @extend_schema(tags=["Encounters"], request=EncounterModeSerializer, responses=EncounterSerializer)
    @action(detail=True, methods=["post"], url_path="mode")
    def mode(self, request, pk=None):
        scope = require_scope(request)
        ser = EncounterModeSerializer(data=request.data or {})
        ser.is_valid(raise_exception=True)

        enc = EncounterService.update_mode(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            encounter_id=pk,
            new_mode=ser.validated_data["mode"],
            actor_user_id=request.user.id,
            expected_version=ser.validated_data.get("expected_version"),
        )
        return self._respond(enc)

    @extend_schema(tags=["Encounters"], request=EncounterLinksSerializer, responses=EncounterSerializer)
    @action(detail=True, methods=["post"], url_path="links")
    def links(self, request, pk=None):
        scope = require_scope(request)
        ser = EncounterLinksSerializer(data=request.data or {})
        ser.is_valid(raise_exception=True)

        enc = EncounterService.link_records(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            encounter_id=pk,
            actor_user_id=request.user.id,
            **ser.validated_data,
        )
        return self._respond(enc)

    @extend_schema(tags=["Encounters"], request=AssignSerializer, responses=EncounterSerializer)
    @action(detail=True, methods=["post"], url_path="assign")
    def assign(self, request, pk=None):
        scope = require_scope(request)
        ser = AssignSerializer(data=request.data or {})
        ser.is_valid(raise_exception=True)

        enc = AssignmentService.assign(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            entity_type=ENTITY_ENCOUNTER,
            entity_id=pk,
            actor_user_id=request.user.id,
            **ser.validated_data,
        )
        return self._respond(enc)

    @extend_schema(tags=["Encounters"], request=UnassignSerializer, responses=EncounterSerializer)
    @action(detail=True, methods=["post"], url_path="unassign")
    def unassign(self, request, pk=None):
        scope = require_scope(request)
        ser = UnassignSerializer(data=request.data or {})
        ser.is_valid(raise_exception=True)

        enc = AssignmentService.unassign(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            entity_type=ENTITY_ENCOUNTER,
            entity_id=pk,
            actor_user_id=request.user.id,
            **ser.validated_data,
        )
        return self._respond(enc)
