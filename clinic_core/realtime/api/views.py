# clinic_core/realtime/api/views.py
from __future__ import annotations

from django.conf import settings
from django.http import StreamingHttpResponse
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.renderers import JSONRenderer
from rest_framework.response import Response

from clinic_core.common.errors import ValidationError
from clinic_core.common.permissions import RealtimePermission
from clinic_core.common.scope import require_scope
from clinic_core.realtime import services
from clinic_core.realtime.broker import broker
from clinic_core.realtime.stream import EventStreamRenderer, event_stream

SINCE_PARAM = OpenApiParameter(
    name="since",
    type=OpenApiTypes.INT,
    location=OpenApiParameter.QUERY,
    required=False,
    description="Feed cursor (seq) already applied by the client.",
)


def _since(request, *, default=0):
    raw = request.query_params.get("since")
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError("since must be a non-negative integer.", field="since")
    if value < 0:
        raise ValidationError("since must be a non-negative integer.", field="since")
    return value


class RealtimeViewSet(viewsets.ViewSet):
    """
    Realtime sync for staff clients.

    - GET changes/?since=N  catch-up page of change events after cursor N
    - GET snapshot/         full resync payload (+ cursor to resume from)
    - GET stream/?since=N   Server-Sent Events
    """
    permission_classes = [RealtimePermission]

    @extend_schema(tags=["Realtime"], parameters=[SINCE_PARAM])
    @action(detail=False, methods=["get"], url_path="changes")
    def changes(self, request):
        scope = require_scope(request)
        page = services.changes_since(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            since=_since(request),
        )
        return Response(page, status=status.HTTP_200_OK)

    @extend_schema(tags=["Realtime"])
    @action(detail=False, methods=["get"], url_path="snapshot")
    def snapshot(self, request):
        scope = require_scope(request)
        return Response(
            services.snapshot(tenant_id=scope.tenant_id, facility_id=scope.facility_id),
            status=status.HTTP_200_OK,
        )

    @extend_schema(tags=["Realtime"], parameters=[SINCE_PARAM], responses={(200, "text/event-stream"): OpenApiTypes.STR})
    @action(
        detail=False,
        methods=["get"],
        url_path="stream",
        renderer_classes=[JSONRenderer, EventStreamRenderer],
    )
    def stream(self, request):
        scope = require_scope(request)
        since = _since(request, default=None)

        subscription = broker.subscribe(tenant_id=scope.tenant_id, facility_id=scope.facility_id)
        response = StreamingHttpResponse(
            event_stream(
                subscription=subscription,
                tenant_id=scope.tenant_id,
                facility_id=scope.facility_id,
                since=since,
                heartbeat_seconds=getattr(settings, "REALTIME_STREAM_HEARTBEAT_SECONDS", 15),
                max_seconds=getattr(settings, "REALTIME_STREAM_MAX_SECONDS", 300),
            ),
            content_type="text/event-stream",
        )
        response["Cache-Control"] = "no-cache"
        response["X-Accel-Buffering"] = "no"
        return response
