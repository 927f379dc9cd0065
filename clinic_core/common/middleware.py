# clinic_core/common/middleware.py
from __future__ import annotations

from typing import Optional

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

from clinic_core.common.api.exceptions import build_error_envelope
from clinic_core.common.scope import INVALID_SCOPE_MSG, MISSING_SCOPE_MSG, Scope, parse_uuid


class TenantFacilityScopeMiddleware(MiddlewareMixin):
    """
    Enforces tenant/facility scope for API requests.

    Behavior:
      - Enforced under /api/v1/.
      - BOTH headers are required (400 if missing or malformed).
      - The user must be an active team member of the facility (403 otherwise).
      - Docs/schema/admin endpoints are public.
      - On success -> attaches request.scope, request.tenant_id, request.facility_id

    Scope is never read from session or globals; every service call receives
    it explicitly from the view.
    """

    TENANT_META_KEYS = ("HTTP_X_TENANT_ID",)
    FACILITY_META_KEYS = ("HTTP_X_FACILITY_ID",)

    ENFORCED_PREFIXES = ("/api/v1/",)

    PUBLIC_PATH_PREFIXES = (
        "/admin/",
        "/api/docs/",
        "/api/schema/",
    )

    ALLOW_NO_SCOPE_EXACT_PATHS = ("/api/v1/",)

    def _starts_with_any(self, path: str, prefixes: tuple[str, ...]) -> bool:
        return any(path.startswith(p) for p in prefixes)

    def _get_meta_first(self, request, keys: tuple[str, ...]) -> Optional[str]:
        for k in keys:
            v = request.META.get(k)
            if v:
                return v
        return None

    def _json_error(self, request, *, status_code: int, code: str, message: str) -> JsonResponse:
        return JsonResponse(
            build_error_envelope(request=request, code=code, message=message, details=None),
            status=status_code,
        )

    def process_request(self, request):
        request.scope = None
        request.tenant_id = None
        request.facility_id = None

        path = getattr(request, "path", "") or ""

        if self._starts_with_any(path, self.PUBLIC_PATH_PREFIXES):
            return None

        if not self._starts_with_any(path, self.ENFORCED_PREFIXES):
            return None

        if path in self.ALLOW_NO_SCOPE_EXACT_PATHS:
            return None

        # Unauthenticated requests are rejected later by DRF (401/403).
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return None

        tenant_raw = self._get_meta_first(request, self.TENANT_META_KEYS)
        facility_raw = self._get_meta_first(request, self.FACILITY_META_KEYS)

        if not tenant_raw or not facility_raw:
            return self._json_error(request, status_code=400, code="validation_error", message=MISSING_SCOPE_MSG)

        tenant_id = parse_uuid(tenant_raw)
        facility_id = parse_uuid(facility_raw)
        if not tenant_id or not facility_id:
            return self._json_error(request, status_code=400, code="validation_error", message=INVALID_SCOPE_MSG)

        from clinic_core.team import selectors as team_selectors

        if not team_selectors.is_user_member_of_facility(
            user_id=user.id, tenant_id=tenant_id, facility_id=facility_id
        ):
            return self._json_error(
                request,
                status_code=403,
                code="permission_denied",
                message="You do not have access to the selected facility.",
            )

        request.scope = Scope(tenant_id=tenant_id, facility_id=facility_id)
        request.tenant_id = tenant_id
        request.facility_id = facility_id
        return None
