# clinic_core/common/permissions.py

from __future__ import annotations

from typing import Set

from rest_framework.permissions import BasePermission, SAFE_METHODS

from clinic_core.common.scope import require_scope

# Group/role names (Django auth Group names recommended)
ROLE_ADMIN = "ADMIN"
ROLE_DOCTOR = "DOCTOR"
ROLE_ASSISTANT = "ASSISTANT"
ROLE_RECEPTION = "RECEPTION"
ROLE_READONLY = "READONLY"

ALL_ROLES = {ROLE_ADMIN, ROLE_DOCTOR, ROLE_ASSISTANT, ROLE_RECEPTION, ROLE_READONLY}
CLINICAL_ROLES = {ROLE_ADMIN, ROLE_DOCTOR, ROLE_ASSISTANT}
FRONT_DESK_ROLES = {ROLE_ADMIN, ROLE_DOCTOR, ROLE_ASSISTANT, ROLE_RECEPTION}


def _user_roles(user) -> Set[str]:
    """
    Resolve roles from Django groups (user.groups).

    Default behavior:
    - Superuser is treated as ADMIN.
    - If an authenticated user has no groups, treat them as READONLY.
    """
    roles: Set[str] = set()

    if not user or not getattr(user, "is_authenticated", False):
        return roles

    if getattr(user, "is_superuser", False):
        roles.add(ROLE_ADMIN)
        return roles

    if hasattr(user, "groups"):
        roles.update(user.groups.values_list("name", flat=True))

    if not roles:
        roles.add(ROLE_READONLY)

    return roles


def ensure_scope_on_request(request) -> bool:
    """
    Resolve the scope headers (400 if missing/malformed) and verify the user
    is an active team member of that facility.

    Returns False for non-members -> DRF returns 403.
    """
    from clinic_core.team import selectors as team_selectors

    scope = require_scope(request)
    if not team_selectors.is_user_member_of_facility(
        user_id=request.user.id,
        tenant_id=scope.tenant_id,
        facility_id=scope.facility_id,
    ):
        return False

    request.scope = scope
    return True


class BaseRolePermission(BasePermission):
    """
    Base permission class for role-based access control.

    Key behavior:
    - Requires authentication.
    - Requires scope headers and facility membership.
    - ADMIN bypass.
    - Uses allowed_roles_per_action for strict RBAC.
    - Unknown SAFE actions fall back to list/retrieve.
    """
    message = "You do not have permission to perform this action."

    allowed_roles_per_action: dict[str, set[str]] = {
        "list": ALL_ROLES,
        "retrieve": ALL_ROLES,
    }

    def has_permission(self, request, view) -> bool:
        user = request.user
        if not user or not getattr(user, "is_authenticated", False):
            return False

        if not ensure_scope_on_request(request):
            self.message = "You do not have access to the selected facility."
            return False

        roles = _user_roles(user)

        if ROLE_ADMIN in roles:
            return True

        action = getattr(view, "action", None)
        allowed = self.allowed_roles_per_action.get(action)

        if allowed is None and request.method in SAFE_METHODS:
            kwargs = getattr(view, "kwargs", {}) or {}
            read_action = "retrieve" if "pk" in kwargs else "list"
            allowed = self.allowed_roles_per_action.get(read_action)

        if allowed is not None:
            return bool(roles & allowed)

        # Unknown action => deny by default (safer)
        return False

    def has_object_permission(self, request, view, obj) -> bool:
        return self.has_permission(request, view)


class QueuePermission(BaseRolePermission):
    """Permissions for the admission queue"""
    allowed_roles_per_action = {
        "list": ALL_ROLES,
        "retrieve": ALL_ROLES,
        "next": ALL_ROLES,
        "stats": ALL_ROLES,
        "create": FRONT_DESK_ROLES,
        "partial_update": FRONT_DESK_ROLES,
        "advance": FRONT_DESK_ROLES,
        "assign": FRONT_DESK_ROLES,
        "unassign": FRONT_DESK_ROLES,
    }


class EncounterPermission(BaseRolePermission):
    """Permissions for Encounter management"""
    allowed_roles_per_action = {
        "list": ALL_ROLES,
        "retrieve": ALL_ROLES,
        "history": ALL_ROLES,
        "create": CLINICAL_ROLES,
        "from_queue": CLINICAL_ROLES,
        "open": CLINICAL_ROLES,
        "transition": CLINICAL_ROLES,
        "mode": CLINICAL_ROLES,
        "assign": CLINICAL_ROLES,
        "unassign": CLINICAL_ROLES,
        "links": CLINICAL_ROLES,
    }


class TeamPermission(BaseRolePermission):
    """Read-only team directory"""
    allowed_roles_per_action = {
        "list": ALL_ROLES,
        "retrieve": ALL_ROLES,
    }


class RealtimePermission(BaseRolePermission):
    """Change feed, resync snapshot and event stream"""
    allowed_roles_per_action = {
        "changes": ALL_ROLES,
        "snapshot": ALL_ROLES,
        "stream": ALL_ROLES,
    }


class AuditPermission(BaseRolePermission):
    """Permissions for Audit log access"""
    allowed_roles_per_action = {
        "list": {ROLE_ADMIN},
    }
