# clinic_core/team/selectors.py
from __future__ import annotations

from typing import Optional
from uuid import UUID

from django.db.models import QuerySet

from clinic_core.common.errors import NotFoundError
from clinic_core.team.capabilities import capability_of
from clinic_core.team.models import TeamMember


def is_user_member_of_facility(*, user_id: int, tenant_id: UUID, facility_id: UUID) -> bool:
    """
    Validate user -> (tenant, facility) membership.
    This is the single source of truth used by scope enforcement.
    """
    return TeamMember.objects.filter(
        is_active=True,
        tenant_id=tenant_id,
        facility_id=facility_id,
        user_id=user_id,
    ).exists()


def team_members_qs(*, tenant_id: UUID, facility_id: UUID) -> QuerySet[TeamMember]:
    return TeamMember.objects.filter(tenant_id=tenant_id, facility_id=facility_id)


def get_team_member(*, tenant_id: UUID, facility_id: UUID, team_member_id: UUID) -> TeamMember:
    member = team_members_qs(tenant_id=tenant_id, facility_id=facility_id).filter(id=team_member_id).first()
    if member is None:
        raise NotFoundError("Team member not found in this facility.", field="team_member_id")
    return member


def member_for_user(*, tenant_id: UUID, facility_id: UUID, user_id: Optional[int]) -> Optional[TeamMember]:
    if user_id is None:
        return None
    return team_members_qs(tenant_id=tenant_id, facility_id=facility_id).filter(user_id=user_id).first()


def list_team_members(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    capability: Optional[str] = None,
    available_only: bool = False,
) -> list[TeamMember]:
    qs = team_members_qs(tenant_id=tenant_id, facility_id=facility_id).filter(is_active=True)
    if available_only:
        qs = qs.filter(is_available=True)

    members = list(qs.select_related("user").order_by("job_title", "created_at"))
    if capability:
        members = [m for m in members if capability in capability_of(m)]
    return members
