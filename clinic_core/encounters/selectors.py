# clinic_core/encounters/selectors.py
from __future__ import annotations

from typing import Optional
from uuid import UUID

from django.db.models import QuerySet

from clinic_core.common.errors import NotFoundError
from clinic_core.encounters.constants import ACTIVE_STATUSES
from clinic_core.encounters.models import Encounter


def encounters_qs(*, tenant_id: UUID, facility_id: UUID) -> QuerySet[Encounter]:
    return Encounter.objects.filter(tenant_id=tenant_id, facility_id=facility_id)


def get_encounter(*, tenant_id: UUID, facility_id: UUID, encounter_id: UUID) -> Encounter:
    enc = (
        encounters_qs(tenant_id=tenant_id, facility_id=facility_id)
        .select_related("patient")
        .filter(id=encounter_id)
        .first()
    )
    if enc is None:
        raise NotFoundError("Encounter not found.", field="encounter_id")
    return enc


def active_encounter_for_patient(*, tenant_id: UUID, facility_id: UUID, patient_id: UUID) -> Optional[Encounter]:
    return (
        encounters_qs(tenant_id=tenant_id, facility_id=facility_id)
        .filter(patient_id=patient_id, status__in=ACTIVE_STATUSES)
        .first()
    )


def active_encounters_qs(*, tenant_id: UUID, facility_id: UUID) -> QuerySet[Encounter]:
    return (
        encounters_qs(tenant_id=tenant_id, facility_id=facility_id)
        .filter(status__in=ACTIVE_STATUSES)
        .select_related("patient")
        .order_by("created_at")
    )


def list_encounters(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    status: Optional[str] = None,
    patient_id: Optional[UUID] = None,
    active_only: bool = False,
) -> QuerySet[Encounter]:
    qs = encounters_qs(tenant_id=tenant_id, facility_id=facility_id).select_related("patient")
    if status:
        qs = qs.filter(status=status)
    if patient_id:
        qs = qs.filter(patient_id=patient_id)
    if active_only:
        qs = qs.filter(status__in=ACTIVE_STATUSES)
    return qs.order_by("-created_at")
