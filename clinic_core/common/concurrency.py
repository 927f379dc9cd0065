# clinic_core/common/concurrency.py
"""
Optimistic concurrency helpers for VersionedScopedModel rows.

Usage inside a @transaction.atomic service method:

    obj = lock_versioned(Encounter.objects, tenant_id=..., facility_id=..., pk=...,
                         expected_version=expected_version, label="Encounter")
    ...
    compare_and_swap(obj, status=new_status, completed_at=ts)
"""
from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from django.db.models import F, QuerySet
from django.utils import timezone

from clinic_core.common.errors import ConcurrencyConflictError, NotFoundError


def lock_versioned(
    qs: QuerySet,
    *,
    tenant_id: UUID,
    facility_id: UUID,
    pk: UUID,
    expected_version: Optional[int] = None,
    label: str = "Record",
):
    obj = qs.select_for_update().filter(id=pk, tenant_id=tenant_id, facility_id=facility_id).first()
    if obj is None:
        raise NotFoundError(f"{label} not found.")

    if expected_version is not None and int(expected_version) != obj.version:
        raise ConcurrencyConflictError(
            expected_version=int(expected_version),
            current_version=obj.version,
        )
    return obj


def compare_and_swap(obj, **fields: Any) -> None:
    """
    Write `fields` only if the row still carries the version `obj` was read at,
    bumping the version by one. Updates `obj` in place on success.
    """
    read_version = obj.version
    ts = timezone.now()

    updated = type(obj).objects.filter(pk=obj.pk, version=read_version).update(
        version=F("version") + 1,
        updated_at=ts,
        **fields,
    )
    if updated != 1:
        current = type(obj).objects.filter(pk=obj.pk).values_list("version", flat=True).first()
        raise ConcurrencyConflictError(expected_version=read_version, current_version=current)

    for name, value in fields.items():
        setattr(obj, name, value)
    obj.version = read_version + 1
    obj.updated_at = ts
