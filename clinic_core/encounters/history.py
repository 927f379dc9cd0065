# clinic_core/encounters/history.py
"""
Status History Recorder.

Append-only: `record` inserts exactly one row and nothing here updates or
deletes. Timestamps are strictly increasing per encounter; if the clock has
not moved past the previous entry (fast successive transitions, clock skew),
the new entry is placed 1 microsecond after it.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Optional

from django.db.models import QuerySet
from django.utils import timezone

from clinic_core.encounters.models import Encounter, EncounterStatusHistoryEntry

TICK = timedelta(microseconds=1)


def record(
    *,
    encounter: Encounter,
    from_status: Optional[str],
    to_status: str,
    actor_user_id: int | None,
    reason: str = "",
) -> EncounterStatusHistoryEntry:
    """
    Append one entry. Call inside the transaction that changed the status,
    after the encounter row is locked, so concurrent writers are serialized.
    """
    changed_at = timezone.now()

    last = (
        EncounterStatusHistoryEntry.objects.filter(encounter_id=encounter.id)
        .order_by("-changed_at")
        .values_list("changed_at", flat=True)
        .first()
    )
    if last is not None and changed_at <= last:
        changed_at = last + TICK

    return EncounterStatusHistoryEntry.objects.create(
        tenant_id=encounter.tenant_id,
        facility_id=encounter.facility_id,
        encounter=encounter,
        from_status=from_status,
        to_status=to_status,
        changed_by_id=actor_user_id,
        changed_at=changed_at,
        reason=reason or "",
        encounter_version=encounter.version,
    )


def history(*, tenant_id, facility_id, encounter_id) -> QuerySet[EncounterStatusHistoryEntry]:
    """Entries newest first. A fresh, lazily evaluated queryset on every call."""
    return EncounterStatusHistoryEntry.objects.filter(
        tenant_id=tenant_id,
        facility_id=facility_id,
        encounter_id=encounter_id,
    ).order_by("-changed_at", "-id")
