# clinic_core/common/models.py
from __future__ import annotations

import uuid
from django.db import models


class TimeStampedModel(models.Model):
    """
    Standard timestamps for all entities.
    """
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class ScopedModel(TimeStampedModel):
    """
    Enforces multi-tenant + multi-facility scope at the data layer.
    (Middleware enforces request scope; this enforces persistence scope.)
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    tenant_id = models.UUIDField(db_index=True)
    facility_id = models.UUIDField(db_index=True)

    class Meta:
        abstract = True


class VersionedScopedModel(ScopedModel):
    """
    Scoped row with a monotonic version used for optimistic concurrency.

    Services bump `version` on every accepted mutation with a compare-and-swap
    (UPDATE ... WHERE version = <read version>), so two writers that read the
    same version can never both win.
    """
    version = models.PositiveIntegerField(default=1)

    class Meta:
        abstract = True
