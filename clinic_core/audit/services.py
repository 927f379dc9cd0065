# clinic_core/audit/services.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from django.db import transaction

from clinic_core.audit.models import AuditEvent

logger = logging.getLogger(__name__)


class AuditService:
    """
    Central audit writer. Call it inside the mutating transaction so the
    audit row commits (or rolls back) with the change it records.
    """

    @staticmethod
    @transaction.atomic
    def log(
        *,
        event_code: str,
        entity_type: str,
        entity_id: UUID,
        tenant_id: UUID,
        facility_id: UUID,
        actor_user_id: int | None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        event = AuditEvent.objects.create(
            tenant_id=tenant_id,
            facility_id=facility_id,
            event_code=event_code,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_user_id=actor_user_id,
            metadata=metadata or {},
        )
        logger.info(
            "audit %s",
            event_code,
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "tenant_id": str(tenant_id),
                "facility_id": str(facility_id),
                "actor_user_id": actor_user_id,
            },
        )
        return event
