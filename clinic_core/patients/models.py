# clinic_core/patients/models.py
from django.db import models

from clinic_core.common.models import ScopedModel


class Patient(ScopedModel):
    """
    Minimal patient identity referenced by the queue and encounters.
    Demographics and records management live elsewhere.
    """
    full_name = models.CharField(max_length=255)

    # facility-local medical record number
    mrn = models.CharField(max_length=64)

    class Meta:
        db_table = "patients_patient"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "facility_id", "mrn"],
                name="uq_patient_scope_mrn",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "full_name"]),
        ]

    def __str__(self) -> str:
        return f"{self.full_name} ({self.mrn})"
