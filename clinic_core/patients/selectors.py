# clinic_core/patients/selectors.py
from __future__ import annotations

from uuid import UUID

from clinic_core.common.errors import NotFoundError
from clinic_core.patients.models import Patient


def get_patient(*, tenant_id: UUID, facility_id: UUID, patient_id: UUID) -> Patient:
    patient = Patient.objects.filter(id=patient_id, tenant_id=tenant_id, facility_id=facility_id).first()
    if patient is None:
        raise NotFoundError("Patient not found in this facility.", field="patient_id")
    return patient
