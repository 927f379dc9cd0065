# clinic_core/encounters/constants.py
from django.db import models


class EncounterStatus(models.TextChoices):
    CREATED = "created", "Created"
    PRECONSULT_IN_PROGRESS = "preconsult_in_progress", "Pre-consultation in progress"
    PRECONSULT_READY = "preconsult_ready", "Pre-consultation ready"
    CONSULTATION_IN_PROGRESS = "consultation_in_progress", "Consultation in progress"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class EncounterMode(models.TextChoices):
    SOLO = "solo", "Solo"
    ASSISTED = "assisted", "Assisted"


TERMINAL_STATUSES = frozenset({EncounterStatus.COMPLETED, EncounterStatus.CANCELLED})

ACTIVE_STATUSES = tuple(s for s in EncounterStatus.values if s not in TERMINAL_STATUSES)

STATUS_REASON_MAX_LENGTH = 500
