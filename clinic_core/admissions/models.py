# clinic_core/admissions/models.py
from django.db import models
from django.db.models import Q
from django.utils import timezone

from clinic_core.common.models import VersionedScopedModel
from clinic_core.patients.models import Patient

REASON_MAX_LENGTH = 500


class QueueStatus(models.TextChoices):
    WAITING = "waiting", "Waiting"
    CALLED = "called", "Called"
    IN_CONSULTATION = "in_consultation", "In consultation"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class QueuePriority(models.IntegerChoices):
    URGENT = 1, "Urgent"
    HIGH = 2, "High"
    NORMAL = 3, "Normal"
    LOW = 4, "Low"


TERMINAL_QUEUE_STATUSES = frozenset({QueueStatus.COMPLETED, QueueStatus.CANCELLED})

# Forward order; a move must go strictly right (or to CANCELLED)
QUEUE_FLOW = (
    QueueStatus.WAITING,
    QueueStatus.CALLED,
    QueueStatus.IN_CONSULTATION,
    QueueStatus.COMPLETED,
)


class QueueEntry(VersionedScopedModel):
    """
    One patient's wait-for-care record at a facility.
    Never deleted: terminal entries are kept for the daily statistics.
    """
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name="queue_entries")

    priority = models.PositiveSmallIntegerField(choices=QueuePriority.choices, default=QueuePriority.NORMAL)
    arrival_time = models.DateTimeField(default=timezone.now, db_index=True)

    status = models.CharField(
        max_length=20,
        choices=QueueStatus.choices,
        default=QueueStatus.WAITING,
        db_index=True,
    )

    assigned_to = models.ForeignKey(
        "team.TeamMember",
        on_delete=models.PROTECT,
        related_name="queue_entries",
        null=True,
        blank=True,
    )

    reason = models.CharField(max_length=REASON_MAX_LENGTH)
    notes = models.TextField(blank=True, default="")

    called_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "patient_queue"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "status", "priority", "arrival_time"]),
            models.Index(fields=["tenant_id", "facility_id", "arrival_time"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(priority__gte=1) & Q(priority__lte=4),
                name="ck_patient_queue_priority_range",
            ),
        ]

    def __str__(self) -> str:
        return f"QueueEntry({self.patient_id}, p{self.priority}, {self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_QUEUE_STATUSES
