# clinic_core/team/models.py
import uuid

from django.conf import settings
from django.db import models

from clinic_core.facilities.models import Facility
from clinic_core.tenants.models import Tenant


class JobTitle(models.TextChoices):
    MEDECIN = "medecin", "Médecin"
    INFIRMIER = "infirmier", "Infirmier(ère)"
    AIDE_SOIGNANT = "aide_soignant", "Aide-soignant(e)"
    ASSISTANT_MEDICAL = "assistant_medical", "Assistant(e) médical(e)"
    SECRETAIRE = "secretaire", "Secrétaire médical(e)"
    KINESITHERAPEUTE = "kinesitherapeute", "Kinésithérapeute"
    PHARMACIEN = "pharmacien", "Pharmacien(ne)"
    SAGE_FEMME = "sage_femme", "Sage-femme"
    PSYCHOLOGUE = "psychologue", "Psychologue"
    DIETETICIEN = "dieteticien", "Diététicien(ne)"
    ORTHOPHONISTE = "orthophoniste", "Orthophoniste"
    COORDINATEUR = "coordinateur", "Coordinateur(rice)"
    AUTRE = "autre", "Autre"


class TeamMember(models.Model):
    """
    A staff member of one facility.

    This is also the facility membership record: a user may act inside a
    (tenant, facility) scope only through an active TeamMember row.
    Capabilities are derived from job_title (see team.capabilities), plus
    any extra_capabilities granted by the structure administrator.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT, related_name="team_members")
    facility = models.ForeignKey(Facility, on_delete=models.PROTECT, related_name="team_members")

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="team_memberships",
    )

    job_title = models.CharField(max_length=32, choices=JobTitle.choices, default=JobTitle.AUTRE)
    specialty = models.CharField(max_length=64, blank=True, default="")

    # e.g. ["assistant"] for a doctor-supervised intern
    extra_capabilities = models.JSONField(default=list, blank=True)

    is_active = models.BooleanField(default=True, db_index=True)
    is_available = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "team_members"
        constraints = [
            models.UniqueConstraint(fields=["facility", "user"], name="uq_team_member_facility_user"),
        ]
        indexes = [
            models.Index(fields=["tenant", "facility", "is_active"]),
            models.Index(fields=["tenant", "facility", "job_title"]),
        ]

    def __str__(self) -> str:
        return f"TeamMember({self.user_id}, {self.job_title})"
