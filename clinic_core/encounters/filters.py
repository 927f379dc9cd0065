# clinic_core/encounters/filters.py
import django_filters

from clinic_core.encounters.constants import ACTIVE_STATUSES, EncounterMode, EncounterStatus
from clinic_core.encounters.models import Encounter


class EncounterFilter(django_filters.FilterSet):
    status = django_filters.ChoiceFilter(choices=EncounterStatus.choices)
    mode = django_filters.ChoiceFilter(choices=EncounterMode.choices)
    patient_id = django_filters.UUIDFilter(field_name="patient_id")
    practitioner_id = django_filters.UUIDFilter(field_name="assigned_practitioner_id")
    created_after = django_filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="gte")
    created_before = django_filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="lt")
    active = django_filters.BooleanFilter(method="filter_active")

    class Meta:
        model = Encounter
        fields = ["status", "mode"]

    def filter_active(self, queryset, name, value):
        if value is None:
            return queryset
        if value:
            return queryset.filter(status__in=ACTIVE_STATUSES)
        return queryset.exclude(status__in=ACTIVE_STATUSES)
