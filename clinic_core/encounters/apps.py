# clinic_core/encounters/apps.py
from django.apps import AppConfig


class EncountersConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "clinic_core.encounters"

    def ready(self):
        # in-process subscribers to encounter.transitioned
        import clinic_core.encounters.subscribers  # noqa: F401
