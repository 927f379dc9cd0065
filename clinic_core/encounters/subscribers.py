# clinic_core/encounters/subscribers.py
import logging

from clinic_core.common.events import subscribe
from clinic_core.encounters.services import TRANSITIONED_EVENT

logger = logging.getLogger("clinic_core.notifications")


@subscribe(TRANSITIONED_EVENT)
def on_encounter_transitioned(payload: dict) -> None:
    # Hand-off point for patient/staff messaging; delivery lives outside this service.
    logger.info(
        "encounter %s -> %s",
        payload.get("from"),
        payload.get("to"),
        extra={
            "encounter_id": payload["encounter_id"],
            "facility_id": payload["facility_id"],
            "version": payload.get("version"),
        },
    )
