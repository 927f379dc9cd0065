# clinic_core/encounters/tests/test_encounter_api.py
import pytest

from clinic_core.tests.helpers import error_of, scoped

pytestmark = pytest.mark.django_db

URL = "/api/v1/encounters/"


def _post(client, url, tenant, facility, data=None):
    return client.post(url, data=data or {}, format="json", **scoped(tenant, facility))


def test_create_solo_encounter(api_client, tenant, facility, patient):
    resp = _post(api_client, URL, tenant, facility, {"patient_id": str(patient.id)})

    assert resp.status_code == 201
    assert resp.data["mode"] == "solo"
    assert resp.data["status"] == "consultation_in_progress"
    assert resp.data["patient_name"] == patient.full_name
    assert resp.data["version"] == 1


def test_create_assisted_encounter(api_client, tenant, facility, patient):
    resp = _post(api_client, URL, tenant, facility, {"patient_id": str(patient.id), "mode": "assisted"})

    assert resp.status_code == 201
    assert resp.data["status"] == "preconsult_in_progress"


def test_duplicate_open_encounter_is_409(api_client, tenant, facility, encounter, patient):
    resp = _post(api_client, URL, tenant, facility, {"patient_id": str(patient.id)})

    assert resp.status_code == 409
    assert error_of(resp)["code"] == "conflict"


def test_reception_cannot_create_encounters(client_for, secretary, tenant, facility, patient):
    resp = _post(client_for(secretary), URL, tenant, facility, {"patient_id": str(patient.id)})
    assert resp.status_code == 403


def test_transition_and_history(api_client, tenant, facility, encounter):
    url = f"{URL}{encounter.id}/transition/"

    resp = _post(api_client, url, tenant, facility, {"status": "completed", "reason": "done", "expected_version": 1})
    assert resp.status_code == 200
    assert resp.data["status"] == "completed"
    assert resp.data["version"] == 2
    assert resp.data["completed_at"] is not None

    hist = api_client.get(f"{URL}{encounter.id}/history/", **scoped(tenant, facility))
    assert hist.status_code == 200
    assert [h["to_status"] for h in hist.data] == ["completed", "consultation_in_progress"]
    assert hist.data[0]["from_status"] == "consultation_in_progress"
    assert hist.data[0]["reason"] == "done"
    assert hist.data[1]["from_status"] is None


def test_transition_errors_use_the_envelope(api_client, tenant, facility, encounter):
    url = f"{URL}{encounter.id}/transition/"

    backward = _post(api_client, url, tenant, facility, {"status": "preconsult_ready"})
    assert backward.status_code == 409
    err = error_of(backward)
    assert err["code"] == "transition_not_allowed"
    assert err["details"]["allowed"] == ["completed", "cancelled"]
    assert err["request_id"]

    _post(api_client, url, tenant, facility, {"status": "completed"})
    closed = _post(api_client, url, tenant, facility, {"status": "cancelled"})
    assert closed.status_code == 409
    assert error_of(closed)["code"] == "terminal_state"


def test_stale_expected_version_is_409(api_client, tenant, facility, encounter):
    url = f"{URL}{encounter.id}/transition/"

    resp = _post(api_client, url, tenant, facility, {"status": "completed", "expected_version": 3})

    assert resp.status_code == 409
    assert error_of(resp)["code"] == "concurrency_conflict"
    assert error_of(resp)["details"]["current_version"] == 1


def test_assistant_completing_is_403_with_capability(client_for, assistant, tenant, facility, encounter):
    resp = _post(client_for(assistant), f"{URL}{encounter.id}/transition/", tenant, facility, {"status": "completed"})

    assert resp.status_code == 403
    err = error_of(resp)
    assert err["code"] == "authorization_error"
    assert err["details"]["capability"] == "doctor"


def test_list_filters(api_client, tenant, facility, encounter, make_patient):
    other = make_patient("Paul Durand")
    _post(api_client, URL, tenant, facility, {"patient_id": str(other.id), "mode": "assisted"})

    everything = api_client.get(URL, **scoped(tenant, facility))
    assert everything.data["count"] == 2

    assisted = api_client.get(URL, {"mode": "assisted"}, **scoped(tenant, facility))
    assert assisted.data["count"] == 1
    assert assisted.data["results"][0]["patient_name"] == "Paul Durand"

    by_patient = api_client.get(URL, {"patient_id": str(encounter.patient_id)}, **scoped(tenant, facility))
    assert [r["id"] for r in by_patient.data["results"]] == [str(encounter.id)]


def test_list_invalid_filter_is_400(api_client, tenant, facility):
    resp = api_client.get(URL, {"status": "teleported"}, **scoped(tenant, facility))

    assert resp.status_code == 400
    assert error_of(resp)["code"] == "validation_error"


def test_open_returns_existing_encounter(api_client, tenant, facility, patient):
    first = _post(api_client, f"{URL}open/", tenant, facility, {"patient_id": str(patient.id)})
    second = _post(api_client, f"{URL}open/", tenant, facility, {"patient_id": str(patient.id)})

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.data["id"] == first.data["id"]


def test_from_queue(api_client, client_for, secretary, tenant, facility, patient):
    desk = client_for(secretary)
    entry = _post(desk, "/api/v1/queue/", tenant, facility, {"patient_id": str(patient.id), "reason": "cough"}).data

    resp = _post(api_client, f"{URL}from-queue/", tenant, facility, {"queue_entry_id": entry["id"]})

    assert resp.status_code == 201
    assert str(resp.data["queue_entry_id"]) == entry["id"]
    assert str(resp.data["patient_id"]) == str(patient.id)


def test_mode_switch_endpoint(api_client, tenant, facility, encounter):
    resp = _post(api_client, f"{URL}{encounter.id}/mode/", tenant, facility, {"mode": "assisted", "expected_version": 1})

    assert resp.status_code == 200
    assert resp.data["mode"] == "assisted"
    assert resp.data["status"] == "consultation_in_progress"

    same = _post(api_client, f"{URL}{encounter.id}/mode/", tenant, facility, {"mode": "assisted"})
    assert same.status_code == 400
    assert error_of(same)["details"]["field"] == "mode"


def test_links_endpoint_requires_an_id(api_client, tenant, facility, encounter):
    resp = _post(api_client, f"{URL}{encounter.id}/links/", tenant, facility, {})
    assert resp.status_code == 400


def test_assign_assistant_to_encounter(api_client, tenant, facility, encounter, assistant, secretary):
    url = f"{URL}{encounter.id}/assign/"

    ok = _post(api_client, url, tenant, facility, {"role": "assistant", "team_member_id": str(assistant.id)})
    assert ok.status_code == 200
    assert str(ok.data["assigned_assistant_id"]) == str(assistant.id)

    refused = _post(api_client, url, tenant, facility, {"role": "assistant", "team_member_id": str(secretary.id)})
    assert refused.status_code == 403
    assert error_of(refused)["details"]["capability"] == "assistant"

    cleared = _post(api_client, f"{URL}{encounter.id}/unassign/", tenant, facility, {"role": "assistant"})
    assert cleared.status_code == 200
    assert cleared.data["assigned_assistant_id"] is None


def test_encounter_of_other_facility_is_404(api_client, tenant, facility, other_facility, make_member, client_for, make_patient):
    from clinic_core.encounters.services import EncounterService
    from clinic_core.team.models import JobTitle

    outsider_doctor = make_member("dr.other", JobTitle.MEDECIN, group="DOCTOR", at_facility=other_facility)
    outsider_patient = make_patient("Elsewhere", at_facility=other_facility)
    foreign = EncounterService.create(
        tenant_id=other_facility.tenant_id,
        facility_id=other_facility.id,
        patient_id=outsider_patient.id,
        actor_user_id=outsider_doctor.user_id,
    )

    resp = api_client.get(f"{URL}{foreign.id}/", **scoped(tenant, facility))

    assert resp.status_code == 404
