# clinic_core/admissions/tests/test_queue_api.py
import pytest

from clinic_core.admissions.models import QueueEntry
from clinic_core.team.models import JobTitle
from clinic_core.tests.helpers import error_of, scoped

pytestmark = pytest.mark.django_db

URL = "/api/v1/queue/"


@pytest.fixture
def desk(client_for, secretary):
    return client_for(secretary)


def _enqueue(client, tenant, facility, patient, priority=3, reason="consultation"):
    return client.post(
        URL,
        data={"patient_id": str(patient.id), "priority": priority, "reason": reason},
        format="json",
        **scoped(tenant, facility),
    )


def test_reception_can_enqueue(desk, tenant, facility, patient):
    resp = _enqueue(desk, tenant, facility, patient, priority=1, reason="chest pain")

    assert resp.status_code == 201
    assert resp.data["status"] == "waiting"
    assert resp.data["priority_label"] == "Urgent"
    assert resp.data["patient_name"] == patient.full_name
    assert resp.data["version"] == 1
    assert resp.data["wait"]["label"] == "0 min"


def test_enqueue_out_of_range_priority_is_400(desk, tenant, facility, patient):
    resp = _enqueue(desk, tenant, facility, patient, priority=7)

    assert resp.status_code == 400
    err = error_of(resp)
    assert err["code"] == "validation_error"
    assert err["details"]["field"] == "priority"
    assert QueueEntry.objects.count() == 0


def test_readonly_member_cannot_enqueue(client_for, make_member, tenant, facility, patient):
    viewer = make_member("viewer", JobTitle.AUTRE)

    resp = _enqueue(client_for(viewer), tenant, facility, patient)

    assert resp.status_code == 403


def test_list_is_paginated_in_serve_order(desk, tenant, facility, make_patient):
    _enqueue(desk, tenant, facility, make_patient("Low"), priority=4)
    _enqueue(desk, tenant, facility, make_patient("Urgent"), priority=1)
    _enqueue(desk, tenant, facility, make_patient("Normal"), priority=3)

    resp = desk.get(URL, **scoped(tenant, facility))

    assert resp.status_code == 200
    assert resp.data["count"] == 3
    assert [r["priority"] for r in resp.data["results"]] == [1, 3, 4]


def test_list_filters_by_status(desk, tenant, facility, make_patient):
    _enqueue(desk, tenant, facility, make_patient("A"))
    called = _enqueue(desk, tenant, facility, make_patient("B")).data
    desk.post(f"{URL}{called['id']}/advance/", data={"status": "called"}, format="json", **scoped(tenant, facility))

    resp = desk.get(URL, {"status": "called"}, **scoped(tenant, facility))

    assert resp.data["count"] == 1
    assert resp.data["results"][0]["id"] == called["id"]


def test_next_returns_most_urgent_or_204(desk, tenant, facility, make_patient):
    assert desk.get(f"{URL}next/", **scoped(tenant, facility)).status_code == 204

    _enqueue(desk, tenant, facility, make_patient("Routine"), priority=3, reason="follow-up")
    urgent = _enqueue(desk, tenant, facility, make_patient("Urgent"), priority=1, reason="chest pain").data

    resp = desk.get(f"{URL}next/", **scoped(tenant, facility))
    assert resp.status_code == 200
    assert resp.data["id"] == urgent["id"]
    assert resp.data["status"] == "waiting"


def test_advance_with_stale_version_is_409(desk, tenant, facility, patient):
    entry = _enqueue(desk, tenant, facility, patient).data
    url = f"{URL}{entry['id']}/advance/"

    ok = desk.post(url, data={"status": "called", "expected_version": 1}, format="json", **scoped(tenant, facility))
    assert ok.status_code == 200
    assert ok.data["version"] == 2

    stale = desk.post(
        url, data={"status": "in_consultation", "expected_version": 1}, format="json", **scoped(tenant, facility)
    )
    assert stale.status_code == 409
    err = error_of(stale)
    assert err["code"] == "concurrency_conflict"
    assert err["details"] == {"expected_version": 1, "current_version": 2}


def test_backward_advance_is_409(desk, tenant, facility, patient):
    entry = _enqueue(desk, tenant, facility, patient).data
    url = f"{URL}{entry['id']}/advance/"
    desk.post(url, data={"status": "called"}, format="json", **scoped(tenant, facility))

    resp = desk.post(url, data={"status": "waiting"}, format="json", **scoped(tenant, facility))

    assert resp.status_code == 409
    assert error_of(resp)["code"] == "transition_not_allowed"


def test_patch_updates_priority(desk, tenant, facility, patient):
    entry = _enqueue(desk, tenant, facility, patient, priority=3).data

    resp = desk.patch(f"{URL}{entry['id']}/", data={"priority": 2}, format="json", **scoped(tenant, facility))

    assert resp.status_code == 200
    assert resp.data["priority"] == 2
    assert resp.data["version"] == 2


def test_retrieve_unknown_entry_is_404(desk, tenant, facility):
    resp = desk.get(f"{URL}00000000-0000-0000-0000-000000000000/", **scoped(tenant, facility))

    assert resp.status_code == 404
    assert error_of(resp)["code"] == "not_found"


def test_stats_endpoint(desk, tenant, facility, patient):
    _enqueue(desk, tenant, facility, patient)

    resp = desk.get(f"{URL}stats/", **scoped(tenant, facility))

    assert resp.status_code == 200
    assert resp.data == {"waiting": 1, "in_consultation": 0, "completed_today": 0, "average_wait_minutes": 0}


def test_assign_doctor_to_queue_entry(desk, tenant, facility, patient, doctor, secretary):
    entry = _enqueue(desk, tenant, facility, patient).data

    resp = desk.post(
        f"{URL}{entry['id']}/assign/",
        data={"role": "practitioner", "team_member_id": str(doctor.id)},
        format="json",
        **scoped(tenant, facility),
    )
    assert resp.status_code == 200
    assert str(resp.data["assigned_to_id"]) == str(doctor.id)

    refused = desk.post(
        f"{URL}{entry['id']}/assign/",
        data={"role": "practitioner", "team_member_id": str(secretary.id)},
        format="json",
        **scoped(tenant, facility),
    )
    assert refused.status_code == 403
    assert error_of(refused)["details"]["capability"] == "doctor"
