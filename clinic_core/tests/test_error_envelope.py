# clinic_core/tests/test_error_envelope.py
import pytest
from rest_framework.test import APIRequestFactory

from clinic_core.common.api.exceptions import api_exception_handler, build_error_envelope
from clinic_core.common.errors import ConcurrencyConflictError, NotFoundError, ValidationError


def _context():
    return {"request": APIRequestFactory().get("/api/v1/queue/")}


def test_envelope_shape():
    body = build_error_envelope(code="conflict", message="Conflict.", details={"a": 1})

    assert set(body["error"]) == {"code", "message", "details", "request_id"}
    assert body["error"]["request_id"]


def test_domain_error_keeps_raw_details():
    resp = api_exception_handler(ConcurrencyConflictError(expected_version=2, current_version=3), _context())

    assert resp.status_code == 409
    err = resp.data["error"]
    assert err["code"] == "concurrency_conflict"
    assert err["details"] == {"expected_version": 2, "current_version": 3}
    assert "modified by someone else" in err["message"]


def test_domain_error_without_details_has_null_details():
    resp = api_exception_handler(NotFoundError("Queue entry not found."), _context())

    assert resp.status_code == 404
    assert resp.data["error"]["message"] == "Queue entry not found."
    assert resp.data["error"]["details"] is None


def test_none_valued_details_are_dropped():
    exc = ValidationError("Bad.", field="priority", value=None)
    assert exc.details == {"field": "priority"}


def test_unhandled_error_becomes_500():
    resp = api_exception_handler(RuntimeError("boom"), _context())

    assert resp.status_code == 500
    assert resp.data["error"]["code"] == "server_error"
    assert "boom" not in resp.data["error"]["message"]


@pytest.mark.django_db
def test_serializer_errors_are_wrapped(api_client, tenant, facility):
    from clinic_core.tests.helpers import scoped

    resp = api_client.post("/api/v1/encounters/", data={}, format="json", **scoped(tenant, facility))

    assert resp.status_code == 400
    err = resp.data["error"]
    assert err["code"] == "validation_error"
    assert "patient_id" in err["details"]
