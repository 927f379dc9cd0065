# clinic_core/conftest.py
import pytest
from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from rest_framework.test import APIClient

from clinic_core.facilities.models import Facility
from clinic_core.patients.models import Patient
from clinic_core.team.models import JobTitle, TeamMember
from clinic_core.tenants.models import Tenant


def scope_headers(tenant, facility):
    """
    Scope headers read by the scope resolver.
    DRF test client requires HTTP_ prefix.
    """
    return {
        "HTTP_X_TENANT_ID": str(tenant.id),
        "HTTP_X_FACILITY_ID": str(facility.id),
    }


@pytest.fixture
def tenant(db):
    return Tenant.objects.create(code="cabinet-paris", name="Cabinet Paris 11")


@pytest.fixture
def facility(db, tenant):
    return Facility.objects.create(tenant=tenant, code="main", name="Main Site")


@pytest.fixture
def other_tenant(db):
    return Tenant.objects.create(code="other-tenant", name="Other Tenant")


@pytest.fixture
def other_facility(db, other_tenant):
    return Facility.objects.create(tenant=other_tenant, code="other", name="Other Site")


@pytest.fixture
def make_member(db, tenant, facility):
    """
    Create a user + team membership of `facility`.
    `group` is the API role (Django Group); `job_title` drives capabilities.
    """
    User = get_user_model()

    def _make(username, job_title, *, group=None, at_facility=None, **extra):
        fac = at_facility or facility
        user = User.objects.create_user(username=username, password="testpass", is_active=True)
        if group:
            g, _ = Group.objects.get_or_create(name=group)
            user.groups.add(g)
        return TeamMember.objects.create(
            tenant=fac.tenant,
            facility=fac,
            user=user,
            job_title=job_title,
            **extra,
        )

    return _make


@pytest.fixture
def doctor(make_member):
    return make_member("dr.martin", JobTitle.MEDECIN, group="DOCTOR")


@pytest.fixture
def assistant(make_member):
    return make_member("ide.leroy", JobTitle.INFIRMIER, group="ASSISTANT")


@pytest.fixture
def secretary(make_member):
    return make_member("accueil.dupont", JobTitle.SECRETAIRE, group="RECEPTION")


@pytest.fixture
def user(doctor):
    return doctor.user


@pytest.fixture
def client_for():
    def _client(member):
        c = APIClient()
        c.force_authenticate(user=member.user)
        return c

    return _client


@pytest.fixture
def api_client(client_for, doctor):
    return client_for(doctor)


@pytest.fixture
def make_patient(db, tenant, facility):
    counter = {"n": 0}

    def _make(full_name="Test Patient", *, at_facility=None):
        fac = at_facility or facility
        counter["n"] += 1
        return Patient.objects.create(
            tenant_id=fac.tenant_id,
            facility_id=fac.id,
            full_name=full_name,
            mrn=f"MRN-{counter['n']:04d}",
        )

    return _make


@pytest.fixture
def patient(make_patient):
    return make_patient("Jeanne Moreau")


@pytest.fixture
def encounter(tenant, facility, patient, doctor):
    """Solo encounter created through the service (consultation already started)."""
    from clinic_core.encounters.services import EncounterService

    return EncounterService.create(
        tenant_id=tenant.id,
        facility_id=facility.id,
        patient_id=patient.id,
        actor_user_id=doctor.user_id,
    )


@pytest.fixture(autouse=True)
def _fresh_broker(monkeypatch):
    """Each test gets its own in-process broker."""
    from clinic_core.realtime import broker as broker_module
    from clinic_core.realtime import services as realtime_services
    from clinic_core.realtime.api import views as realtime_views

    fresh = broker_module.ChangeBroker()
    monkeypatch.setattr(broker_module, "broker", fresh)
    monkeypatch.setattr(realtime_services, "broker", fresh)
    monkeypatch.setattr(realtime_views, "broker", fresh)
    return fresh
