"""
Shared fixtures for all tests.

factory-boy factories live here so both unit/ and integration/ can import them.
"""
import json
from datetime import date, datetime
from zoneinfo import ZoneInfo

import factory
import pytest
from django.core.cache import cache
from django.test import Client

from commissions.auth import issue_token
from commissions.models import (
    Appointment,
    Commission,
    Doctor,
    Employee,
    EmployeeRole,
    FollowUpTask,
    Hospital,
    Nomination,
    Patient,
    Speciality,
    Target,
    Team,
    TeamMember,
    Visit,
    VisitSpeciality,
)

DUBAI = ZoneInfo('Asia/Dubai')
API = '/api/v1'


def dubai(year, month, day, hour=10, minute=0):
    """Aware datetime in the business timezone."""
    return datetime(year, month, day, hour, minute, tzinfo=DUBAI)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

class EmployeeFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Employee
        skip_postgeneration_save = True

    employee_code = factory.Sequence(lambda n: f'EMP{1000 + n}')
    name = factory.Sequence(lambda n: f'Employee {n}')
    email = factory.LazyAttribute(lambda o: f'{o.employee_code.lower()}@clinic.test')

    @factory.post_generation
    def roles(self, create, extracted, **kwargs):
        if not create or not extracted:
            return
        for role in extracted:
            EmployeeRole.objects.create(employee=self, role=role)


class HospitalFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Hospital

    name = factory.Sequence(lambda n: f'Hospital {n}')


class SpecialityFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Speciality

    name = factory.Sequence(lambda n: f'Speciality {n}')


class DoctorFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Doctor

    name = factory.Sequence(lambda n: f'Dr. {n}')
    hospital = factory.SubFactory(HospitalFactory)


class PatientFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Patient

    name_english = factory.Sequence(lambda n: f'Patient {n}')
    national_id = factory.Sequence(lambda n: f'85{n:08d}')
    dob = date(1985, 6, 1)


class VisitFactory(factory.django.DjangoModelFactory):
    """Pass ``specialities=N`` to attach N specialities (default 1)."""

    class Meta:
        model = Visit
        skip_postgeneration_save = True

    patient = factory.SubFactory(PatientFactory)
    hospital = factory.SubFactory(HospitalFactory)
    visit_date = factory.LazyFunction(lambda: dubai(2024, 3, 10))

    @factory.post_generation
    def specialities(self, create, extracted, **kwargs):
        if not create:
            return
        count = 1 if extracted is None else extracted
        for _ in range(count):
            VisitSpecialityFactory(visit=self)


class VisitSpecialityFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = VisitSpeciality

    visit = factory.SubFactory(VisitFactory, specialities=0)
    speciality = factory.SubFactory(SpecialityFactory)


class FollowUpTaskFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = FollowUpTask

    patient = factory.SubFactory(PatientFactory)
    assigned_to = factory.SubFactory(EmployeeFactory, roles=['coordinator'])
    status = 'pending'


class AppointmentFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Appointment

    patient = factory.SubFactory(PatientFactory)
    hospital = factory.SubFactory(HospitalFactory)
    scheduled_date = factory.LazyFunction(lambda: dubai(2024, 3, 10, 9))
    status = 'scheduled'


class CommissionFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Commission

    employee = factory.SubFactory(EmployeeFactory)
    type = Commission.TYPE_MANUAL_ADJUSTMENT
    amount = 1
    period = '2024-03-10'


class TargetFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Target

    assigned_to = factory.SubFactory(EmployeeFactory, roles=['sales'])
    type = 'monthly'
    category = 'new_patients'
    target_value = 10
    start_date = date(2024, 3, 1)
    end_date = date(2024, 3, 31)


class NominationFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Nomination

    nominated_patient_name = factory.Sequence(lambda n: f'Nominee {n}')
    phone_number = '+971500000000'


class TeamFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Team

    name = factory.Sequence(lambda n: f'Team {n}')
    leader = factory.SubFactory(EmployeeFactory, roles=['team_leader'])


class TeamMemberFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = TeamMember

    team = factory.SubFactory(TeamFactory)
    employee = factory.SubFactory(EmployeeFactory, roles=['sales'])


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _clear_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def api_client():
    """Unauthenticated Django test client."""
    return Client()


@pytest.fixture
def client_for():
    """Build a test client that sends a bearer token for the given employee."""

    def build(employee, role=None):
        return Client(HTTP_AUTHORIZATION=f'Bearer {issue_token(employee, role)}')

    return build


@pytest.fixture
def admin(db):
    return EmployeeFactory(name='Admin', roles=['admin'])


@pytest.fixture
def admin_client(admin, client_for):
    return client_for(admin)


@pytest.fixture
def sales(db):
    return EmployeeFactory(name='Sara Sales', roles=['sales'])


@pytest.fixture
def coordinator(db):
    return EmployeeFactory(name='Colin Coordinator', roles=['coordinator'])


@pytest.fixture
def hospital(db):
    return HospitalFactory(name='City Hospital')


def send(client, method, path, payload=None, **kwargs):
    """快捷方式：发 JSON 请求到 /api/v1/...，返回 (status_code, body_dict)。"""
    call = getattr(client, method.lower())
    if payload is not None:
        kwargs.update(data=json.dumps(payload), content_type='application/json')
    response = call(f'{API}{path}', **kwargs)
    body = json.loads(response.content) if response.content else None
    return response.status_code, body
