from decimal import Decimal

import pytest
from rest_framework.test import APIClient

from accounts.context import RequestContext
from accounts.models import Role, User
from clientsetup.models import Project, Tower, Unit
from salelead.models import Lead


def _make_user(username, role, **extra):
    return User.objects.create_user(
        username=username,
        password="Str0ngPass!9",
        email=f"{username}@example.com",
        role=role,
        **extra,
    )


@pytest.fixture
def master(db):
    return _make_user("master", Role.MASTER)


@pytest.fixture
def dev_hq(db):
    return _make_user("devhq", Role.DEVELOPER_HQ)


@pytest.fixture
def sales_admin(db):
    return _make_user("salesadmin", Role.SALES_ADMIN)


@pytest.fixture
def executive(db):
    return _make_user("exec1", Role.SALES_EXECUTIVE)


@pytest.fixture
def other_executive(db):
    return _make_user("exec2", Role.SALES_EXECUTIVE)


@pytest.fixture
def ctx(master):
    return RequestContext.for_user(master)


@pytest.fixture
def exec_ctx(executive):
    return RequestContext.for_user(executive)


@pytest.fixture
def project(db, master):
    return Project.objects.create(
        name="Skyline Residency",
        location="Pune",
        developer=master,
        total_units=50,
        base_price=Decimal("4800000.00"),
        status="active",
    )


@pytest.fixture
def tower(project):
    return Tower.objects.create(project=project, name="A", floors=10, units_per_floor=4)


@pytest.fixture
def make_unit(tower):
    counter = {"n": 0}

    def factory(**kwargs):
        counter["n"] += 1
        defaults = {
            "tower": tower,
            "unit_number": f"A-{100 + counter['n']}",
            "floor": 1,
            "base_rate": Decimal("4800000.00"),
            "plc": Decimal("200000.00"),
            "gst": Decimal("240000.00"),
            "stamp_duty": Decimal("100000.00"),
        }
        defaults.update(kwargs)
        unit = Unit(**defaults)
        unit.save()
        Project.refresh_unit_counts(unit.project_id)
        return unit

    return factory


@pytest.fixture
def unit(make_unit):
    return make_unit()


@pytest.fixture
def make_lead(db, project, executive):
    counter = {"n": 0}

    def factory(**kwargs):
        counter["n"] += 1
        defaults = {
            "name": f"Buyer {counter['n']}",
            "phone": f"98765{counter['n']:05d}",
            "email": f"buyer{counter['n']}@example.com",
            "project": project,
            "assigned_to": executive,
            "created_by": executive,
        }
        defaults.update(kwargs)
        return Lead.objects.create(**defaults)

    return factory


@pytest.fixture
def lead(make_lead):
    return make_lead()


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def client_for(api_client):
    def login(user):
        api_client.force_authenticate(user=user)
        return api_client

    return login
